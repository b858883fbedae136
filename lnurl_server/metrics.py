"""Prometheus metrics for the protocol engines and background jobs."""

from prometheus_client import CollectorRegistry, Counter, Gauge

registry = CollectorRegistry()

sweep_runs = Counter(
    "lnurl_settlement_sweeps_total",
    "Completed payment settlement sweeps",
    registry=registry,
)
sweep_skipped = Counter(
    "lnurl_background_runs_skipped_total",
    "Background runs skipped because the previous run was still active",
    ["task"],
    registry=registry,
)
payments_settled = Counter(
    "lnurl_payments_settled_total",
    "Payments observed as settled",
    ["source"],
    registry=registry,
)
oracle_failures = Counter(
    "lnurl_oracle_failures_total",
    "Failed or timed-out Lightning node calls",
    ["operation"],
    registry=registry,
)
sessions_purged = Counter(
    "lnurl_auth_sessions_purged_total",
    "Expired auth sessions deleted",
    registry=registry,
)
pending_payments = Gauge(
    "lnurl_pending_payments",
    "Unpaid invoices seen by the last sweep",
    registry=registry,
)
