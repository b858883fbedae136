"""Background settlement sweep and auth session cleanup."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from lnurl_server import metrics
from lnurl_server.audit_logger import get_audit_logger
from lnurl_server.errors import OracleError
from lnurl_server.models import utc_now
from lnurl_server.store import RequestLedger, SessionStore

logger = logging.getLogger(__name__)


class SettlementReconciler:
    """
    Owns two periodic tasks: checking unpaid invoices against the node and
    deleting expired auth sessions.

    Each task runs on its own daemon thread and is guarded by a non-blocking
    lock, so a slow run is skipped over rather than overlapped. ``stop()``
    ends both threads.
    """

    def __init__(
        self,
        ledger: RequestLedger,
        sessions: SessionStore,
        oracle: Any,
        payment_interval: float = 10,
        cleanup_interval: float = 300,
        item_timeout: float = 10,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger
        self.sessions = sessions
        self.oracle = oracle
        self.payment_interval = payment_interval
        self.cleanup_interval = cleanup_interval
        self.item_timeout = item_timeout
        self.max_workers = max_workers
        self.clock = clock
        self.audit = get_audit_logger()

        self._stop = threading.Event()
        self._sweep_lock = threading.Lock()
        self._cleanup_lock = threading.Lock()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        # Threads left over from a timed-out stop keep their own, already set, event
        self._stop = threading.Event()
        self._threads = [
            threading.Thread(
                target=self._loop,
                args=(self._stop, self.payment_interval, self.run_payment_sweep, "payment_sweep"),
                name="lnurl-payment-sweep",
                daemon=True,
            ),
            threading.Thread(
                target=self._loop,
                args=(self._stop, self.cleanup_interval, self.run_session_cleanup, "session_cleanup"),
                name="lnurl-session-cleanup",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "Background jobs started (payment check every %ss, session cleanup every %ss)",
            self.payment_interval,
            self.cleanup_interval,
        )

    def stop(self, timeout: Optional[float] = 5) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Background jobs stopped")

    def _loop(self, stop: threading.Event, interval: float, task: Callable[[], Any], name: str) -> None:
        while not stop.wait(interval):
            try:
                task()
            except Exception:
                # One failed run must not end the loop or affect the other task
                logger.exception("Background task %s failed", name)

    # ------------------------------------------------------------------
    # Payment sweep
    # ------------------------------------------------------------------

    def run_payment_sweep(self) -> Optional[Dict[str, int]]:
        """
        Check every unpaid invoice once.

        Returns:
            Counts of ``checked``, ``settled``, ``unsettled`` and ``unknown``
            rows, or None if a sweep was already running.
        """
        if not self._sweep_lock.acquire(blocking=False):
            metrics.sweep_skipped.labels(task="payment_sweep").inc()
            logger.debug("Payment sweep still running; skipping")
            return None
        try:
            return self._sweep()
        finally:
            self._sweep_lock.release()

    def _sweep(self) -> Dict[str, int]:
        pending = self.ledger.list_pending_payments()
        metrics.pending_payments.set(len(pending))
        summary = {"checked": len(pending), "settled": 0, "unsettled": 0, "unknown": 0}
        if not pending:
            metrics.sweep_runs.inc()
            return summary

        # Not a context manager: shutdown must not wait on a hung call
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="lnurl-oracle")
        try:
            futures = [(row, pool.submit(self.oracle.get_invoice_status, row["payment_hash"])) for row in pending]
            for row, future in futures:
                outcome = self._settle_row(row, future)
                summary[outcome] += 1
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        metrics.sweep_runs.inc()
        metrics.pending_payments.set(summary["unsettled"] + summary["unknown"])
        if summary["settled"] or summary["unknown"]:
            logger.info("Payment sweep finished: %s", summary)
        return summary

    def _settle_row(self, row: Dict[str, Any], future) -> str:
        payment_id = row["payment_id"]
        try:
            invoice = future.result(timeout=self.item_timeout)
        except FutureTimeoutError:
            metrics.oracle_failures.labels(operation="get_invoice_status").inc()
            logger.warning("Invoice check for payment %s timed out", payment_id)
            return "unknown"
        except OracleError as e:
            metrics.oracle_failures.labels(operation="get_invoice_status").inc()
            logger.warning("Invoice check for payment %s failed: %s", payment_id, e)
            return "unknown"
        except Exception:
            metrics.oracle_failures.labels(operation="get_invoice_status").inc()
            logger.exception("Unexpected error checking payment %s", payment_id)
            return "unknown"

        if not invoice.get("settled"):
            return "unsettled"

        try:
            if self.ledger.mark_paid(payment_id, self.clock()):
                metrics.payments_settled.labels(source="sweep").inc()
                self.audit.log_payment_settled(payment_id, row["amount_sats"], "sweep")
                logger.info("Payment %s marked as paid (%s sats)", payment_id, row["amount_sats"])
        except Exception:
            logger.exception("Could not record settlement of payment %s", payment_id)
            return "unknown"
        return "settled"

    # ------------------------------------------------------------------
    # Session cleanup
    # ------------------------------------------------------------------

    def run_session_cleanup(self) -> Optional[int]:
        """Delete expired auth sessions; returns the count, or None if skipped."""
        if not self._cleanup_lock.acquire(blocking=False):
            metrics.sweep_skipped.labels(task="session_cleanup").inc()
            return None
        try:
            count = self.sessions.delete_expired(self.clock())
        finally:
            self._cleanup_lock.release()

        if count:
            metrics.sessions_purged.inc(count)
            self.audit.log_sessions_purged(count)
            logger.info("Cleaned up %d expired auth sessions", count)
        return count
