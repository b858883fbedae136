"""
Database connection and session management for the LNURL server.

PostgreSQL in production, SQLite for development and tests.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Mapping, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from lnurl_server.errors import StoreError
from lnurl_server.models import Base

logger = logging.getLogger(__name__)


def get_database_url(config: Mapping[str, Any]) -> str:
    """
    Get database URL from configuration.

    Returns:
        Database connection URL
    """
    return str(config.get("DATABASE_URL") or "sqlite:///lnurl.db")


def _redact(db_url: str) -> str:
    return db_url.split("@")[1] if "@" in db_url else db_url


class Database:
    """
    Engine plus session factory for one database.

    Usage:
        db = Database("sqlite:///lnurl.db")
        db.create_all()
        with db.session_scope() as session:
            session.query(AuthSession).filter_by(k1=k1).first()
    """

    def __init__(self, db_url: str, echo: bool = False):
        engine_kwargs: Dict[str, Any] = {
            "echo": echo,
            "pool_pre_ping": True,
        }

        if db_url.startswith("sqlite"):
            # Connections are handed between request threads and the
            # background jobs.
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            engine_kwargs.update(
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_recycle": 3600,
                    "connect_args": {"connect_timeout": 10, "options": "-c timezone=utc"},
                }
            )

        self.url = db_url
        self.engine = create_engine(db_url, **engine_kwargs)

        @event.listens_for(self.engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            """Handle new database connections."""
            logger.debug("New database connection established")

        # Scoped sessions (thread-safe)
        self._factory = scoped_session(sessionmaker(bind=self.engine))

        logger.info(f"Database initialized: {_redact(db_url)}")

    def create_all(self) -> None:
        """Create all tables (use migrations in production)."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        Commits on success and rolls back on error. SQLAlchemy failures are
        re-raised as StoreError so callers can tell them apart from protocol
        rejections.

        Yields:
            Database session
        """
        session = self._factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise StoreError(f"Database operation failed: {e.__class__.__name__}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self._factory.remove()

    def check_health(self) -> dict:
        """
        Check database connection health.

        Returns:
            Dictionary with health status
        """
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))

            return {"status": "healthy", "database": self.engine.dialect.name, "connected": True}
        except StoreError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "database": self.engine.dialect.name, "connected": False, "error": str(e)}

    def close(self) -> None:
        """
        Close database connections and clean up.
        """
        self._factory.remove()
        self.engine.dispose()
        logger.info("Database connections closed")


def init_database(config: Mapping[str, Any], echo: bool = False, create_tables: Optional[bool] = None) -> Database:
    """
    Build the Database for a configuration.

    Args:
        config: Application configuration
        echo: If True, log all SQL statements
        create_tables: Create the schema; defaults to True for SQLite
    """
    db_url = get_database_url(config)
    database = Database(db_url, echo=echo)

    if create_tables is None:
        create_tables = db_url.startswith("sqlite")
    if create_tables:
        database.create_all()

    return database
