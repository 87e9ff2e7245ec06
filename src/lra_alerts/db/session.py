"""
Database Session Management

Provides the Database handle: one engine with connection pooling and a
session factory, constructed once at process start and passed to every
component that reads or writes storage.
"""
from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event, exc, pool, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config.settings import Settings, settings as default_settings
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)


@event.listens_for(pool.Pool, "invalidate")
def receive_invalidate(dbapi_conn, connection_record, exception):
    """
    Event listener for connection invalidation.

    Logs when a connection is marked as invalid and removed from pool.
    """
    logger.warning(
        "database_connection_invalidated",
        exception=str(exception) if exception else None
    )


class Database:
    """
    Engine and session factory for one database.

    Usage:
        database = Database(settings.database_url)
        with database.session() as session:
            session.execute(...)
    """

    def __init__(self, url: str, config: Optional[Settings] = None, **engine_kwargs: Any):
        """
        Create the engine.

        Args:
            url: SQLAlchemy database URL
            config: Settings supplying pool options (defaults to global settings)
            **engine_kwargs: Extra create_engine arguments (e.g. poolclass for tests)
        """
        config = config or default_settings
        options = {"echo": config.database_echo}
        if not url.startswith("sqlite"):
            options.update(
                pool_size=config.database_pool_size,
                max_overflow=config.database_max_overflow,
                pool_timeout=config.database_pool_timeout,
                pool_recycle=config.database_pool_recycle,
                pool_pre_ping=True,
            )
        else:
            options["connect_args"] = {"check_same_thread": False}
        options.update(engine_kwargs)

        self.url = url
        self.engine: Engine = create_engine(url, **options)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        @event.listens_for(self.engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            logger.debug("database_connection_established")

        logger.info("database_initialized", dialect=self.engine.dialect.name)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Transactional session scope.

        Commits when the block exits cleanly; rolls back and re-raises on
        any error.

        Yields:
            Database session
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except exc.SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "database_session_rollback",
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        except Exception as e:
            session.rollback()
            logger.error(
                "database_session_error",
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """
        Check database connection health.

        Returns:
            True if database is accessible, False otherwise
        """
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            logger.info("database_health_check_success")
            return True
        except exc.SQLAlchemyError as e:
            logger.error(
                "database_health_check_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            return False

    def create_all_tables(self):
        """
        Create all tables defined in models.

        WARNING: Use Alembic migrations instead in production.
        """
        from src.lra_alerts.db.base import Base, import_all_models

        import_all_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("database_tables_created")

    def drop_all_tables(self):
        """
        Drop all tables.

        WARNING: This will delete all data! Only use in development/testing.
        """
        from src.lra_alerts.db.base import Base, import_all_models

        import_all_models()
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("all_database_tables_dropped")

    def close(self):
        """Dispose of the engine and its pooled connections."""
        self.engine.dispose()
        logger.info("database_connections_closed")
