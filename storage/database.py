"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Owns the engine and session factory of the market data store.

- Pooled engine (QueuePool on PostgreSQL)
- One short-lived session per unit of work
- Connection verification and table creation
- Orderly disposal on shutdown

============================================================
DESIGN PRINCIPLES
============================================================
- One Database instance per process, passed explicitly
- Sessions never shared across threads
- Errors during startup are hard failures

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from core.config import DatabaseConfig
from storage.models import Base


logger = logging.getLogger("storage.database")


# =============================================================
# EXCEPTIONS
# =============================================================

class DatabaseError(Exception):
    """Raised when the store cannot be used."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the store cannot be reached."""
    pass


class DatabaseInitializationError(DatabaseError):
    """Raised when table creation fails."""
    pass


# =============================================================
# DATABASE
# =============================================================

class Database:
    """
    Engine and session factory for the market data store.

    Usage:
        database = Database(config)
        database.connect()
        with database.session_scope() as session:
            session.add(row)
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        engine: Optional[Engine] = None,
    ):
        self._config = config or DatabaseConfig()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

        if engine is not None:
            self._session_factory = self._build_session_factory(engine)

    # =========================================================
    # ENGINE
    # =========================================================

    def _create_engine(self) -> Engine:
        url = self._config.url
        logger.info(f"Creating database engine for: {self._config.redacted_url()}")

        if url.startswith("sqlite"):
            # SQLite manages its own pool; sessions may hop threads
            engine = create_engine(
                url,
                echo=self._config.echo,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_timeout=self._config.pool_timeout_seconds,
                pool_recycle=self._config.pool_recycle_seconds,
                pool_pre_ping=True,
                echo=self._config.echo,
            )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        return engine

    @staticmethod
    def _build_session_factory(engine: Engine) -> sessionmaker:
        return sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
            self._session_factory = self._build_session_factory(self._engine)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = self._build_session_factory(self.engine)
        return self._session_factory

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def connect(self) -> None:
        """
        Verify connectivity and create tables when configured.

        Raises:
            DatabaseConnectionError: store unreachable
            DatabaseInitializationError: table creation failed
        """
        if not self.health_check():
            raise DatabaseConnectionError(
                f"Cannot connect to database at {self._config.redacted_url()}"
            )
        if self._config.create_tables:
            self.create_tables()

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables ready")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseInitializationError(f"Table creation failed: {e}") from e

    def health_check(self) -> bool:
        """Run SELECT 1 against the store."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Close every pooled connection."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")

    # =========================================================
    # SESSIONS
    # =========================================================

    def new_session(self) -> Session:
        """Caller is responsible for commit/rollback/close."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transaction boundary: commit on success, rollback on any
        exception, always close.
        """
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
