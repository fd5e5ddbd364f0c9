"""
Database Connection Module
Handles database connection pooling and session management using SQLAlchemy.
"""

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jira_mirror.config_manager import ConfigManager
from jira_mirror.database.models import Base
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnection:
    """Manages database connections with connection pooling."""

    def __init__(self, url: str = None):
        """
        Initialize database connection.

        Args:
            url: SQLAlchemy URL; built from the database config when omitted
        """
        db_config = ConfigManager().get_database_config()
        self.url = url or self._build_connection_url(db_config)
        self._engine = self._create_engine(self.url, db_config)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info("Database engine initialized successfully")

    def _create_engine(self, url: str, db_config: dict) -> Engine:
        """Create SQLAlchemy engine with connection pooling."""
        echo = os.getenv('SQL_ECHO', 'false').lower() == 'true'

        if url.startswith('sqlite'):
            # In-memory databases must share one connection across sessions
            kwargs = {'connect_args': {'check_same_thread': False}}
            if ':memory:' in url or url in ('sqlite://', 'sqlite:///'):
                kwargs['poolclass'] = StaticPool
            return create_engine(url, echo=echo, **kwargs)

        logger.info(f"Initializing database connection to {db_config.get('host')}:{db_config.get('port')}/{db_config.get('name')}")

        return create_engine(
            url,
            pool_size=db_config.get('pool_size', 5),
            max_overflow=db_config.get('max_overflow', 10),
            pool_timeout=db_config.get('pool_timeout', 30),
            pool_pre_ping=True,  # Enable connection health checks
            echo=echo
        )

    def _build_connection_url(self, db_config: dict) -> str:
        """Build PostgreSQL connection URL from config, unless a full URL is given."""
        if db_config.get('url'):
            return db_config['url']

        host = db_config.get('host', 'localhost')
        port = db_config.get('port', 5432)
        name = db_config.get('name', 'jira_mirror')
        user = db_config.get('user', 'jira_mirror')
        password = db_config.get('password') or ''

        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        return self._engine

    def create_tables(self) -> None:
        """Create all mirror tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def get_session(self) -> Session:
        """Create a new database session."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with db.session_scope() as session:
                session.query(...)
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            bool: True if connection is healthy, False otherwise.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Database connection health check passed")
            return True
        except Exception as e:
            logger.error(f"Database connection health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Dispose of the connection pool."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database connection pool disposed")


_db: Optional[DatabaseConnection] = None


def get_db() -> DatabaseConnection:
    """Get the shared database connection instance."""
    global _db
    if _db is None:
        _db = DatabaseConnection()
    return _db

