from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from .base import Base
from . import models  # noqa: F401  registers tables with Base.metadata
import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = os.path.join('~', '.feedsync', 'feedsync.db')


def default_database_url() -> str:
    return f"sqlite:///{os.path.expanduser(DEFAULT_DATABASE_PATH)}"


class DatabaseManager:
    def __init__(self, database_url: str = None):
        if database_url is None:
            database_url = default_database_url()

        self.database_url = database_url
        url = make_url(database_url)
        self.is_sqlite = url.get_backend_name() == 'sqlite'

        if self.is_sqlite and url.database:
            directory = os.path.dirname(os.path.abspath(url.database))
            os.makedirs(directory, exist_ok=True)

        self.engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1800,
        )

        if self.is_sqlite:
            # SQLite ignores foreign keys unless asked per connection
            @event.listens_for(self.engine, 'connect')
            def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute('PRAGMA foreign_keys=ON')
                cursor.close()

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

    def init_database(self):
        """Create all tables"""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error initializing database: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """Yield a session whose work is committed as one unit or rolled back entirely"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
