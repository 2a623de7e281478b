"""
Database engine and session factory.

Engines are built from settings; SQLite connections get foreign key
enforcement switched on so load ordering is checked the same way it is
on PostgreSQL.
"""

import logging
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend.config import get_settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for the given URL (defaults to DATABASE_URL).

    Pool sizing and pre-ping settings apply to server databases only.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL

    if url.startswith('sqlite'):
        engine = create_engine(url)
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=settings.DB_POOL_PRE_PING
        )

    logger.debug(f"Created engine for {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Session factory for the configured DATABASE_URL, created once."""
    return create_session_factory(create_db_engine())


def get_db_session() -> Session:
    """Get database session."""
    return get_session_factory()()
