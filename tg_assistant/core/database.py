# tg_assistant/core/database.py

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from tg_assistant.core.config import settings

# Get database URL from settings, default to SQLite
DATABASE_URL = settings.DATABASE_URL


def create_db_engine(database_url: str) -> Engine:
    """Create an engine whose transactions are at least read-committed.

    SQLite serializes writers and is already stricter than read committed,
    and an in-memory SQLite database must share a single connection across
    the worker threads that run storage calls.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        echo=False,  # Set to True to see SQL queries
        isolation_level="READ COMMITTED",
        pool_pre_ping=True,
    )


# Create database engine
engine = create_db_engine(DATABASE_URL)


def init_db(db_engine: Engine = None) -> None:
    """Initialize the database, creating all tables."""
    # Import models so their tables are registered on the metadata
    from tg_assistant import models  # noqa: F401

    SQLModel.metadata.create_all(db_engine or engine)
