from sqlmodel import create_engine, SQLModel
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import logging

from stockwatch.core.config import settings

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the database backend."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        echo=False,  # Disable query logging in production
        pool_size=5,
        max_overflow=10,  # Allow burst connections
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 min
        pool_timeout=30,  # Wait up to 30s for a connection
    )


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(target: Engine = engine) -> None:
    # Import models so their tables are registered on SQLModel.metadata
    import stockwatch.models  # noqa: F401

    SQLModel.metadata.create_all(target)
