import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_db_engine(url: str) -> Engine:
    """Build the engine shared by every request.

    In-memory SQLite gets a StaticPool so all connections see the same DB.
    """
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}

    engine = create_engine(url, **kwargs)
    logger.info("Database engine created (dialect=%s)", engine.dialect.name)
    return engine
