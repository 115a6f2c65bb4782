"""Engine and session factory construction."""
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from credgate.adapters.postgres.models import Base

logger = logging.getLogger(__name__)


def create_store_engine(database_url: str, statement_timeout_ms: int = 2000) -> Engine:
    """Create an engine with bounded connect and statement times."""
    if database_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        pool_timeout=5,
        connect_args={
            "connect_timeout": max(1, statement_timeout_ms // 1000),
            "options": f"-c statement_timeout={statement_timeout_ms}",
        },
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables. Existing tables are left untouched."""
    Base.metadata.create_all(engine)
    logger.info("Credential store schema ready")
