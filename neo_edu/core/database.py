from functools import lru_cache
from typing import Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from neo_edu.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> Engine:
    kwargs = {"future": True, "pool_pre_ping": True, "echo": settings.DATABASE_ECHO}
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
    return create_engine(settings.DATABASE_URL, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@lru_cache()
def get_engine() -> Engine:
    return build_engine(get_settings())


@lru_cache()
def get_session_factory() -> sessionmaker:
    return build_session_factory(get_engine())


def get_db() -> Iterator[Session]:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create tables if they don't exist. Production deployments run migrations instead."""
    from neo_edu.models.orm import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured")
