from __future__ import annotations

import time
from typing import Dict

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.config import Settings

NAMING_CONVENTION: Dict[str, str] = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def make_engine(settings: Settings) -> Engine:
    uri = settings.DB_URI
    if uri.startswith("sqlite"):
        # in-memory sqlite must share one connection across threads
        return create_engine(
            uri,
            echo=settings.DB_ECHO,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(uri, echo=settings.DB_ECHO, future=True, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def create_schema(engine: Engine, attempts: int = 10) -> None:
    """Create all tables, waiting for the DB with exponential backoff (max ~30s)."""
    import models.entities  # noqa: F401

    backoff = 0.5
    for _ in range(attempts - 1):
        try:
            with engine.begin() as conn:
                Base.metadata.create_all(bind=conn)
            return
        except OperationalError:
            time.sleep(backoff)
            backoff = min(backoff * 2, 5.0)
    # last attempt outside the loop raises if the DB is still down
    with engine.begin() as conn:
        Base.metadata.create_all(bind=conn)
