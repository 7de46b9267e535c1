"""Engine and session factory for the payments database."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from rentpay.common.config import settings


def build_engine(url: str, timeout_seconds: float = 5.0) -> Engine:
    """Engine with bounded connect, checkout and statement time.

    In-memory SQLite (tests) shares one connection across threads so the
    threadpool used by async handlers sees the same database.
    """

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    timeout_ms = int(timeout_seconds * 1000)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args={
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={timeout_ms}",
        },
    )


engine = build_engine(settings.database_url, settings.db_timeout_seconds)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass
