"""SQLAlchemy models for advisory acquisition state.

Only state the core itself owns lives here: per-domain warm-up hints and
per-URL circuit-breaker counters. Article storage belongs to the caller.
"""

from typing import Any

from sqlalchemy import JSON, Column, Float, Integer, String, create_engine
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, sessionmaker

Base: Any = declarative_base()


class DomainWarmupRecord(Base):
    """Learned warm-up hint for one normalized domain."""

    __tablename__ = "domain_warmup_hints"

    domain: Mapped[str] = mapped_column(String, primary_key=True)
    hint: Mapped[dict | None] = mapped_column(JSON)
    updated_at_epoch = Column(Float, nullable=False, default=0.0)


class CircuitBreakerRecord(Base):
    """Failure counters for one source URL."""

    __tablename__ = "circuit_breaker_state"

    url: Mapped[str] = mapped_column(String, primary_key=True)
    state = Column(String, nullable=False, default="closed")
    failure_count = Column(Integer, nullable=False, default=0)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    total_requests = Column(Integer, nullable=False, default=0)
    last_failure_at = Column(Float)
    last_success_at = Column(Float)
    opened_at = Column(Float)


def create_session_factory(database_url: str, create_tables: bool = True):
    """Engine + sessionmaker for ``database_url``; tables created on demand."""
    engine = create_engine(database_url, future=True)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def create_stores(database_url: str | None = None, clock=None):
    """Return ``(warmup_store, circuit_state_store)``.

    SQL-backed when ``database_url`` is given, process-lifetime dicts
    otherwise.
    """
    import time

    from newsacquire.crawler.circuit_breaker import (
        InMemoryCircuitStateStore,
        SqlCircuitStateStore,
    )
    from newsacquire.crawler.warmup import InMemoryWarmupStore, SqlWarmupStore

    clock = clock or time.time
    if not database_url:
        return InMemoryWarmupStore(clock=clock), InMemoryCircuitStateStore()

    session_factory = create_session_factory(database_url)
    return (
        SqlWarmupStore(session_factory, clock=clock),
        SqlCircuitStateStore(session_factory),
    )
