"""Database engine, session factory and transaction helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from referral_ledger.core.errors import PersistenceConflictError
from referral_ledger.core.settings import Settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntegerId = BigInteger().with_variant(Integer, "sqlite")


def make_engine(settings: Settings) -> Engine:
    """Create the engine described by ``settings.database_url``."""
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        echo=settings.sql_debug,
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory whose objects stay readable after commit."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def unit_of_work(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Run the enclosed block in one transaction, committed or rolled back as a whole.

    Unique-constraint violations and optimistic-lock failures mean another
    request won a race for the same row; both surface as
    ``PersistenceConflictError`` so callers can retry.
    """
    with session_factory() as db:
        try:
            with db.begin():
                yield db
        except (IntegrityError, StaleDataError) as exc:
            raise PersistenceConflictError(context={"reason": "concurrent_write"}) from exc


def create_tables(engine: Engine) -> None:
    """Create all database tables."""
    # Ensure model modules are imported so that metadata is populated.
    import referral_ledger.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine) -> None:
    """Drop all database tables."""
    import referral_ledger.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
