"""Declarative base plus engine and session factories."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def create_db_engine(dsn: str, **kwargs: object) -> Engine:
    """Create an engine from a DSN.

    Long-running workers should pass ``pool_pre_ping=True`` so that
    connections dropped by a database restart are replaced transparently.
    """
    return create_engine(dsn, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a sessionmaker bound to *engine*.

    ``expire_on_commit=False`` keeps claimed records readable after the
    claim transaction commits, when adapters run outside any session.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)
