from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from costledger.core.config import settings


def engine_options(database_url: str) -> dict[str, object]:
    options: dict[str, object] = {"pool_pre_ping": True}
    if database_url.lower().startswith("sqlite"):
        return options
    # Every ledger write holds its record lock until commit, so each
    # concurrent writer in the host process needs its own connection.
    options.update(
        {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout_seconds,
            "pool_recycle": settings.db_pool_recycle_seconds,
        }
    )
    return options


def create_ledger_engine(database_url: str | None = None, **overrides: object) -> Engine:
    """Engine for the ledger tables. ``overrides`` win over the configured pool options."""
    url = database_url or settings.database_url
    return create_engine(url, **{**engine_options(url), **overrides})


def create_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = create_ledger_engine()

SessionLocal = create_session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Open a session for one piece of host work and close it afterwards.

    Nothing is committed here: every service call commits or rolls back its
    own unit through ``run_atomic``.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
