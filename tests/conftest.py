import os

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import costledger.models  # noqa: F401
from costledger.db.base import Base
from costledger.db.session import create_ledger_engine, create_session_factory


@pytest.fixture()
def session_local():
    engine = create_ledger_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = create_session_factory(engine)
    Base.metadata.create_all(bind=engine)

    yield session_local

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_local):
    db = session_local()
    try:
        yield db
    finally:
        db.close()
