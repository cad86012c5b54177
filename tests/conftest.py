import os


# Ensure sensible defaults for tests before app import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ANALYTICS_FORWARD", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from carmarket.db import Base, get_db  # noqa: E402
from carmarket.main import create_app  # noqa: E402
from carmarket.services.realtime import feed  # noqa: E402
from carmarket.storage.local_provider import LocalStorageProvider  # noqa: E402
from carmarket.storage.uploads import get_storage  # noqa: E402

from .utils import make_user, seed_catalog  # noqa: E402


@pytest.fixture()
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture()
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture()
def app(session_factory, storage):
    app = create_app()

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    return app


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_feed():
    feed.clear()
    yield
    feed.clear()


@pytest.fixture()
def catalog(db):
    return seed_catalog(db)


@pytest.fixture()
def admin(db):
    return make_user(db, "admin@example.com", role="admin", full_name="Admin")


@pytest.fixture()
def seller(db):
    return make_user(db, "seller@example.com", full_name="Seller One", phone_number="+97455550001")


@pytest.fixture()
def buyer(db):
    return make_user(db, "buyer@example.com", full_name="Buyer")
