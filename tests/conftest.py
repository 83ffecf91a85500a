import os
import tempfile
from decimal import Decimal
from pathlib import Path

# Must be set before the storefront package builds its engine.
_DB_PATH = Path(tempfile.gettempdir()) / f"storefront-test-{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["JWT_SECRET"] = "test-secret-3f1c9a7e5b2d4c6e8a0b1d3f5e7a9c2b"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront import database  # noqa: E402
from storefront.auth import get_password_hash  # noqa: E402
from storefront.database import SessionLocal  # noqa: E402
from storefront.models import Base, Product, User  # noqa: E402

DEFAULT_PASSWORD = "correct-horse-battery"


def pytest_sessionfinish(session, exitstatus):
    database.engine.dispose()
    if _DB_PATH.exists():
        _DB_PATH.unlink()


@pytest.fixture(autouse=True)
def reset_db():
    """Recreate every table so each test starts from an empty store."""
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(scope="session")
def password_hash():
    # Hashing is deliberately slow; compute it once.
    return get_password_hash(DEFAULT_PASSWORD)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db, password_hash):
    def _make(email="buyer@shop.io"):
        user = User(email=email, hashed_password=password_hash)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_product(db):
    def _make(name="Widget", price="10.00", quantity=5, description=None):
        product = Product(name=name, price=Decimal(price), quantity=quantity, description=description)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture()
def app():
    from storefront.main import create_app

    return create_app()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def login(client):
    def _login(email="buyer@shop.io", password=DEFAULT_PASSWORD):
        response = client.post("/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _login


@pytest.fixture()
def auth_headers(make_user, login):
    make_user()
    tokens = login()
    return {"Authorization": f"Bearer {tokens['access_token']}"}
