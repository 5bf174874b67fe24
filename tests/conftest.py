"""Shared pytest fixtures.

Provides:
- app / client: a fresh app on an in-memory SQLite database per test
- auth_client: a test client already registered and logged in
- user_id / store: a database user and a BudgetStore bound to it, for tests
  that drive the store directly inside an app context
"""

import pytest

from app import create_app
from models import db, User
from store import BudgetStore


TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "DEFAULT_WEEKLY_INCOME": 500,
    "CURRENCY": "USD",
    "LOG_LEVEL": "WARNING",
}


class FakeIdentity:
    """Stands in for the login session; set ``user_id`` to None to log out."""

    def __init__(self, user_id):
        self.user_id = user_id

    def __call__(self):
        return self.user_id


@pytest.fixture()
def app():
    app = create_app(TEST_CONFIG)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth_client(client):
    client.post("/register", json={"username": "ana", "password": "secret"})
    resp = client.post("/login", json={"username": "ana", "password": "secret"})
    assert resp.status_code == 200
    return client


@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield


def make_user(username):
    user = User(username=username, password="not-a-real-hash")
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture()
def user_id(app_ctx):
    return make_user("owner")


@pytest.fixture()
def identity(user_id):
    return FakeIdentity(user_id)


@pytest.fixture()
def store(identity):
    return BudgetStore(identity)
