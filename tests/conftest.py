import os
import sys
from datetime import datetime

# Ensure project root is on PYTHONPATH
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from sqlalchemy.pool import StaticPool

from asset_manager.extensions import db
from asset_manager.models.user import User
from asset_manager.security import ManualClock

START = datetime(2026, 3, 2, 9, 0, 0)
PASSWORD = "correct-horse-1"


def _overrides(extra=None):
    config_overrides = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        },
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "SECRET_KEY": "test-secret",
        "SECURITY_SWEEP_ON_STARTUP": False,
    }
    config_overrides.update(extra or {})
    return config_overrides


@pytest.fixture()
def clock():
    return ManualClock(START)


@pytest.fixture()
def make_app(clock):
    """Factory for apps with extra config; each one gets a fresh in-memory database."""
    from asset_manager import create_app

    contexts = []

    def _make(**extra):
        app = create_app(config_overrides=_overrides(extra), clock=clock)
        ctx = app.app_context()
        ctx.push()
        db.drop_all()
        db.create_all()
        contexts.append((app, ctx))
        return app

    yield _make

    for app, ctx in reversed(contexts):
        db.session.remove()
        db.drop_all()
        app.extensions["security"].shutdown()
        ctx.pop()


@pytest.fixture()
def app(make_app):
    return make_app()


@pytest.fixture()
def client(app):
    return app.test_client()


def ensure_user(user_id: int, role: str = "user", is_active: bool = True, login_id=None):
    user = db.session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            email=f"user{user_id}@test.local",
            login_id=login_id,
            name=f"user{user_id}",
            role=role,
            is_active=is_active,
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()
    else:
        user.role = role
        user.is_active = is_active
        db.session.commit()
    return user


def login_session(client, user_id=1, role="user"):
    ensure_user(user_id, role=role, is_active=True)
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["role"] = role


def fetch_csrf(client) -> str:
    res = client.get("/auth/login")
    assert res.status_code == 200
    return res.get_json()["csrf_token"]


def post_login(client, identifier, password, token=None, ip="203.0.113.7", **kwargs):
    """JSON login post carrying the session's CSRF token from a given client IP."""
    if token is None:
        token = fetch_csrf(client)
    headers = {"X-CSRF-Token": token}
    headers.update(kwargs.pop("headers", {}))
    return client.post(
        "/auth/login",
        json={"email": identifier, "password": password},
        headers=headers,
        environ_base={"REMOTE_ADDR": ip},
        **kwargs,
    )
