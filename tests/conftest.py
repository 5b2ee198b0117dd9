"""Shared fixtures: an app on a throwaway SQLite file and a fake auth service."""

from datetime import datetime

import pytest

from app import create_app
from auth_client import AuthError, AuthSession, AuthUser
from models import Category, Nominee, UserProfile, Vote, db


class FakeAuthClient:
    """In-memory stand-in for the hosted auth service."""

    def __init__(self):
        self.users = {}
        self.tokens = {}
        self.signed_out = []

    def add_user(self, user_id, email, password="secret123"):
        self.users[email] = (user_id, password)
        token = f"token-{user_id}"
        self.tokens[token] = AuthUser(id=user_id, email=email)
        return token

    def sign_up(self, email, password):
        if email in self.users:
            raise AuthError("User already registered", status_code=400)
        user_id = f"user-{len(self.users) + 1}"
        self.users[email] = (user_id, password)
        return AuthUser(id=user_id, email=email)

    def sign_in(self, email, password):
        user_id, expected = self.users.get(email, (None, None))
        if user_id is None or password != expected:
            raise AuthError("Invalid login credentials")
        token = f"token-{user_id}"
        self.tokens[token] = AuthUser(id=user_id, email=email)
        return AuthSession(access_token=token, refresh_token="refresh", user_id=user_id, email=email)

    def get_user(self, access_token):
        return self.tokens.get(access_token)

    def sign_out(self, access_token):
        self.signed_out.append(access_token)
        self.tokens.pop(access_token, None)


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def app(tmp_path, monkeypatch, auth_client):
    """App bound to a temporary SQLite file; worker threads need a real file, not :memory:."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("AUTH_URL", raising=False)
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "SESSION_COOKIE_SECURE": False,
        "DASHBOARD_QUERY_TIMEOUT": 10,
    }, auth_client=auth_client)
    yield app
    app.extensions['content_cache'].shutdown()
    with app.app_context():
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    """Application context for service-level tests."""
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def add_profile(app, user_id, role="user", email=None):
    with app.app_context():
        db.session.add(UserProfile(id=user_id, email=email or f"{user_id}@example.com", role=role))
        db.session.commit()


def login_as(client, user_id, email=None):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
        sess['email'] = email or f"{user_id}@example.com"


@pytest.fixture
def admin_client(app):
    add_profile(app, "admin-1", role="admin")
    client = app.test_client()
    login_as(client, "admin-1")
    return client


@pytest.fixture
def user_client(app):
    add_profile(app, "user-1", role="user")
    client = app.test_client()
    login_as(client, "user-1")
    return client


@pytest.fixture
def sample_data(app):
    """Two categories with nominees. Returns their ids."""
    with app.app_context():
        music = Category(name="Música", slug="musica", description="Música popular")
        theatre = Category(name="Teatro", slug="teatro")
        db.session.add_all([music, theatre])
        singer = Nominee(name="Ana Pérez", title="Cantante", category="Música", tags=["pop"])
        band = Nominee(name="Los Andes", title="Banda", category="Música")
        actor = Nominee(name="Carlos Ruiz", title="Actor", category="Teatro")
        db.session.add_all([singer, band, actor])
        db.session.commit()
        return {
            "music": music.id,
            "theatre": theatre.id,
            "singer": singer.id,
            "band": band.id,
            "actor": actor.id,
        }


def add_vote(app, user_id, nominee_id, created_at=None):
    with app.app_context():
        vote = Vote(user_id=user_id, nominee_id=nominee_id, created_at=created_at or datetime.utcnow())
        db.session.add(vote)
        db.session.commit()
        return vote.id
