from __future__ import annotations

import pytest

from cipherchat import create_app
from cipherchat.config import Config
from cipherchat.database import db
from cipherchat.encryption.rsa_handler import issue_key_pair


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = "test-secret-key-with-enough-length-for-hmac"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length-for-hmac"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    RELAY_API_URL = "http://relay.invalid"
    RELAY_API_TOKEN = "test-relay-token"
    LOG_LEVEL = "WARNING"
    KEY_REGENERATION_POLICY = "always"
    ACCEPT_PLAINTEXT_FALLBACK = False


class _RelayResponse:
    def raise_for_status(self):
        return None


@pytest.fixture(scope="session")
def alice_keys():
    return issue_key_pair()


@pytest.fixture(scope="session")
def bob_keys():
    return issue_key_pair()


@pytest.fixture(scope="session")
def eve_keys():
    return issue_key_pair()


@pytest.fixture
def relay_calls(monkeypatch):
    """Capture relay pushes instead of sending them over HTTP."""
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        return _RelayResponse()

    monkeypatch.setattr("cipherchat.websocket_helper.requests.post", fake_post)
    return calls


def make_app(config_class):
    app = create_app(config_class)
    yield app
    app.extensions["key_issuer"].shutdown()
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app(relay_calls):
    yield from make_app(TestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


def signup(client, username, password="secret123"):
    response = client.post("/api/auth/signup", json={
        "username": username,
        "fullName": username.title(),
        "email": f"{username}@example.com",
        "password": password,
    })
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def auth_header(body):
    return {"Authorization": f"Bearer {body['accessToken']}"}
