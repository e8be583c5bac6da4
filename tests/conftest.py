"""Shared fixtures: an in-memory MongoDB, a recording mail sender and API clients."""
import os
import re
import smtplib

# Cheap hashes and a fixed token key; must be set before the app module is imported.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import mongomock
import pytest
from fastapi.testclient import TestClient

import app as server

CODE_PATTERN = re.compile(r"verification code is: ([0-9A-F]+)")


class FakeMailer:
    """Stands in for the SMTP sender and records every message it accepts."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, message):
        if self.fail:
            raise smtplib.SMTPException("connection refused")
        self.sent.append(message)

    def last_code(self, email):
        for message in reversed(self.sent):
            if message["to"] == email:
                return CODE_PATTERN.search(message["text"]).group(1)
        raise AssertionError(f"no mail sent to {email}")


class FakeClock:

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def mongo(monkeypatch):
    database = mongomock.MongoClient()["langgol_test"]
    monkeypatch.setattr(server, "users_collection", database["users"])
    monkeypatch.setattr(server, "history_collection", database["history"])
    monkeypatch.setattr(server, "outbox_collection", database["outbox"])
    server.init_db()
    return database


@pytest.fixture
def mailer(monkeypatch):
    fake = FakeMailer()
    monkeypatch.setattr(server, "send_email", fake)
    return fake


@pytest.fixture
def client(mongo, mailer):
    return TestClient(server.app)


@pytest.fixture
def make_client(mongo, mailer):
    def _make():
        return TestClient(server.app)
    return _make


@pytest.fixture
def clock():
    return FakeClock()


def signup_payload(email="rahim@krishok.org", **overrides):
    payload = {
        "email": email,
        "password": "dhan-khet-2024",
        "name": "Rahim Uddin",
        "phone": "01711000000",
        "address": "Bogura, Rajshahi",
        "securityQuestion": "What is your favourite crop?",
        "securityAnswer": "Wheat",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def register(client, mailer):
    """Sign up and verify an account; returns the signup payload."""
    def _register(email="rahim@krishok.org", **overrides):
        payload = signup_payload(email, **overrides)
        res = client.post("/signup", json=payload)
        assert res.status_code == 201
        res = client.post("/verify", json={"email": email, "code": mailer.last_code(email)})
        assert res.json() == {"success": True}
        return payload
    return _register


@pytest.fixture
def admin_client(make_client):
    server.ensure_admin()
    admin = make_client()
    res = admin.post("/login", json={"email": server.ADMIN_EMAIL, "pass": server.ADMIN_PASSWORD})
    assert res.status_code == 200
    return admin


@pytest.fixture
def user_payload():
    return signup_payload
