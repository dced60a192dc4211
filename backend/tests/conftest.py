"""
Shared pytest fixtures for the patient intake backend.
"""
from datetime import datetime, timezone

import pytest
import requests
from fastapi.testclient import TestClient

import main
from errors import StoreWriteError
from identity import InMemoryIdentityProvider
from config import Settings
from logic import IntakeController, IntakeRegistry
from store import InMemoryDocumentStore

APP_ID = "test-app"
FIXED_MOMENT = datetime(2026, 10, 19, 8, 15, 30, 123000, tzinfo=timezone.utc)
FIXED_CASE_NO = "2026-10-19T08:15:30.123Z"

MARIA = {"name": "Maria Lopez", "dob": "1985-11-23", "gender": "Female", "symptoms": "Headache"}


class FailingStore:
    """Store whose writes always fail, recording each attempt."""

    def __init__(self):
        self.attempts = []

    def add_document(self, collection_path, document):
        self.attempts.append((tuple(collection_path), dict(document)))
        raise StoreWriteError("backend unavailable", status_code=503)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Stands in for requests.Session; replays queued responses and records calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def identity():
    return InMemoryIdentityProvider()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def controller(identity, store):
    """Controller with a signed-in session and a fixed clock."""
    identity.sign_in_anonymously()
    ctrl = IntakeController(identity=identity, store=store, app_id=APP_ID, clock=lambda: FIXED_MOMENT)
    yield ctrl
    ctrl.close()


@pytest.fixture
def app_backends(monkeypatch):
    """
    Fresh in-memory identity, store and form registry wired into the FastAPI app.
    Returns (identity, store).
    """
    fresh_identity = InMemoryIdentityProvider()
    fresh_store = InMemoryDocumentStore()
    fresh_identity.sign_in_anonymously()
    monkeypatch.setattr(main, "settings", Settings(app_id=APP_ID))
    monkeypatch.setattr(main, "identity", fresh_identity)
    monkeypatch.setattr(main, "store", fresh_store)
    monkeypatch.setattr(main, "registry", IntakeRegistry(main.new_controller))
    yield fresh_identity, fresh_store
    main.registry.clear()


@pytest.fixture
def client(app_backends):
    """FastAPI TestClient over fresh backends."""
    return TestClient(main.app)


@pytest.fixture
def intake_url(client):
    """URL of a newly opened intake form."""
    intake_id = client.post("/intakes").json()["intakeId"]
    return f"/intakes/{intake_id}"
