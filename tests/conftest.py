"""
Shared pytest fixtures for the Patient Enrollment Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_run: factory for AutomationRun rows already in the ledger
    - fake_http: scripted stand-in for requests.Session behind the chain gateway
"""

import pytest
import requests

import app.integrations.chain_gateway as gw_module
from app import create_app
from app.integrations.chain_gateway import ChainGateway
from app.models import db as _db
from app.models.automation import AutomationRun


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_run():
    """Insert an AutomationRun directly and return it.

    Usage:
        run = make_run(run_identifier="run-abc-123")
    """
    def _make(run_identifier=None, chain_name="eligibility_check", status="pending", **kwargs):
        run = AutomationRun(
            chain_name=chain_name,
            trigger_email=kwargs.pop("trigger_email", "intake@clinic.test"),
            request_payload=kwargs.pop("request_payload", {"chain_to_run": chain_name}),
            run_identifier=run_identifier,
            status=status,
            raw_response=kwargs.pop("raw_response", ""),
            **kwargs,
        )
        _db.session.add(run)
        _db.session.commit()
        return run
    return _make


class FakeResponse:
    """Minimal requests.Response stand-in."""

    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400


class FakeHTTPSession:
    """Scripted requests.Session: returns ``response`` or raises ``exc`` on post()."""

    def __init__(self):
        self.response = FakeResponse(200, "{}")
        self.exc = None
        self.calls = []

    def reply(self, status_code=200, text="{}"):
        self.response = FakeResponse(status_code, text)
        self.exc = None

    def fail(self, exc):
        self.exc = exc

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


@pytest.fixture()
def fake_http(monkeypatch):
    """Route the module-level chain gateway through a FakeHTTPSession."""
    fake = FakeHTTPSession()
    monkeypatch.setattr(gw_module, "chain_gateway", ChainGateway(session=fake))
    return fake


@pytest.fixture()
def timeout_error():
    return requests.Timeout("read timed out")
