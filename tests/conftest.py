"""
Shared pytest fixtures for the OpsDesk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - notifier: Recording fake installed on the app's notification dispatcher
    - admin / auth_headers: an active AdminUser and its bearer header
    - file_app: a second app on an on-disk SQLite file, for multi-threaded tests
"""

import threading
from dataclasses import dataclass

import pytest

from opsdesk import create_app
from opsdesk.config import TestingConfig
from opsdesk.core.exceptions import NotificationError
from opsdesk.models import db as _db
from opsdesk.models.auth import AdminUser
from opsdesk.services.email_templates import render
from opsdesk.services.jwt_service import generate_access_token
from opsdesk.utils.crypto import hash_password

ADMIN_EMAIL = "admin@opsdesk.test"
ADMIN_PASSWORD = "Str0ngPassw0rd"


# ── Fake notification transport ──────────────────────────────────────────


@dataclass
class SentMessage:
    template: str
    recipient: str
    payload: dict
    subject: str


class RecordingNotifier:
    """Renders every message (so payload keys are exercised) and keeps it.

    ``fail_templates`` makes matching sends raise; ``hold`` makes sends (of the
    given templates, or all of them) block until ``release()`` is called.
    """

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.fail_templates: set[str] = set()
        self._gate: threading.Event | None = None
        self._held: set[str] = set()

    def send(self, template, recipient, payload):
        if self._gate is not None and (not self._held or template in self._held):
            self._gate.wait(timeout=5)
        if template in self.fail_templates:
            raise NotificationError(template, recipient, "SMTP connection refused")
        subject, _html = render(template, payload)
        self.sent.append(SentMessage(template, recipient, dict(payload), subject))
        return subject

    def hold(self, *templates):
        self._gate = threading.Event()
        self._held = set(templates)

    def release(self):
        if self._gate is not None:
            self._gate.set()

    @property
    def templates(self) -> list[str]:
        return [m.template for m in self.sent]

    def to(self, recipient) -> list[SentMessage]:
        return [m for m in self.sent if m.recipient == recipient]


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


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """App bound to a SQLite file so every thread gets its own connection.

    The in-memory database behind ``app`` is one shared connection, which
    cannot host real concurrent writers.
    """
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'opsdesk.db'}")
    application = create_app("testing", notifier=RecordingNotifier())
    yield application
    application.extensions["notifications"].shutdown()
    with application.app_context():
        _db.engine.dispose()


@pytest.fixture()
def notifier(app):
    """Swap the dispatcher's transport for a RecordingNotifier."""
    dispatcher = app.extensions["notifications"]
    original = dispatcher.notifier
    fake = RecordingNotifier()
    dispatcher.notifier = fake
    yield fake
    fake.release()
    dispatcher.notifier = original


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin():
    """Create and return an active AdminUser."""
    user = AdminUser(
        email=ADMIN_EMAIL,
        password_hash=hash_password(ADMIN_PASSWORD),
        full_name="Desk Admin",
    )
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def auth_headers(admin):
    """Authorization header for the ``admin`` fixture."""
    return {"Authorization": f"Bearer {generate_access_token(admin.id, admin.email)}"}


# ── Payload builders ─────────────────────────────────────────────────────


def request_payload(**overrides):
    data = {
        "client_name": "Jane Doe",
        "client_email": "jane@example.com",
        "client_phone": "0712345678",
        "company_name": "Doe Traders",
        "project_type": "Business Website",
        "requirements": "A five page site with a contact form and blog.",
        "budget_range": "KES 50,000 - 100,000",
    }
    data.update(overrides)
    return data


def ticket_payload(**overrides):
    data = {
        "full_name": "Sam Client",
        "email": "sam@example.com",
        "phone": "+254712345678",
        "subject": "Checkout page fails",
        "description": "Clicking pay shows a blank page since this morning.",
        "category": "bug",
    }
    data.update(overrides)
    return data


def application_payload(**overrides):
    data = {
        "full_name": "Ada Applicant",
        "email": "ada@example.com",
        "phone": "0722000111",
        "location": "Nairobi",
        "role": "developer",
        "specialization": "Backend APIs",
        "experience_level": "intermediate",
        "years_of_experience": 4,
        "portfolio_url": "https://ada.dev",
        "github_url": "https://github.com/ada",
        "skills": ["Python", "SQL"],
        "technologies": ["Flask", "PostgreSQL"],
        "notable_projects": [
            {"title": "Payments gateway", "url": "https://ada.dev/pay", "technologies": ["Flask"]},
        ],
        "why_join": "I enjoy building reliable backends for small businesses.",
        "availability": "two_weeks",
    }
    data.update(overrides)
    return data
