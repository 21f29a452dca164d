"""
Pytest fixtures for CoachHub backend tests.

Provides test database setup, tenant fixtures (two organizations with their
users), a recording notifier, and helpers for the trusted actor headers.
"""

import threading
from datetime import datetime

import pytest
from coachhub import create_app
from coachhub.extensions import db
from coachhub.models import Organization, User
from coachhub.services.notifier import EXTENSION_KEY
from coachhub.services.tenant_service import ActorContext


class RecordingNotifier:
    """Collects (event_type, payload) tuples instead of delivering them."""

    def __init__(self):
        self.events = []

    def notify(self, event_type, payload):
        self.events.append((event_type, payload))

    def of_type(self, event_type):
        return [payload for kind, payload in self.events if kind == event_type]


class FailingNotifier:
    def notify(self, event_type, payload):
        raise RuntimeError("notification backend unavailable")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WRITE_RETRY_ATTEMPTS': 3,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Separate application on a file-backed SQLite database.

    Threads get their own connections here, which the in-memory database
    cannot provide.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WRITE_RETRY_ATTEMPTS': 10,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """Swap in a recording notifier for the duration of a test."""
    previous = app.extensions.get(EXTENSION_KEY)
    recorder = RecordingNotifier()
    app.extensions[EXTENSION_KEY] = recorder
    yield recorder
    app.extensions[EXTENSION_KEY] = previous


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Ventures", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Accelerator", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


def _make_user(db_session, org, role, email, hourly_rate_cents=None, is_active=True):
    user = User(
        org_id=org.id,
        email=email,
        role=role,
        first_name=role.title(),
        last_name=org.code,
        hourly_rate_cents=hourly_rate_cents,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(org, role, email, hourly_rate_cents=None, is_active=True)."""
    def factory(org, role, email, **kwargs):
        return _make_user(db_session, org, role, email, **kwargs)
    return factory


@pytest.fixture(scope='function')
def admin_a(db_session, org_a):
    return _make_user(db_session, org_a, "admin", "admin@acme.test")


@pytest.fixture(scope='function')
def manager_a(db_session, org_a):
    return _make_user(db_session, org_a, "manager", "manager@acme.test")


@pytest.fixture(scope='function')
def coach_a(db_session, org_a):
    """Coach billed at $100.00 per hour."""
    return _make_user(db_session, org_a, "coach", "coach@acme.test", hourly_rate_cents=10000)


@pytest.fixture(scope='function')
def coach_a2(db_session, org_a):
    return _make_user(db_session, org_a, "coach", "coach2@acme.test", hourly_rate_cents=8000)


@pytest.fixture(scope='function')
def entrepreneur_a(db_session, org_a):
    return _make_user(db_session, org_a, "entrepreneur", "founder@acme.test")


@pytest.fixture(scope='function')
def manager_b(db_session, org_b):
    return _make_user(db_session, org_b, "manager", "manager@beta.test")


@pytest.fixture(scope='function')
def coach_b(db_session, org_b):
    return _make_user(db_session, org_b, "coach", "coach@beta.test", hourly_rate_cents=5000)


@pytest.fixture(scope='function')
def file_tenant(file_app):
    """Actors by role for one organization seeded into file_app's database."""
    with file_app.app_context():
        org = Organization(name="Org C - Gamma Labs", code="GAMMA", is_active=True)
        db.session.add(org)
        db.session.commit()
        return {
            "manager": actor_for(_make_user(db.session, org, "manager", "manager@gamma.test")),
            "coach": actor_for(_make_user(db.session, org, "coach", "coach@gamma.test", hourly_rate_cents=10000)),
            "entrepreneur": actor_for(_make_user(db.session, org, "entrepreneur", "founder@gamma.test")),
        }


def actor_for(user):
    """ActorContext for a persisted user."""
    return ActorContext(user_id=user.id, role=user.role, org_id=user.org_id)


def headers_for(user):
    """Trusted actor headers as forwarded by the gateway."""
    return {
        "X-Actor-Id": str(user.id),
        "X-Actor-Role": user.role,
        "X-Organization-Id": str(user.org_id),
    }


def at(hour, minute=0, day=2):
    """Naive UTC datetime on 2026-03-<day>."""
    return datetime(2026, 3, day, hour, minute)


def run_in_threads(app, workers, func):
    """
    Call func(index) from `workers` threads released together.

    Returns one outcome per thread: "ok" or the raised exception's class name.
    """
    barrier = threading.Barrier(workers)
    outcomes = [None] * workers

    def worker(index):
        with app.app_context():
            try:
                barrier.wait()
                func(index)
                outcomes[index] = "ok"
            except Exception as exc:
                outcomes[index] = type(exc).__name__
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes
