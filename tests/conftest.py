"""
Shared pytest fixtures for the MOC Studio test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_profile / owner / approvers / admin: Profile factories
    - facility: Pre-created Facility entity
    - draft / submitted: MOC requests in a known state, created via services
"""

import pytest

from mocstudio import create_app
from mocstudio.models import db as _db
from mocstudio.models.auth import Profile
from mocstudio.models.moc import Facility


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


def headers(user):
    """Request headers identifying ``user`` (a Profile or an id)."""
    user_id = user if isinstance(user, str) else user.id
    return {"X-User-Id": user_id}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_profile():
    """Factory: make_profile("a@plant.test", role="administrator") → Profile."""
    counter = {"n": 0}

    def _make(email=None, role="process_engineer", full_name=None, is_active=True):
        counter["n"] += 1
        profile = Profile(
            email=email or f"user{counter['n']}@plant.test",
            full_name=full_name or f"User {counter['n']}",
            role=role,
            is_active=is_active,
        )
        _db.session.add(profile)
        _db.session.commit()
        return profile

    return _make


@pytest.fixture()
def owner(make_profile):
    return make_profile("owner@plant.test", role="process_engineer", full_name="Olga Owner")


@pytest.fixture()
def admin(make_profile):
    return make_profile("admin@plant.test", role="administrator", full_name="Ada Admin")


@pytest.fixture()
def approvers(make_profile):
    """Three approval-committee members."""
    return [
        make_profile(f"reviewer{i}@plant.test", role="approval_committee", full_name=f"Reviewer {i}")
        for i in range(1, 4)
    ]


@pytest.fixture()
def facility():
    fac = Facility(name="North Refinery", code="NR1", location="Rotterdam")
    _db.session.add(fac)
    _db.session.commit()
    return fac


def complete_payload(facility, **overrides):
    """Body for a request that passes every submission guard."""
    payload = {
        "title": "Replace feed pump P-101",
        "description": "Swap the worn centrifugal pump for a sealless model.",
        "justification": "Repeated seal failures on P-101.",
        "facility_id": facility.id,
        "change_type": "equipment_replacement",
        "priority": "high",
        "affected_systems": ["Feed system"],
        "risk_probability": 3,
        "risk_severity": 4,
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def draft(owner, facility):
    """A complete draft request owned by ``owner``."""
    from mocstudio.services.moc_lifecycle import create_request

    moc = create_request(complete_payload(facility), owner.id)
    _db.session.commit()
    return moc


@pytest.fixture()
def submitted(draft, owner, approvers):
    """``draft`` submitted to the three ``approvers``."""
    from mocstudio.services.moc_lifecycle import submit_request

    moc = submit_request(draft.id, owner.id, [a.id for a in approvers])
    _db.session.commit()
    return moc


@pytest.fixture()
def auth():
    """auth(user) → headers dict for the test client."""
    return headers


@pytest.fixture()
def payload(facility):
    """payload(**overrides) → complete request body on ``facility``."""
    def _payload(**overrides):
        return complete_payload(facility, **overrides)
    return _payload
