import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import date, datetime  # noqa: E402

import pytest  # noqa: E402

import accounts  # noqa: E402
from app import app as flask_app  # noqa: E402
from identity import Identity  # noqa: E402
from models import Role, Specialty, db  # noqa: E402

PASSWORD = "secret123"

# 2024-06-01 is a Saturday
DAY = date(2024, 6, 1)
NOW = datetime(2024, 5, 30, 12, 0)


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(
        TESTING=True,
        UPLOAD_FOLDER=str(tmp_path / "uploads"),
        SLOTS_REQUIRE_APPROVAL=False,
        ONE_BOOKING_PER_DOCTOR_PER_DAY=True,
        CANCELLATION_LEAD_HOURS=24,
        SUGGESTION_URL="http://suggestions.test/api/generate",
    )
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """An app context for tests that call the service modules directly."""
    with app.app_context():
        yield
        db.session.remove()


def _patient(app, name, email):
    with app.app_context():
        user = accounts.register_patient(name, email, PASSWORD)
        return Identity(user.id, Role.PATIENT, None)


@pytest.fixture
def patient(app):
    return _patient(app, "Pat Patient", "pat@example.com")


@pytest.fixture
def other_patient(app):
    return _patient(app, "Olive Other", "olive@example.com")


@pytest.fixture
def doctor(app):
    with app.app_context():
        d = accounts.save_doctor(
            "Dee Doctor", "dee@example.com", PASSWORD, Specialty.CARDIOLOGY, short_cv="Heart things"
        )
        return Identity(d.user_id, Role.DOCTOR, d.id)


@pytest.fixture
def other_doctor(app):
    with app.app_context():
        d = accounts.save_doctor("Sam Skin", "sam@example.com", PASSWORD, Specialty.DERMATOLOGY)
        return Identity(d.user_id, Role.DOCTOR, d.id)


@pytest.fixture
def admin(app):
    with app.app_context():
        user = accounts.create_admin("Ada Admin", "ada@example.com", PASSWORD)
        return Identity(user.id, Role.ADMIN, None)


def login(client, email, password=PASSWORD):
    return client.post("/login", data={"email": email, "password": password})


@pytest.fixture
def client_for(app):
    """Return a logged-in test client for the given email."""

    def make(email):
        client = app.test_client()
        login(client, email)
        return client

    return make
