from flask import session
from flask_login import login_user
from werkzeug.security import generate_password_hash

from identity import (
    Identity,
    dashboard_endpoint,
    forget_identity,
    remember_identity,
    resolve_identity,
    role_required,
)
from models import Role, User, db


def get_user(user_id):
    return db.session.get(User, user_id)


@role_required(Role.DOCTOR)
def doctor_view(identity, extra):
    return identity, extra


@role_required(Role.ADMIN, json=True)
def admin_api(identity):
    return identity


def test_anonymous_request_has_no_identity(app):
    with app.test_request_context("/"):
        assert resolve_identity() is None
        assert dashboard_endpoint(None) == "login"


def test_logged_in_user(app, doctor):
    with app.test_request_context("/"):
        login_user(get_user(doctor.user_id))
        assert resolve_identity() == doctor
        assert dashboard_endpoint(doctor) == "doctor_dashboard"


def test_session_fallback(app, patient):
    with app.test_request_context("/"):
        remember_identity(get_user(patient.user_id))
        assert session["role"] == "patient"
        assert resolve_identity() == Identity(patient.user_id, Role.PATIENT, None)

        forget_identity()
        assert resolve_identity() is None


def test_session_fallback_checks_the_role(app, patient):
    with app.test_request_context("/"):
        session["user_id"] = patient.user_id
        session["role"] = "admin"
        assert resolve_identity() is None


def test_garbage_session_is_anonymous(app):
    with app.test_request_context("/"):
        session["user_id"] = "not-a-number"
        session["role"] = "patient"
        assert resolve_identity() is None


def test_doctor_without_profile_is_anonymous(app):
    with app.app_context():
        user = User(
            name="Lost", email="lost@example.com", password=generate_password_hash("x"), role=Role.DOCTOR
        )
        db.session.add(user)
        db.session.commit()
        user_id = user.id

    with app.test_request_context("/"):
        login_user(get_user(user_id))
        assert resolve_identity() is None


def test_role_required_passes_identity(app, doctor):
    with app.test_request_context("/"):
        login_user(get_user(doctor.user_id))
        assert doctor_view("x") == (doctor, "x")


def test_role_required_redirects_other_roles(app, patient):
    with app.test_request_context("/"):
        login_user(get_user(patient.user_id))
        response = doctor_view("x")
        assert response.status_code == 302
        assert response.location.endswith("/login")


def test_role_required_json(app, admin, patient):
    with app.test_request_context("/"):
        response, status = admin_api()
        assert status == 401
        assert response.get_json()["success"] is False

    with app.test_request_context("/"):
        login_user(get_user(admin.user_id))
        assert admin_api() == admin
