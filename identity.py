# identity.py
"""Who is making the current request.

Flask-Login's ``current_user`` is the primary source. The plain session keys
written at login (``user_id``/``role``) are a fallback for requests where the
login cookie is incomplete. Views never read either directly: they receive an
``Identity`` through ``role_required``.
"""
import logging
from collections import namedtuple
from functools import wraps

from flask import flash, jsonify, redirect, session, url_for
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from errors import UnauthorizedError
from models import Role, User, db

logger = logging.getLogger(__name__)

Identity = namedtuple("Identity", ["user_id", "role", "doctor_id"])

# Where each role lands after login
DASHBOARDS = {
    Role.PATIENT: "patient_dashboard",
    Role.DOCTOR: "doctor_dashboard",
    Role.ADMIN: "admin_dashboard",
}


def _identity_for(user):
    doctor_id = None
    if user.role is Role.DOCTOR:
        if user.doctor_profile is None:
            logger.warning("Doctor record not found for user %s", user.id)
            return None
        doctor_id = user.doctor_profile.id
    return Identity(user.id, user.role, doctor_id)


def resolve_identity():
    """Return the current ``Identity`` or ``None`` when unauthenticated.

    Never raises; lookup failures are logged and treated as anonymous.
    """
    try:
        if current_user.is_authenticated:
            return _identity_for(current_user)

        user_id = session.get("user_id")
        role = session.get("role")
        if user_id and role:
            user = db.session.get(User, int(user_id))
            if user is not None and user.role.value == role:
                logger.warning("Identity for user %s resolved from session fallback", user_id)
                return _identity_for(user)
    except (SQLAlchemyError, ValueError, TypeError):
        logger.exception("Error resolving identity")
    return None


def remember_identity(user):
    session.permanent = True
    session["user_id"] = user.id
    session["role"] = user.role.value
    session["user_name"] = user.name


def forget_identity():
    session.clear()


def dashboard_endpoint(identity):
    if identity is None:
        return "login"
    return DASHBOARDS.get(identity.role, "login")


def role_required(*roles, json=False):
    """Resolve the caller and pass it to the view as its first argument.

    Callers without one of ``roles`` are sent to the login page, or get a
    401 JSON payload when ``json`` is set.
    """

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            identity = resolve_identity()
            if identity is None or identity.role not in roles:
                if json:
                    return jsonify(success=False, message=UnauthorizedError.default_message), 401
                flash(UnauthorizedError.default_message, "warning")
                return redirect(url_for("login"))
            return view(identity, *args, **kwargs)

        return wrapped

    return decorator
