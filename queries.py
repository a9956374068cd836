# queries.py
"""Read-only queries, each scoped to the caller's role.

Patient and doctor queries always filter on the resolved identity; only the
admin helpers see every row.
"""
from collections import namedtuple
from datetime import datetime, timedelta

import pandas as pd
from sqlalchemy import and_, or_
from sqlalchemy.orm import joinedload

from errors import UnauthorizedError, ValidationError
from models import Appointment, AppointmentStatus, Doctor, Role, User

EXPORT_COLUMNS = ["Date", "Time", "Doctor", "Patient", "Status", "Rating"]

Week = namedtuple("Week", ["start", "end", "appointments"])


def _require(identity, role):
    if identity is None or identity.role is not role:
        raise UnauthorizedError()


def _with_people(query):
    return query.options(
        joinedload(Appointment.doctor).joinedload(Doctor.user),
        joinedload(Appointment.patient),
    )


def _upcoming(now):
    today = now.date()
    return or_(
        Appointment.date > today,
        and_(Appointment.date == today, Appointment.time_slot >= now.time()),
    )


# ---------------- Patient ----------------

def available_appointments(page=1, per_page=10, specialty=None, doctor_id=None, now=None):
    now = now or datetime.now()
    query = _with_people(Appointment.query).filter(
        Appointment.status == AppointmentStatus.AVAILABLE, _upcoming(now)
    )
    if doctor_id is not None:
        query = query.filter(Appointment.doctor_id == doctor_id)
    if specialty is not None:
        query = query.join(Appointment.doctor).filter(Doctor.specialty == specialty)
    query = query.order_by(Appointment.date, Appointment.time_slot)
    return query.paginate(page=page, per_page=per_page, error_out=False)


def available_slots(doctor_id, day, now=None):
    now = now or datetime.now()
    if day < now.date():
        raise ValidationError("Cannot book appointments in the past.")
    query = Appointment.query.filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == day,
        Appointment.status == AppointmentStatus.AVAILABLE,
    )
    if day == now.date():
        query = query.filter(Appointment.time_slot >= now.time())
    return query.order_by(Appointment.time_slot).all()


def doctors_by_specialty(specialty):
    return (
        Doctor.query.options(joinedload(Doctor.user))
        .join(Doctor.user)
        .filter(Doctor.specialty == specialty)
        .order_by(User.name)
        .all()
    )


def patient_appointments(identity, page=1, per_page=10):
    _require(identity, Role.PATIENT)
    query = (
        _with_people(Appointment.query)
        .filter(Appointment.patient_id == identity.user_id)
        .order_by(Appointment.date.desc(), Appointment.time_slot.desc())
    )
    return query.paginate(page=page, per_page=per_page, error_out=False)


# ---------------- Doctor ----------------

def doctor_appointments(identity):
    _require(identity, Role.DOCTOR)
    return (
        _with_people(Appointment.query)
        .filter(Appointment.doctor_id == identity.doctor_id)
        .order_by(Appointment.date.desc(), Appointment.time_slot)
        .all()
    )


def doctor_today(identity, today=None):
    _require(identity, Role.DOCTOR)
    today = today or datetime.now().date()
    return (
        _with_people(Appointment.query)
        .filter(
            Appointment.doctor_id == identity.doctor_id,
            Appointment.date == today,
            Appointment.status.in_((AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)),
        )
        .order_by(Appointment.time_slot)
        .all()
    )


def doctor_week(identity, today=None):
    """The doctor's appointments from Sunday through Saturday of this week."""
    _require(identity, Role.DOCTOR)
    today = today or datetime.now().date()
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    end = start + timedelta(days=7)
    appointments = (
        _with_people(Appointment.query)
        .filter(
            Appointment.doctor_id == identity.doctor_id,
            Appointment.date >= start,
            Appointment.date < end,
        )
        .order_by(Appointment.date, Appointment.time_slot)
        .all()
    )
    return Week(start, end, appointments)


# ---------------- Admin ----------------

def all_doctors():
    return Doctor.query.options(joinedload(Doctor.user)).join(Doctor.user).order_by(User.name).all()


def all_appointments(status=None):
    query = _with_people(Appointment.query)
    if status is not None:
        query = query.filter(Appointment.status == status)
    return query.order_by(Appointment.date.desc(), Appointment.time_slot.desc()).all()


def pending_slots():
    return (
        _with_people(Appointment.query)
        .filter(
            Appointment.status == AppointmentStatus.PENDING,
            Appointment.patient_id.is_(None),
        )
        .order_by(Appointment.date, Appointment.time_slot)
        .all()
    )


def pending_bookings():
    return (
        _with_people(Appointment.query)
        .filter(
            Appointment.status == AppointmentStatus.PENDING,
            Appointment.patient_id.isnot(None),
        )
        .order_by(Appointment.date, Appointment.time_slot)
        .all()
    )


def export_appointments_csv():
    rows = [
        {
            "Date": a.date.isoformat(),
            "Time": a.time_slot.strftime("%H:%M"),
            "Doctor": a.doctor.name if a.doctor else "",
            "Patient": a.patient.name if a.patient else "",
            "Status": a.status.value.capitalize(),
            "Rating": a.rating if a.rating is not None else "",
        }
        for a in _with_people(Appointment.query)
        .order_by(Appointment.date, Appointment.time_slot)
        .all()
    ]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS).to_csv(index=False)
