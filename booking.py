# booking.py
"""Slot generation and the appointment status machine.

Every status change is a single conditional UPDATE on the expected current
status, so two requests racing for the same row cannot both win.
"""
import logging
from collections import namedtuple
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from errors import (
    CancellationPolicyError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from models import (
    INACTIVE_STATUSES,
    WEEKDAYS,
    Appointment,
    AppointmentStatus,
    Doctor,
    Role,
    WorkingHour,
    db,
)

logger = logging.getLogger(__name__)

AVAILABLE = AppointmentStatus.AVAILABLE
PENDING = AppointmentStatus.PENDING
CONFIRMED = AppointmentStatus.CONFIRMED
REJECTED = AppointmentStatus.REJECTED
CANCELLED = AppointmentStatus.CANCELLED
COMPLETED = AppointmentStatus.COMPLETED

MAX_REVIEW_LENGTH = 500

SlotBatch = namedtuple("SlotBatch", ["created", "skipped"])


class BookingPolicy(
    namedtuple(
        "BookingPolicy",
        [
            "slot_minutes",
            "cancellation_lead",
            "require_slot_approval",
            "one_booking_per_doctor_per_day",
        ],
    )
):
    @classmethod
    def from_config(cls, config):
        slot_minutes = int(config.get("SLOT_MINUTES", 30))
        if slot_minutes < 1:
            raise ValueError(f"SLOT_MINUTES must be at least 1, got {slot_minutes}")
        return cls(
            slot_minutes=slot_minutes,
            cancellation_lead=timedelta(hours=float(config.get("CANCELLATION_LEAD_HOURS", 24))),
            require_slot_approval=bool(config.get("SLOTS_REQUIRE_APPROVAL", False)),
            one_booking_per_doctor_per_day=bool(config.get("ONE_BOOKING_PER_DOCTOR_PER_DAY", True)),
        )


DEFAULT_POLICY = BookingPolicy(30, timedelta(hours=24), False, True)

# (from, to) -> roles allowed to make the move
TRANSITIONS = {
    (AVAILABLE, PENDING): {Role.PATIENT},
    (PENDING, CONFIRMED): {Role.ADMIN},
    (PENDING, REJECTED): {Role.ADMIN},
    (PENDING, AVAILABLE): {Role.ADMIN},
    (CONFIRMED, CANCELLED): {Role.PATIENT, Role.ADMIN},
    (CONFIRMED, COMPLETED): {Role.DOCTOR, Role.ADMIN},
    (AVAILABLE, CANCELLED): {Role.ADMIN},
    (PENDING, CANCELLED): {Role.ADMIN},
}


def check_transition(current, target, role):
    if role not in TRANSITIONS.get((current, target), ()):
        logger.warning("Rejected %s -> %s by %s", current.value, target.value, role.value)
        raise InvalidTransitionError(
            f"A {role.value} cannot move an appointment from {current.value} to {target.value}."
        )


def _truncate(value):
    return value.replace(second=0, microsecond=0)


def _get_appointment(appointment_id):
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found.")
    return appointment


def _get_owned(appointment_id, identity):
    """Load an appointment the caller may act on; other users' rows look missing."""
    appointment = _get_appointment(appointment_id)
    if identity.role is Role.PATIENT and appointment.patient_id != identity.user_id:
        raise NotFoundError("Appointment not found.")
    if identity.role is Role.DOCTOR and appointment.doctor_id != identity.doctor_id:
        raise NotFoundError("Appointment not found.")
    return appointment


def _apply(appointment, expected, values, *criteria, message=None):
    updated = Appointment.query.filter(
        Appointment.id == appointment.id, Appointment.status == expected, *criteria
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.session.rollback()
        raise ConflictError(
            message or "This appointment was changed by someone else. Please refresh and try again."
        )


def _reopen(appointment, now):
    """Put a fresh available slot back at the same doctor/date/time."""
    if appointment.starts_at <= now:
        return None
    slot = Appointment(
        doctor_id=appointment.doctor_id,
        date=appointment.date,
        time_slot=appointment.time_slot,
        status=AVAILABLE,
        patient_id=None,
    )
    db.session.add(slot)
    return slot


def working_hours_for(doctor, day):
    """The (start, end) a doctor declared for ``day``'s weekday, if any."""
    weekday = WEEKDAYS[day.weekday()]
    hour = WorkingHour.query.filter_by(doctor_id=doctor.id, day_of_week=weekday).first()
    if hour is None:
        return None
    return hour.start_time, hour.end_time


def generate_slots(doctor_id, day, start_time=None, end_time=None, now=None, policy=DEFAULT_POLICY):
    """Expand ``start_time``..``end_time`` on ``day`` into fixed-length slots.

    Slots already held by an active appointment are skipped. Without an
    explicit range the doctor's working hours for that weekday are used.
    Returns a ``SlotBatch`` of the created appointments and the skip count.
    """
    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFoundError("Doctor not found.")

    if (start_time is None) != (end_time is None):
        raise ValidationError("Give both a start and an end time, or neither.")
    if start_time is None:
        hours = working_hours_for(doctor, day)
        if hours is None:
            raise ValidationError("Choose a start and end time, or set working hours for this day.")
        start_time, end_time = hours

    now = now or datetime.now()
    start_time, end_time = _truncate(start_time), _truncate(end_time)
    if end_time <= start_time:
        raise ValidationError("End time must be after start time.")
    if day < now.date():
        raise ValidationError("You cannot add slots in the past.")
    if day == now.date() and start_time < _truncate(now.time()):
        raise ValidationError("Start time has already passed today.")

    taken = {
        a.time_slot
        for a in Appointment.query.filter(
            Appointment.doctor_id == doctor.id,
            Appointment.date == day,
            Appointment.status.notin_(INACTIVE_STATUSES),
        )
    }
    status = PENDING if policy.require_slot_approval else AVAILABLE
    step = timedelta(minutes=policy.slot_minutes)

    created, skipped = [], 0
    current = datetime.combine(day, start_time)
    end = datetime.combine(day, end_time)
    while current < end:
        if current.time() in taken:
            skipped += 1
        else:
            created.append(
                Appointment(
                    doctor_id=doctor.id,
                    date=day,
                    time_slot=current.time(),
                    status=status,
                    patient_id=None,
                )
            )
        current += step

    if created:
        db.session.add_all(created)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Some of these slots were just added by another request. Please try again.")

    logger.info(
        "Doctor %s: %d slot(s) created, %d skipped on %s", doctor.id, len(created), skipped, day
    )
    return SlotBatch(created, skipped)


def book(appointment_id, identity, now=None, policy=DEFAULT_POLICY):
    check_transition(AVAILABLE, PENDING, identity.role)
    appointment = _get_appointment(appointment_id)
    if appointment.status is not AVAILABLE or appointment.is_booked:
        raise ConflictError("This appointment is no longer available.")

    now = now or datetime.now()
    if appointment.starts_at < now:
        raise ValidationError("You cannot book a past or expired appointment.")

    if policy.one_booking_per_doctor_per_day:
        clash = Appointment.query.filter(
            Appointment.patient_id == identity.user_id,
            Appointment.doctor_id == appointment.doctor_id,
            Appointment.date == appointment.date,
            Appointment.status.in_((PENDING, CONFIRMED)),
        ).first()
        if clash is not None:
            raise ConflictError("You already have a booking with this doctor on that day.")

    _apply(
        appointment,
        AVAILABLE,
        {Appointment.status: PENDING, Appointment.patient_id: identity.user_id},
        Appointment.patient_id.is_(None),
        message="This appointment is no longer available.",
    )
    db.session.commit()
    logger.info("Patient %s booked appointment %s", identity.user_id, appointment.id)
    return appointment


def confirm(appointment_id, identity):
    appointment = _get_appointment(appointment_id)
    check_transition(appointment.status, CONFIRMED, identity.role)
    if not appointment.is_booked:
        raise InvalidTransitionError("Only booked appointments can be confirmed.")
    _apply(appointment, PENDING, {Appointment.status: CONFIRMED})
    db.session.commit()
    logger.info("Appointment %s confirmed by user %s", appointment.id, identity.user_id)
    return appointment


def reject(appointment_id, identity, now=None):
    """Reject a pending booking or a pending doctor-published slot."""
    appointment = _get_appointment(appointment_id)
    check_transition(appointment.status, REJECTED, identity.role)
    was_booked = appointment.is_booked
    _apply(appointment, PENDING, {Appointment.status: REJECTED})
    if was_booked:
        _reopen(appointment, now or datetime.now())
    db.session.commit()
    logger.info("Appointment %s rejected by user %s", appointment.id, identity.user_id)
    return appointment


def approve_slot(appointment_id, identity):
    appointment = _get_appointment(appointment_id)
    check_transition(appointment.status, AVAILABLE, identity.role)
    if appointment.is_booked:
        raise InvalidTransitionError("Booked appointments are confirmed, not approved.")
    _apply(appointment, PENDING, {Appointment.status: AVAILABLE}, Appointment.patient_id.is_(None))
    db.session.commit()
    logger.info("Slot %s approved by user %s", appointment.id, identity.user_id)
    return appointment


def cancel(appointment_id, identity, now=None, policy=DEFAULT_POLICY):
    appointment = _get_owned(appointment_id, identity)
    check_transition(appointment.status, CANCELLED, identity.role)

    now = now or datetime.now()
    if identity.role is Role.PATIENT and appointment.starts_at - now < policy.cancellation_lead:
        hours = policy.cancellation_lead.total_seconds() / 3600
        raise CancellationPolicyError(
            f"Appointments can only be cancelled at least {hours:g} hours in advance."
        )

    was_booked = appointment.is_booked
    _apply(appointment, appointment.status, {Appointment.status: CANCELLED})
    if was_booked:
        _reopen(appointment, now)
    db.session.commit()
    logger.info("Appointment %s cancelled by user %s", appointment.id, identity.user_id)
    return appointment


def complete(appointment_id, identity, now=None):
    appointment = _get_owned(appointment_id, identity)
    check_transition(appointment.status, COMPLETED, identity.role)
    if appointment.starts_at > (now or datetime.now()):
        raise ValidationError("This appointment has not taken place yet.")
    _apply(appointment, CONFIRMED, {Appointment.status: COMPLETED})
    db.session.commit()
    logger.info("Appointment %s completed by user %s", appointment.id, identity.user_id)
    return appointment


def rate(appointment_id, identity, rating, comment=None, now=None):
    if identity.role is not Role.PATIENT:
        raise InvalidTransitionError("Only patients can rate appointments.")
    appointment = _get_owned(appointment_id, identity)
    if appointment.status is not COMPLETED:
        raise InvalidTransitionError("Only completed appointments can be rated.")
    if appointment.rating is not None:
        raise ConflictError("This appointment has already been rated.")

    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be a whole number from 1 to 5.")
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be a whole number from 1 to 5.")
    comment = (comment or "").strip() or None
    if comment and len(comment) > MAX_REVIEW_LENGTH:
        raise ValidationError(f"Reviews are limited to {MAX_REVIEW_LENGTH} characters.")

    _apply(
        appointment,
        COMPLETED,
        {
            Appointment.rating: rating,
            Appointment.review_comment: comment,
            Appointment.rated_at: now or datetime.now(),
        },
        Appointment.rating.is_(None),
        message="This appointment has already been rated.",
    )
    db.session.commit()
    logger.info("Appointment %s rated %d by patient %s", appointment.id, rating, identity.user_id)
    return appointment


def delete_slot(appointment_id, identity):
    """Remove an unbooked available slot; booked rows are only ever cancelled."""
    if identity.role not in (Role.DOCTOR, Role.ADMIN):
        raise InvalidTransitionError("Only doctors and admins can delete slots.")
    appointment = _get_owned(appointment_id, identity)
    deleted = Appointment.query.filter(
        Appointment.id == appointment.id,
        Appointment.status == AVAILABLE,
        Appointment.patient_id.is_(None),
    ).delete()
    if deleted != 1:
        db.session.rollback()
        raise InvalidTransitionError("Appointment not found or cannot be deleted.")
    db.session.commit()
    logger.info("Slot %s deleted by user %s", appointment_id, identity.user_id)


def transition(appointment_id, identity, target, now=None, policy=DEFAULT_POLICY):
    """Move an appointment to ``target`` using the matching operation."""
    if target is PENDING:
        return book(appointment_id, identity, now=now, policy=policy)
    if target is CONFIRMED:
        return confirm(appointment_id, identity)
    if target is REJECTED:
        return reject(appointment_id, identity, now=now)
    if target is AVAILABLE:
        return approve_slot(appointment_id, identity)
    if target is CANCELLED:
        return cancel(appointment_id, identity, now=now, policy=policy)
    if target is COMPLETED:
        return complete(appointment_id, identity, now=now)
    raise InvalidTransitionError(f"Unknown status: {target}")
