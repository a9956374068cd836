# accounts.py
import logging

from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import ConflictError, NotFoundError, ValidationError
from models import WEEKDAYS, Doctor, Role, Specialty, User, WorkingHour, db
from photos import allowed_photo, delete_doctor_photo, save_doctor_photo

logger = logging.getLogger(__name__)


def normalize_email(email):
    return (email or "").lower().strip()


def _validate_user_fields(name, email, password, password_required=True):
    if not name or not email or (password_required and not password):
        raise ValidationError("Please fill all required fields correctly.")
    if len(name) > 100 or len(email) > 150:
        raise ValidationError("Name or email is too long.")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Invalid email format.")


def _ensure_email_free(email, user_id=None):
    existing = User.query.filter_by(email=email).first()
    if existing is not None and existing.id != user_id:
        raise ConflictError("Email already exists!")


def _commit():
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already exists!")


def _create_user(name, email, password, role, phone=None):
    name, email = (name or "").strip(), normalize_email(email)
    _validate_user_fields(name, email, password)
    _ensure_email_free(email)
    user = User(
        name=name,
        email=email,
        phone=(phone or "").strip() or None,
        password=generate_password_hash(password),
        role=role,
    )
    db.session.add(user)
    return user


def register_patient(name, email, password, phone=None):
    """Self-registration always creates a patient."""
    user = _create_user(name, email, password, Role.PATIENT, phone=phone)
    _commit()
    logger.info("Registered patient %s", user.id)
    return user


def create_admin(name, email, password):
    user = _create_user(name, email, password, Role.ADMIN)
    _commit()
    logger.info("Created admin %s", user.id)
    return user


def authenticate(email, password):
    user = User.query.filter_by(email=normalize_email(email)).first()
    if user and password and check_password_hash(user.password, password):
        return user
    return None


def _parse_specialty(specialty):
    if isinstance(specialty, Specialty):
        return specialty
    parsed = Specialty.parse(specialty)
    if parsed is None:
        raise ValidationError(f"Invalid specialty: {specialty}")
    return parsed


def _has_upload(photo):
    return photo is not None and bool(getattr(photo, "filename", None))


def _attach_photo(doctor, photo, upload_folder):
    # the doctor row must already be committed
    doctor.photo = save_doctor_photo(photo, doctor.user_id, upload_folder)
    db.session.commit()


def save_doctor(name, email, password, specialty, short_cv=None, photo=None,
                doctor_id=None, upload_folder=None):
    """Create a doctor (no ``doctor_id``) or update an existing one.

    A blank password on update keeps the current one. A new photo replaces
    and deletes the previous file.
    """
    specialty = _parse_specialty(specialty)
    short_cv = (short_cv or "").strip() or None
    if short_cv and len(short_cv) > 1000:
        raise ValidationError("Short CV is limited to 1000 characters.")
    if _has_upload(photo) and not allowed_photo(photo.filename):
        raise ValidationError("Photos must be png, jpg, jpeg, gif or webp images.")

    if not doctor_id:
        user = _create_user(name, email, password, Role.DOCTOR)
        doctor = Doctor(user=user, specialty=specialty, short_cv=short_cv)
        db.session.add(doctor)
        _commit()
        if _has_upload(photo):
            _attach_photo(doctor, photo, upload_folder)
        logger.info("Created doctor %s for user %s", doctor.id, doctor.user_id)
        return doctor

    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFoundError("Doctor not found.")
    name, email = (name or "").strip(), normalize_email(email)
    _validate_user_fields(name, email, password, password_required=False)
    _ensure_email_free(email, user_id=doctor.user_id)

    doctor.user.name = name
    doctor.user.email = email
    if password:
        doctor.user.password = generate_password_hash(password)
    doctor.specialty = specialty
    doctor.short_cv = short_cv
    _commit()

    if _has_upload(photo):
        old_photo = doctor.photo
        _attach_photo(doctor, photo, upload_folder)
        if old_photo != doctor.photo:
            delete_doctor_photo(old_photo, upload_folder)
    logger.info("Updated doctor %s", doctor.id)
    return doctor


def delete_doctor(doctor_id, upload_folder=None):
    """Delete the doctor's user; the profile, slots and working hours go with it."""
    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFoundError("Doctor not found.")
    photo = doctor.photo
    db.session.delete(doctor.user)
    db.session.commit()
    delete_doctor_photo(photo, upload_folder)
    logger.info("Deleted doctor %s", doctor_id)


def set_working_hour(identity, day_of_week, start_time, end_time):
    """Declare (or replace) the doctor's window for one weekday."""
    day = (day_of_week or "").strip().capitalize()
    if day not in WEEKDAYS:
        raise ValidationError("Day of the week is required.")
    if start_time is None or end_time is None or end_time <= start_time:
        raise ValidationError("End time must be after start time.")

    hour = WorkingHour.query.filter_by(doctor_id=identity.doctor_id, day_of_week=day).first()
    if hour is None:
        hour = WorkingHour(doctor_id=identity.doctor_id, day_of_week=day)
        db.session.add(hour)
    hour.start_time = start_time
    hour.end_time = end_time
    db.session.commit()
    return hour


def delete_working_hour(identity, hour_id):
    hour = WorkingHour.query.filter_by(id=hour_id, doctor_id=identity.doctor_id).first()
    if hour is None:
        raise NotFoundError("Working hour not found.")
    db.session.delete(hour)
    db.session.commit()
