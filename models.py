# models.py
import enum
import re
from datetime import datetime

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

DEFAULT_DOCTOR_PHOTO = "images/default-doctor.svg"
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Role(enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Specialty(enum.Enum):
    GENERAL_PRACTICE = "GeneralPractice"
    CARDIOLOGY = "Cardiology"
    DERMATOLOGY = "Dermatology"
    NEUROLOGY = "Neurology"
    PEDIATRICS = "Pediatrics"
    ORTHOPEDICS = "Orthopedics"
    OPHTHALMOLOGY = "Ophthalmology"
    ENT = "ENT"
    PSYCHIATRY = "Psychiatry"
    UROLOGY = "Urology"
    GYNECOLOGY = "Gynecology"

    @property
    def label(self):
        # "GeneralPractice" -> "General Practice", "ENT" stays as is
        return re.sub(r"(?<=[a-z])(?=[A-Z])", " ", self.value)

    @classmethod
    def parse(cls, value):
        """Look a specialty up by value or label, ignoring case and spaces."""
        if not value:
            return None
        key = value.replace(" ", "").replace("_", "").lower()
        for specialty in cls:
            if specialty.value.lower() == key:
                return specialty
        return None


class AppointmentStatus(enum.Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value):
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


# Statuses that no longer hold a (doctor, date, time) slot
INACTIVE_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED)


def _enum_column(enum_cls, length):
    return db.Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
        validate_strings=True,
    )


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(150), unique=True, nullable=False)
    phone = db.Column(db.String(20))
    password = db.Column(db.String(255), nullable=False)  # hashed
    role = db.Column(_enum_column(Role, 20), nullable=False, default=Role.PATIENT)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    doctor_profile = db.relationship(
        "Doctor", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User {self.id} {self.email} ({self.role.value})>"


class Doctor(db.Model):
    __tablename__ = "doctors"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    specialty = db.Column(_enum_column(Specialty, 30), nullable=False)
    photo = db.Column(db.String(255), default=DEFAULT_DOCTOR_PHOTO)
    short_cv = db.Column(db.String(1000))

    user = db.relationship("User", back_populates="doctor_profile")
    appointments = db.relationship(
        "Appointment", back_populates="doctor", cascade="all, delete-orphan"
    )
    working_hours = db.relationship(
        "WorkingHour",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="WorkingHour.id",
    )

    @property
    def name(self):
        return self.user.name if self.user else "Doctor"

    def __repr__(self):
        return f"<Doctor {self.id} {self.specialty.value}>"


class Appointment(db.Model):
    __tablename__ = "appointments"
    id = db.Column(db.Integer, primary_key=True)
    doctor_id = db.Column(
        db.Integer, db.ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    patient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.Time, nullable=False)
    status = db.Column(
        _enum_column(AppointmentStatus, 20), nullable=False, default=AppointmentStatus.AVAILABLE
    )
    rating = db.Column(db.Integer)
    review_comment = db.Column(db.String(500))
    rated_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    doctor = db.relationship("Doctor", back_populates="appointments")
    patient = db.relationship("User")

    __table_args__ = (
        # one active slot per doctor/date/time; cancelled and rejected rows are history
        db.Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "time_slot",
            unique=True,
            sqlite_where=db.text("status NOT IN ('cancelled', 'rejected')"),
            postgresql_where=db.text("status NOT IN ('cancelled', 'rejected')"),
        ),
    )

    @property
    def starts_at(self):
        return datetime.combine(self.date, self.time_slot)

    @property
    def is_booked(self):
        return self.patient_id is not None

    def __repr__(self):
        return f"<Appointment {self.id} doctor={self.doctor_id} {self.date} {self.time_slot} {self.status.value}>"


class WorkingHour(db.Model):
    __tablename__ = "working_hours"
    id = db.Column(db.Integer, primary_key=True)
    doctor_id = db.Column(
        db.Integer, db.ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week = db.Column(db.String(20), nullable=False)  # "Monday".."Sunday"
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    doctor = db.relationship("Doctor", back_populates="working_hours")
