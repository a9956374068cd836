# app.py
import logging
import os
from datetime import datetime, timedelta

import click
from flask import Flask, Response, flash, jsonify, redirect, render_template, request, url_for
from flask_login import LoginManager, login_required, login_user, logout_user

import accounts
import booking
import queries
from booking import BookingPolicy
from errors import BookingError, ValidationError
from identity import (
    DASHBOARDS,
    dashboard_endpoint,
    forget_identity,
    remember_identity,
    resolve_identity,
    role_required,
)
from models import WEEKDAYS, AppointmentStatus, Doctor, Role, Specialty, User, db
from suggestions import suggest_specialties


def env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get("SECRET_KEY", "dev_secret_change_me")

# Relative sqlite paths live in the app's instance folder
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get("DATABASE_URL", "sqlite:///clinic.sqlite")
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(minutes=int(os.environ.get("SESSION_MINUTES", 30)))
app.config['REMEMBER_COOKIE_DURATION'] = timedelta(minutes=int(os.environ.get("REMEMBER_MINUTES", 60)))
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['REMEMBER_COOKIE_HTTPONLY'] = True

app.config['SLOT_MINUTES'] = int(os.environ.get("SLOT_MINUTES", 30))
app.config['CANCELLATION_LEAD_HOURS'] = float(os.environ.get("CANCELLATION_LEAD_HOURS", 24))
app.config['SLOTS_REQUIRE_APPROVAL'] = env_flag("SLOTS_REQUIRE_APPROVAL", False)
app.config['ONE_BOOKING_PER_DOCTOR_PER_DAY'] = env_flag("ONE_BOOKING_PER_DOCTOR_PER_DAY", True)
app.config['APPOINTMENTS_PER_PAGE'] = int(os.environ.get("APPOINTMENTS_PER_PAGE", 10))

app.config['UPLOAD_FOLDER'] = os.environ.get(
    "UPLOAD_FOLDER", os.path.join(app.static_folder, "uploads", "doctors")
)
app.config['MAX_CONTENT_LENGTH'] = 5 * 1024 * 1024

app.config['SUGGESTION_URL'] = os.environ.get("SUGGESTION_URL", "http://localhost:11434/api/generate")
app.config['SUGGESTION_MODEL'] = os.environ.get("SUGGESTION_MODEL", "llama3")
app.config['SUGGESTION_TIMEOUT'] = float(os.environ.get("SUGGESTION_TIMEOUT", 30))

# Fails fast on a bad SLOT_MINUTES
BookingPolicy.from_config(app.config)

db.init_app(app)
login_manager = LoginManager()
login_manager.login_view = "login"
login_manager.login_message_category = "warning"
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@app.cli.command("init-db")
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("Database initialised.")


@app.cli.command("create-admin")
@click.option("--name", prompt=True)
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def create_admin_command(name, email, password):
    """Create an administrator account."""
    try:
        user = accounts.create_admin(name, email, password)
    except BookingError as e:
        raise click.ClickException(e.message)
    click.echo(f"Admin {user.email} created.")


# ---------------- Helpers ----------------

def policy():
    return BookingPolicy.from_config(app.config)


def parse_date(value):
    try:
        return datetime.strptime((value or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("Invalid date format.")


def parse_time(value, required=True):
    value = (value or "").strip()
    if not value:
        if required:
            raise ValidationError("Time is required.")
        return None
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValidationError("Invalid time format.")


def appointment_json(appointment):
    return {
        "appointment_id": appointment.id,
        "doctor_id": appointment.doctor_id,
        "date": appointment.date.isoformat(),
        "time_slot": appointment.time_slot.strftime("%H:%M"),
        "status": appointment.status.value,
    }


def json_action(action, message):
    """Run a status change and report it as ``{success, message}``."""
    try:
        appointment = action()
    except BookingError as e:
        app.logger.warning("Appointment action failed: %s", e.message)
        return jsonify(success=False, message=e.message), e.status_code
    return jsonify(success=True, message=message, appointment=appointment_json(appointment))


@app.errorhandler(BookingError)
def handle_booking_error(error):
    if request.is_json or request.accept_mimetypes.best == "application/json":
        return jsonify(success=False, message=error.message), error.status_code
    flash(error.message, error.category)
    return redirect(url_for("dashboard"))


@app.context_processor
def inject_globals():
    return {"Role": Role, "AppointmentStatus": AppointmentStatus}


# ---------------- Account ----------------

@app.route("/")
def index():
    return redirect(url_for("dashboard"))


@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "POST":
        try:
            user = accounts.register_patient(
                request.form.get("name"),
                request.form.get("email"),
                request.form.get("password"),
                phone=request.form.get("phone"),
            )
        except BookingError as e:
            flash(e.message, e.category)
            return render_template("register.html", form=request.form)
        login_user(user, remember=True)
        remember_identity(user)
        flash("Account created. Welcome!", "success")
        return redirect(url_for(DASHBOARDS[user.role]))
    return render_template("register.html", form={})


@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "")
        password = request.form.get("password", "")
        if not email.strip() or not password:
            flash("Please enter both email and password.", "warning")
            return render_template("login.html")

        user = accounts.authenticate(email, password)
        if user:
            login_user(user, remember=True)
            remember_identity(user)
            app.logger.info("User %s logged in as %s", user.id, user.role.value)
            return redirect(url_for(DASHBOARDS[user.role]))

        flash("Invalid email or password.", "danger")

    return render_template("login.html")


@app.route("/logout")
@login_required
def logout():
    forget_identity()
    logout_user()
    return redirect(url_for("login"))


@app.route("/dashboard")
def dashboard():
    return redirect(url_for(dashboard_endpoint(resolve_identity())))


# ---------------- Patient ----------------

@app.route("/patient")
@role_required(Role.PATIENT)
def patient_dashboard(identity):
    specialty = Specialty.parse(request.args.get("specialty"))
    pagination = queries.available_appointments(
        page=request.args.get("page", 1, type=int),
        per_page=app.config["APPOINTMENTS_PER_PAGE"],
        specialty=specialty,
    )
    return render_template(
        "dashboard_patient.html",
        pagination=pagination,
        specialties=list(Specialty),
        specialty=specialty,
    )


@app.route("/patient/booking")
@role_required(Role.PATIENT)
def patient_booking(identity):
    specialty = Specialty.parse(request.args.get("specialty"))
    doctor_id = request.args.get("doctor_id", type=int)
    doctors, doctor, slots, day = [], None, [], None

    if specialty is not None:
        doctors = queries.doctors_by_specialty(specialty)
    if doctor_id:
        doctor = db.session.get(Doctor, doctor_id)
    if doctor is not None and request.args.get("date"):
        try:
            day = parse_date(request.args.get("date"))
            slots = queries.available_slots(doctor.id, day)
        except BookingError as e:
            flash(e.message, e.category)

    return render_template(
        "booking.html",
        specialties=list(Specialty),
        specialty=specialty,
        doctors=doctors,
        doctor=doctor,
        day=day,
        slots=slots,
    )


@app.route("/patient/advanced-booking", methods=["GET", "POST"])
@role_required(Role.PATIENT)
def advanced_booking(identity):
    suggestion, symptoms = None, ""
    if request.method == "POST":
        symptoms = request.form.get("symptoms", "")
        try:
            suggestion = suggest_specialties(
                symptoms,
                url=app.config["SUGGESTION_URL"],
                model=app.config["SUGGESTION_MODEL"],
                timeout=app.config["SUGGESTION_TIMEOUT"],
            )
        except BookingError as e:
            flash(e.message, e.category)
    return render_template(
        "advanced_booking.html",
        specialties=list(Specialty),
        suggestion=suggestion,
        symptoms=symptoms,
    )


@app.route("/patient/doctors")
@role_required(Role.PATIENT, json=True)
def doctors_by_specialty(identity):
    value = request.args.get("specialty")
    if not value:
        return jsonify(error="Specialty is required"), 400
    specialty = Specialty.parse(value)
    if specialty is None:
        return jsonify(error=f"Invalid specialty: {value}"), 400

    return jsonify([
        {
            "doctor_id": d.id,
            "name": d.name,
            "short_cv": d.short_cv,
            "photo": url_for("static", filename=d.photo),
            "specialty": d.specialty.value,
        }
        for d in queries.doctors_by_specialty(specialty)
    ])


@app.route("/patient/slots")
@role_required(Role.PATIENT, json=True)
def available_slots(identity):
    doctor_id = request.args.get("doctor_id", type=int)
    if not doctor_id or doctor_id <= 0:
        return jsonify(error="Invalid doctor ID"), 400
    if not request.args.get("date"):
        return jsonify(error="Date is required"), 400
    try:
        slots = queries.available_slots(doctor_id, parse_date(request.args["date"]))
    except BookingError as e:
        return jsonify(error=e.message), e.status_code
    return jsonify([appointment_json(a) for a in slots])


@app.route("/patient/book/<int:appointment_id>", methods=["POST"])
@role_required(Role.PATIENT)
def book(identity, appointment_id):
    try:
        appointment = booking.book(appointment_id, identity, policy=policy())
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash(
            f"Booking request sent for {appointment.date:%d/%m/%Y} at {appointment.time_slot:%H:%M}.",
            "success",
        )
    next_url = request.form.get("next", "")
    if not next_url.startswith("/") or next_url.startswith("//"):
        next_url = url_for("patient_dashboard")
    return redirect(next_url)


@app.route("/patient/appointments")
@role_required(Role.PATIENT)
def my_appointments(identity):
    pagination = queries.patient_appointments(
        identity,
        page=request.args.get("page", 1, type=int),
        per_page=app.config["APPOINTMENTS_PER_PAGE"],
    )
    return render_template("my_appointments.html", pagination=pagination)


@app.route("/patient/appointments/<int:appointment_id>/cancel", methods=["POST"])
@role_required(Role.PATIENT, json=True)
def cancel_appointment(identity, appointment_id):
    return json_action(
        lambda: booking.cancel(appointment_id, identity, policy=policy()),
        "Appointment cancelled successfully",
    )


@app.route("/patient/appointments/<int:appointment_id>/rate", methods=["POST"])
@role_required(Role.PATIENT)
def rate_appointment(identity, appointment_id):
    try:
        booking.rate(
            appointment_id,
            identity,
            request.form.get("rating"),
            request.form.get("comment"),
        )
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash("Thank you for your feedback!", "success")
    return redirect(url_for("my_appointments"))


# ---------------- Doctor ----------------

@app.route("/doctor")
@role_required(Role.DOCTOR)
def doctor_dashboard(identity):
    doctor = db.session.get(Doctor, identity.doctor_id)
    return render_template(
        "dashboard_doctor.html",
        doctor=doctor,
        appointments=queries.doctor_appointments(identity),
        weekdays=WEEKDAYS,
    )


@app.route("/doctor/slots", methods=["POST"])
@role_required(Role.DOCTOR)
def add_slots(identity):
    try:
        result = booking.generate_slots(
            identity.doctor_id,
            parse_date(request.form.get("date")),
            parse_time(request.form.get("start_time"), required=False),
            parse_time(request.form.get("end_time"), required=False),
            policy=policy(),
        )
    except BookingError as e:
        flash(e.message, e.category)
        return redirect(url_for("doctor_dashboard"))

    if result.created:
        message = f"{len(result.created)} appointment slot(s) added successfully."
        if result.skipped:
            message += f" ({result.skipped} existing slot(s) skipped)"
        if app.config["SLOTS_REQUIRE_APPROVAL"]:
            message += " They will be visible to patients once approved."
        flash(message, "success")
    else:
        flash("No new slots added (all selected slots already exist).", "warning")
    return redirect(url_for("doctor_dashboard"))


@app.route("/doctor/today")
@role_required(Role.DOCTOR)
def doctor_today(identity):
    return render_template("doctor_today.html", appointments=queries.doctor_today(identity))


@app.route("/doctor/week")
@role_required(Role.DOCTOR)
def doctor_week(identity):
    return render_template("doctor_week.html", week=queries.doctor_week(identity))


@app.route("/doctor/appointments/<int:appointment_id>/status", methods=["POST"])
@role_required(Role.DOCTOR, json=True)
def doctor_update_status(identity, appointment_id):
    status = AppointmentStatus.parse(request.values.get("status"))
    if status is None:
        return jsonify(success=False, message="Invalid status"), 400
    return json_action(
        lambda: booking.transition(appointment_id, identity, status, policy=policy()),
        "Appointment status updated successfully",
    )


@app.route("/doctor/appointments/<int:appointment_id>/delete", methods=["POST"])
@role_required(Role.DOCTOR)
def delete_slot(identity, appointment_id):
    try:
        booking.delete_slot(appointment_id, identity)
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash("Appointment deleted.", "success")
    return redirect(url_for("doctor_dashboard"))


@app.route("/doctor/working-hours", methods=["POST"])
@role_required(Role.DOCTOR)
def set_working_hour(identity):
    try:
        accounts.set_working_hour(
            identity,
            request.form.get("day_of_week"),
            parse_time(request.form.get("start_time")),
            parse_time(request.form.get("end_time")),
        )
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash("Working hours saved.", "success")
    return redirect(url_for("doctor_dashboard"))


@app.route("/doctor/working-hours/<int:hour_id>/delete", methods=["POST"])
@role_required(Role.DOCTOR)
def delete_working_hour(identity, hour_id):
    try:
        accounts.delete_working_hour(identity, hour_id)
    except BookingError as e:
        flash(e.message, e.category)
    return redirect(url_for("doctor_dashboard"))


# ---------------- Admin ----------------

@app.route("/admin")
@role_required(Role.ADMIN)
def admin_dashboard(identity):
    status = AppointmentStatus.parse(request.args.get("status"))
    return render_template(
        "dashboard_admin.html",
        doctors=queries.all_doctors(),
        appointments=queries.all_appointments(status),
        status=status,
        specialties=list(Specialty),
    )


@app.route("/admin/slots", methods=["POST"])
@role_required(Role.ADMIN)
def admin_add_slots(identity):
    try:
        doctor_id = request.form.get("doctor_id", type=int)
        if not doctor_id:
            raise ValidationError("Choose a doctor.")
        result = booking.generate_slots(
            doctor_id,
            parse_date(request.form.get("date")),
            parse_time(request.form.get("start_time")),
            parse_time(request.form.get("end_time")),
            # the admin is the approver, so these go straight to patients
            policy=policy()._replace(require_slot_approval=False),
        )
    except BookingError as e:
        flash(e.message, e.category)
        return redirect(url_for("admin_dashboard"))

    if result.created:
        message = f"{len(result.created)} appointment slot(s) added successfully."
        if result.skipped:
            message += f" ({result.skipped} existing slot(s) skipped)"
        flash(message, "success")
    else:
        flash("No new slots added (all selected slots already exist).", "warning")
    return redirect(url_for("admin_dashboard"))


@app.route("/admin/doctors")
@role_required(Role.ADMIN)
def manage_doctors(identity):
    return render_template(
        "manage_doctors.html", doctors=queries.all_doctors(), specialties=list(Specialty)
    )


@app.route("/admin/doctors/save", methods=["POST"])
@role_required(Role.ADMIN)
def save_doctor(identity):
    doctor_id = request.form.get("doctor_id", type=int)
    try:
        accounts.save_doctor(
            request.form.get("name"),
            request.form.get("email"),
            request.form.get("password"),
            request.form.get("specialty"),
            short_cv=request.form.get("short_cv"),
            photo=request.files.get("photo"),
            doctor_id=doctor_id,
            upload_folder=app.config["UPLOAD_FOLDER"],
        )
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash("Doctor updated." if doctor_id else "Doctor added.", "success")
    return redirect(url_for("manage_doctors"))


@app.route("/admin/doctors/<int:doctor_id>/delete", methods=["POST"])
@role_required(Role.ADMIN)
def delete_doctor(identity, doctor_id):
    try:
        accounts.delete_doctor(doctor_id, upload_folder=app.config["UPLOAD_FOLDER"])
    except BookingError as e:
        flash(e.message, e.category)
    else:
        flash("Doctor deleted.", "info")
    return redirect(url_for("manage_doctors"))


@app.route("/admin/slots/pending")
@role_required(Role.ADMIN)
def pending_slots(identity):
    return render_template("pending_slots.html", slots=queries.pending_slots())


@app.route("/admin/slots/<int:appointment_id>/approve", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def approve_slot(identity, appointment_id):
    return json_action(lambda: booking.approve_slot(appointment_id, identity), "Slot approved")


@app.route("/admin/slots/<int:appointment_id>/reject", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def reject_slot(identity, appointment_id):
    return json_action(lambda: booking.reject(appointment_id, identity), "Slot rejected")


@app.route("/admin/bookings/pending")
@role_required(Role.ADMIN)
def pending_bookings(identity):
    return render_template("pending_bookings.html", bookings=queries.pending_bookings())


@app.route("/admin/bookings/<int:appointment_id>/confirm", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def confirm_booking(identity, appointment_id):
    return json_action(lambda: booking.confirm(appointment_id, identity), "Booking confirmed")


@app.route("/admin/bookings/<int:appointment_id>/reject", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def reject_booking(identity, appointment_id):
    return json_action(lambda: booking.reject(appointment_id, identity), "Booking rejected")


@app.route("/admin/bookings/<int:appointment_id>/cancel", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def cancel_booking(identity, appointment_id):
    return json_action(
        lambda: booking.cancel(appointment_id, identity, policy=policy()), "Booking cancelled"
    )


@app.route("/admin/appointments/<int:appointment_id>/status", methods=["POST"])
@role_required(Role.ADMIN, json=True)
def admin_update_status(identity, appointment_id):
    status = AppointmentStatus.parse(request.values.get("status"))
    if status is None:
        return jsonify(success=False, message="Invalid status"), 400
    return json_action(
        lambda: booking.transition(appointment_id, identity, status, policy=policy()),
        "Appointment status updated successfully",
    )


@app.route("/admin/appointments/export")
@role_required(Role.ADMIN)
def export_appointments(identity):
    return Response(
        queries.export_appointments_csv(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=appointments.csv"},
    )


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    with app.app_context():
        db.create_all()
    app.run(debug=True)
