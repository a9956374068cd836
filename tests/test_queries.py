import csv
import io
from datetime import date, datetime, time

import pytest

import booking
import queries
from conftest import DAY, NOW
from errors import UnauthorizedError, ValidationError
from models import AppointmentStatus, Specialty

AFTER_VISIT = datetime(2024, 6, 1, 12, 0)


def slots(identity, start=time(9), end=time(10), day=DAY):
    return [a.id for a in booking.generate_slots(identity.doctor_id, day, start, end, now=NOW).created]


def test_available_appointments_filters_and_orders(ctx, doctor, other_doctor, patient):
    first, second = slots(doctor)
    skin = slots(other_doctor, time(8), time(8, 30))[0]
    booking.book(second, patient, now=NOW)

    page = queries.available_appointments(now=NOW)
    assert [a.id for a in page.items] == [skin, first]

    cardio = queries.available_appointments(specialty=Specialty.CARDIOLOGY, now=NOW)
    assert [a.id for a in cardio.items] == [first]

    by_doctor = queries.available_appointments(doctor_id=other_doctor.doctor_id, now=NOW)
    assert [a.id for a in by_doctor.items] == [skin]


def test_available_appointments_hide_the_past(ctx, doctor):
    slots(doctor)
    later = datetime(2024, 6, 1, 9, 15)
    assert [a.time_slot for a in queries.available_appointments(now=later).items] == [time(9, 30)]


def test_available_appointments_paginate(ctx, doctor):
    slots(doctor, time(9), time(12))
    page = queries.available_appointments(page=2, per_page=4, now=NOW)
    assert page.total == 6
    assert [a.time_slot for a in page.items] == [time(11), time(11, 30)]


def test_available_slots_for_a_day(ctx, doctor, patient):
    first, second = slots(doctor)
    booking.book(first, patient, now=NOW)

    assert [a.id for a in queries.available_slots(doctor.doctor_id, DAY, now=NOW)] == [second]


def test_available_slots_today_skip_passed_times(ctx, doctor):
    today = NOW.date()
    slots(doctor, time(12), time(13), day=today)
    later = datetime.combine(today, time(12, 10))
    assert [a.time_slot for a in queries.available_slots(doctor.doctor_id, today, now=later)] == [
        time(12, 30)
    ]


def test_available_slots_reject_past_days(ctx, doctor):
    with pytest.raises(ValidationError):
        queries.available_slots(doctor.doctor_id, date(2024, 5, 1), now=NOW)


def test_doctors_by_specialty(ctx, doctor, other_doctor):
    found = queries.doctors_by_specialty(Specialty.DERMATOLOGY)
    assert [d.id for d in found] == [other_doctor.doctor_id]
    assert queries.doctors_by_specialty(Specialty.NEUROLOGY) == []


def test_patient_sees_only_own_appointments(ctx, doctor, patient, other_patient):
    mine, theirs = slots(doctor)
    booking.book(mine, patient, now=NOW)
    booking.book(theirs, other_patient, now=NOW)

    assert [a.id for a in queries.patient_appointments(patient).items] == [mine]
    assert [a.id for a in queries.patient_appointments(other_patient).items] == [theirs]


def test_role_scoped_queries_require_the_role(ctx, doctor, patient):
    with pytest.raises(UnauthorizedError):
        queries.patient_appointments(doctor)
    with pytest.raises(UnauthorizedError):
        queries.doctor_appointments(patient)
    with pytest.raises(UnauthorizedError):
        queries.doctor_week(None)


def test_doctor_sees_only_own_appointments(ctx, doctor, other_doctor):
    mine = slots(doctor)
    slots(other_doctor)
    assert sorted(a.id for a in queries.doctor_appointments(doctor)) == sorted(mine)


def test_doctor_today_lists_pending_and_confirmed(ctx, doctor, admin, patient, other_patient):
    first, second = slots(doctor)
    third = slots(doctor, time(11), time(11, 30))[0]
    booking.book(first, patient, now=NOW)
    booking.book(second, other_patient, now=NOW)
    booking.confirm(first, admin)

    today = queries.doctor_today(doctor, today=DAY)
    assert [a.id for a in today] == [first, second]
    assert third not in [a.id for a in today]


def test_doctor_week_runs_sunday_to_saturday(ctx, doctor):
    # DAY is Saturday 2024-06-01; its week starts on Sunday 2024-05-26
    saturday = slots(doctor, day=DAY)
    sunday = slots(doctor, time(9), time(9, 30), day=date(2024, 6, 2))

    week = queries.doctor_week(doctor, today=date(2024, 5, 30))
    assert (week.start, week.end) == (date(2024, 5, 26), date(2024, 6, 2))
    ids = [a.id for a in week.appointments]
    assert ids == saturday
    assert sunday[0] not in ids

    next_week = queries.doctor_week(doctor, today=date(2024, 6, 2))
    assert next_week.start == date(2024, 6, 2)
    assert [a.id for a in next_week.appointments] == sunday


def test_admin_lists(ctx, doctor, other_doctor, admin, patient):
    policy = booking.DEFAULT_POLICY._replace(require_slot_approval=True)
    unapproved = booking.generate_slots(
        doctor.doctor_id, DAY, time(14), time(14, 30), now=NOW, policy=policy
    ).created[0].id
    booked = slots(doctor, time(9), time(9, 30))[0]
    booking.book(booked, patient, now=NOW)

    assert [a.id for a in queries.pending_slots()] == [unapproved]
    assert [a.id for a in queries.pending_bookings()] == [booked]
    assert [d.name for d in queries.all_doctors()] == ["Dee Doctor", "Sam Skin"]
    assert len(queries.all_appointments()) == 2
    assert len(queries.all_appointments(AppointmentStatus.AVAILABLE)) == 0


def test_export_csv(ctx, doctor, admin, patient):
    first, _ = slots(doctor)
    booking.book(first, patient, now=NOW)
    booking.confirm(first, admin)
    booking.complete(first, doctor, now=AFTER_VISIT)
    booking.rate(first, patient, 5, "Great", now=AFTER_VISIT)

    rows = list(csv.reader(io.StringIO(queries.export_appointments_csv())))

    assert rows[0] == queries.EXPORT_COLUMNS
    assert rows[1] == ["2024-06-01", "09:00", "Dee Doctor", "Pat Patient", "Completed", "5"]
    assert rows[2] == ["2024-06-01", "09:30", "Dee Doctor", "", "Available", ""]


def test_export_csv_with_no_rows(ctx):
    assert queries.export_appointments_csv().strip() == ",".join(queries.EXPORT_COLUMNS)
