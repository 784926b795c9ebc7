"""Tests for PATCH /appointments/<id>/reschedule."""
from __future__ import annotations

from conftest import reload, upcoming
from salon_api.models import Appointment, SlotReservation


def _move(client, headers, appointment_id, day, start_time):
    return client.patch(
        f"/appointments/{appointment_id}/reschedule",
        json={"appointment_date": str(day), "start_time": start_time},
        headers=headers,
    )


def test_reschedule_moves_the_slot_hold(client, auth_header, booking_setup, seed_appointment):
    monday, tuesday = upcoming("Monday"), upcoming("Tuesday")
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "10:00")

    response = _move(client, auth_header(booking_setup["customer"]), appointment.appointment_id, tuesday, "14:00")

    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["appointment_date"] == tuesday.isoformat()
    assert data["start_time"] == "14:00"
    assert data["end_time"] == "14:30"
    assert data["reschedule_count"] == 1
    reservation = SlotReservation.query.filter_by(appointment_id=appointment.appointment_id).one()
    assert (reservation.slot_date, reservation.start_time) == (tuesday, "14:00")


def test_third_reschedule_hits_the_limit(client, auth_header, booking_setup, seed_appointment):
    monday = upcoming("Monday")
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "10:00")
    headers = auth_header(booking_setup["customer"])

    first = _move(client, headers, appointment.appointment_id, monday, "11:00")
    second = _move(client, headers, appointment.appointment_id, monday, "12:00")
    third = _move(client, headers, appointment.appointment_id, monday, "13:00")

    assert first.status_code == 200
    assert second.status_code == 200
    assert third.status_code == 400
    assert third.get_json()["message"] == "Maximum reschedule limit reached"
    moved = reload(Appointment, appointment.appointment_id)
    assert moved.reschedule_count == 2
    assert moved.start_time == "12:00"


def test_reschedule_to_full_slot_keeps_original(client, auth_header, booking_setup, seed_appointment, make_user):
    monday = upcoming("Monday")
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "10:00")
    seed_appointment(make_user("user"), booking_setup["service"], monday, "15:00")

    response = _move(client, auth_header(booking_setup["customer"]), appointment.appointment_id, monday, "15:00")

    assert response.status_code == 400
    assert response.get_json()["message"] == "This time slot is already fully booked"
    unchanged = reload(Appointment, appointment.appointment_id)
    assert unchanged.start_time == "10:00"
    assert unchanged.reschedule_count == 0
    reservation = SlotReservation.query.filter_by(appointment_id=appointment.appointment_id).one()
    assert reservation.start_time == "10:00"


def test_terminal_appointment_cannot_be_rescheduled(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00",
                                   status="cancelled")

    response = _move(client, auth_header(booking_setup["customer"]), appointment.appointment_id,
                     upcoming("Tuesday"), "10:00")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot reschedule an appointment with status 'cancelled'"


def test_only_owner_can_reschedule(client, auth_header, booking_setup, seed_appointment, make_user):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _move(client, auth_header(make_user("user")), appointment.appointment_id, upcoming("Tuesday"), "10:00")

    assert response.status_code == 403


def test_reschedule_outside_hours_is_rejected(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _move(client, auth_header(booking_setup["customer"]), appointment.appointment_id,
                     upcoming("Tuesday"), "18:00")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Appointment time is outside business hours"
