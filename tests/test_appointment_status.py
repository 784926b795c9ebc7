"""Tests for PATCH /appointments/<id>/status."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import reload, upcoming
from salon_api.models import Appointment, Income, Notification, SlotReservation


def _patch(client, headers, appointment_id, **payload):
    return client.patch(f"/appointments/{appointment_id}/status", json=payload, headers=headers)


def _holds(appointment_id):
    return SlotReservation.query.filter_by(appointment_id=appointment_id).count()


def test_host_confirms_pending_appointment(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="confirmed")

    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "confirmed"
    assert response.get_json()["data"]["last_status_update"] is not None
    assert _holds(appointment.appointment_id) == 1
    notification = Notification.query.filter_by(receiver_id=booking_setup["customer"].user_id).one()
    assert notification.type == "USER"


def test_customer_cancels_and_slot_is_released(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["customer"]), appointment.appointment_id,
                      status="cancelled", cancellation_reason="Change of plans")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Change of plans"
    assert _holds(appointment.appointment_id) == 0


def test_customer_can_only_cancel(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["customer"]), appointment.appointment_id, status="confirmed")

    assert response.status_code == 403
    assert reload(Appointment, appointment.appointment_id).status == "pending"


def test_other_customer_cannot_cancel(client, auth_header, booking_setup, seed_appointment, make_user):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(make_user("user")), appointment.appointment_id, status="cancelled")

    assert response.status_code == 403


def test_other_host_cannot_manage(client, auth_header, booking_setup, seed_appointment, make_user):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(make_user("host")), appointment.appointment_id, status="confirmed")

    assert response.status_code == 403


def test_cancellation_inside_window_is_rejected(client, auth_header, booking_setup, seed_appointment):
    soon = datetime.now(timezone.utc) + timedelta(hours=2)
    appointment = seed_appointment(
        booking_setup["customer"], booking_setup["service"], soon.date(), soon.strftime("%H:%M")
    )

    response = _patch(client, auth_header(booking_setup["customer"]), appointment.appointment_id, status="cancelled")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Cancellation window has expired (24 hours before appointment)"
    assert reload(Appointment, appointment.appointment_id).status == "pending"
    assert _holds(appointment.appointment_id) == 1


def test_transition_not_in_state_machine_is_rejected(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="completed")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot change status from 'pending' to 'completed'"


def test_unknown_status_is_rejected(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="archived")

    assert response.status_code == 400


def test_completing_cash_appointment_marks_it_paid(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(
        booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00", status="confirmed"
    )

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="completed")

    assert response.status_code == 200
    payment = response.get_json()["data"]["payment"]
    assert payment["status"] == "paid"
    assert payment["payment_date"] is not None
    assert _holds(appointment.appointment_id) == 0
    income = Income.query.filter_by(appointment_id=appointment.appointment_id).one()
    assert income.status == "paid"
    assert income.amount_cents == 2500
    assert income.host_id == booking_setup["host"].user_id


def test_no_show_releases_slot(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(
        booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00", status="confirmed"
    )

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="no-show")

    assert response.status_code == 200
    assert _holds(appointment.appointment_id) == 0


def test_host_correction_reinstates_cancelled_appointment(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(
        booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00", status="cancelled"
    )

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id, status="confirmed")

    assert response.status_code == 200
    assert _holds(appointment.appointment_id) == 1


def test_correction_fails_when_slot_was_taken(client, auth_header, booking_setup, seed_appointment, make_user):
    monday = upcoming("Monday")
    cancelled = seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "10:00",
                                 status="cancelled")
    seed_appointment(make_user("user"), booking_setup["service"], monday, "10:00")

    response = _patch(client, auth_header(booking_setup["host"]), cancelled.appointment_id, status="confirmed")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Maximum appointments reached for this time slot"
    assert reload(Appointment, cancelled.appointment_id).status == "cancelled"


def test_paid_payment_status_confirms_pending_appointment(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id,
                      payment={"status": "paid"})

    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["status"] == "confirmed"
    assert data["payment"]["status"] == "paid"
    assert Income.query.filter_by(appointment_id=appointment.appointment_id).count() == 1


def test_duplicate_transaction_id_is_a_conflict(client, auth_header, booking_setup, seed_appointment):
    customer, service = booking_setup["customer"], booking_setup["service"]
    first = seed_appointment(customer, service, upcoming("Monday"), "10:00")
    second = seed_appointment(customer, service, upcoming("Monday"), "11:00")
    headers = auth_header(booking_setup["host"])

    paid = _patch(client, headers, first.appointment_id, payment={"status": "paid", "transaction_id": "TX1"})
    duplicate = _patch(client, headers, second.appointment_id, payment={"status": "paid", "transaction_id": "TX1"})

    assert paid.status_code == 200
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "conflict"
    unchanged = reload(Appointment, second.appointment_id)
    assert unchanged.payment_status == "pending"
    assert unchanged.transaction_id is None


def test_paid_payment_keeps_completed_status(client, auth_header, booking_setup, seed_appointment):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00",
                                   status="completed", payment_method="visa")

    response = _patch(client, auth_header(booking_setup["host"]), appointment.appointment_id,
                      payment={"status": "paid"})

    assert response.get_json()["data"]["status"] == "completed"


def test_refund_cancels_inside_window_and_voids_income(client, auth_header, booking_setup, seed_appointment):
    soon = datetime.now(timezone.utc) + timedelta(hours=3)
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], soon.date(),
                                   soon.strftime("%H:%M"))
    headers = auth_header(booking_setup["host"])
    _patch(client, headers, appointment.appointment_id, payment={"status": "paid"})

    response = _patch(client, headers, appointment.appointment_id, payment={"status": "refunded"})

    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["status"] == "cancelled"
    assert data["payment"]["status"] == "refunded"
    assert _holds(appointment.appointment_id) == 0
    assert Income.query.filter_by(appointment_id=appointment.appointment_id).one().status == "cancelled"


def test_customer_can_view_own_appointment_but_not_others(client, auth_header, booking_setup, seed_appointment,
                                                          make_user):
    appointment = seed_appointment(booking_setup["customer"], booking_setup["service"], upcoming("Monday"), "10:00")

    own = client.get(f"/appointments/{appointment.appointment_id}", headers=auth_header(booking_setup["customer"]))
    other = client.get(f"/appointments/{appointment.appointment_id}", headers=auth_header(make_user("user")))
    missing = client.get("/appointments/999", headers=auth_header(booking_setup["customer"]))

    assert own.status_code == 200
    assert other.status_code == 403
    assert missing.status_code == 404


def test_listing_my_and_salon_appointments(client, auth_header, booking_setup, seed_appointment, make_user):
    monday = upcoming("Monday")
    seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "11:00")
    seed_appointment(booking_setup["customer"], booking_setup["service"], monday, "10:00", status="cancelled")
    seed_appointment(make_user("user"), booking_setup["service"], monday, "12:00")
    salon_id = booking_setup["salon"].salon_id

    mine = client.get("/appointments/my-appointments", headers=auth_header(booking_setup["customer"]))
    mine_pending = client.get("/appointments/my-appointments?status=pending",
                              headers=auth_header(booking_setup["customer"]))
    salon = client.get(f"/appointments/salon/{salon_id}", headers=auth_header(booking_setup["host"]))
    foreign = client.get(f"/appointments/salon/{salon_id}", headers=auth_header(make_user("host")))

    assert [a["start_time"] for a in mine.get_json()["data"]] == ["10:00", "11:00"]
    assert len(mine_pending.get_json()["data"]) == 1
    assert len(salon.get_json()["data"]) == 3
    assert foreign.status_code == 403
