"""Appointment booking, lifecycle and payment endpoints."""
from __future__ import annotations

from flask import Blueprint, request

from . import booking, payments
from .auth import ADMIN, HOST, USER, current_user, login_required
from .errors import success
from .slots import get_available_slots
from .validation import parse_date

bp = Blueprint("appointments", __name__, url_prefix="/appointments")


@bp.post("/create")
@login_required(USER)
def create_appointment():
    """Book an appointment slot.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - service_id
            - appointment_date
            - start_time
          properties:
            service_id:
              type: integer
            salon_id:
              type: integer
            appointment_date:
              type: string
              example: "2026-01-05"
            start_time:
              type: string
              example: "09:30"
            payment_method:
              type: string
              enum: [cash, visa, mastercard, paypal]
            notes:
              type: string
    responses:
      201:
        description: Appointment booked
      400:
        description: Invalid payload, unavailable slot or outside business hours
      404:
        description: Service not found
    """
    payload = request.get_json(silent=True) or {}
    appointment = booking.create_appointment(current_user(), payload)
    return success(appointment.to_dict(), "Appointment booked successfully", 201)


@bp.get("/available-slots/<int:salon_id>/<int:service_id>/<string:day>")
def available_slots(salon_id: int, service_id: int, day: str):
    """List the open slots of a service on a date.
    ---
    tags:
      - Appointments
    parameters:
      - name: salon_id
        in: path
        type: integer
        required: true
      - name: service_id
        in: path
        type: integer
        required: true
      - name: day
        in: path
        type: string
        required: true
        description: Date in YYYY-MM-DD format
    responses:
      200:
        description: Slots with remaining capacity; empty when the salon is closed
      400:
        description: Invalid date
      404:
        description: Salon or service not found
    """
    slots = get_available_slots(salon_id, service_id, parse_date(day))
    return success(slots, "Available slots retrieved")


@bp.get("/my-appointments")
@login_required()
def my_appointments():
    """List the caller's appointments.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    parameters:
      - name: status
        in: query
        type: string
      - name: date
        in: query
        type: string
      - name: upcoming
        in: query
        type: boolean
    responses:
      200:
        description: Appointments ordered by date and start time
    """
    appointments = booking.get_user_appointments(current_user(), request.args)
    return success([a.to_dict() for a in appointments], "Appointments retrieved")


@bp.get("/salon/<int:salon_id>")
@login_required(HOST, ADMIN)
def salon_appointments(salon_id: int):
    """List appointments of a salon for its host.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    responses:
      200:
        description: Appointments of the salon
      403:
        description: Caller does not own the salon
      404:
        description: Salon not found
    """
    appointments = booking.get_salon_appointments(salon_id, current_user(), request.args)
    return success([a.to_dict() for a in appointments], "Appointments retrieved")


@bp.get("/<int:appointment_id>")
@login_required()
def get_appointment(appointment_id: int):
    appointment = booking.get_appointment(appointment_id, current_user())
    return success(appointment.to_dict(), "Appointment retrieved")


@bp.patch("/<int:appointment_id>/status")
@login_required()
def update_status(appointment_id: int):
    """Change appointment and/or payment status.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            status:
              type: string
              enum: [pending, confirmed, cancelled, completed, no-show]
            payment:
              type: object
              properties:
                status:
                  type: string
                  enum: [pending, paid, refunded, failed]
            cancellation_reason:
              type: string
            notes:
              type: string
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid transition or cancellation window expired
      403:
        description: Not allowed for this caller
    """
    payload = request.get_json(silent=True) or {}
    appointment = booking.update_status(appointment_id, current_user(), payload)
    return success(appointment.to_dict(), "Appointment status updated")


@bp.patch("/<int:appointment_id>/reschedule")
@login_required()
def reschedule(appointment_id: int):
    """Move an appointment to a new date and start time.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - appointment_date
            - start_time
          properties:
            appointment_date:
              type: string
            start_time:
              type: string
    responses:
      200:
        description: Appointment rescheduled
      400:
        description: Slot unavailable or reschedule limit reached
    """
    payload = request.get_json(silent=True) or {}
    appointment = booking.reschedule(appointment_id, current_user(), payload)
    return success(appointment.to_dict(), "Appointment rescheduled successfully")


@bp.post("/<int:appointment_id>/payment")
@login_required(USER)
def process_payment(appointment_id: int):
    """Pay for a pending appointment.
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - payment_method
          properties:
            payment_method:
              type: string
              enum: [cash, visa, mastercard, paypal]
            card_number:
              type: string
            card_holder_name:
              type: string
            expiry_date:
              type: string
            cvv:
              type: string
    responses:
      200:
        description: Payment processed
      400:
        description: Invalid card details or appointment not pending
    """
    payload = request.get_json(silent=True) or {}
    appointment = payments.process_payment(appointment_id, current_user(), payload)
    return success(appointment.to_dict(), "Payment processed successfully")


@bp.post("/<int:appointment_id>/confirm-cash-payment")
@login_required()
def confirm_cash_payment(appointment_id: int):
    payload = request.get_json(silent=True) or {}
    appointment = payments.confirm_cash_payment(appointment_id, current_user(), payload)
    return success(appointment.to_dict(), "Cash payment confirmed successfully")


@bp.post("/<int:appointment_id>/payment-intent")
@login_required(USER)
def create_payment_intent(appointment_id: int):
    """Create a Stripe PaymentIntent for the appointment.
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    responses:
      200:
        description: Client secret for completing the payment
      500:
        description: Payments not configured or Stripe error
    """
    payload = request.get_json(silent=True) or {}
    intent = payments.create_payment_intent(appointment_id, current_user(), payload)
    return success(intent, "Payment intent created")


@bp.post("/stripe-webhook")
def stripe_webhook():
    """Stripe webhook endpoint to receive asynchronous events.
    ---
    tags:
      - Payments
    parameters:
      - name: Stripe-Signature
        in: header
        required: true
        type: string
    responses:
      200:
        description: Webhook event received
      400:
        description: Invalid payload or signature
    """
    payments.handle_webhook(request.get_data(), request.headers.get("Stripe-Signature"))
    return success({"received": True}, "Webhook received")
