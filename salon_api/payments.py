"""Appointment payments: card capture, cash confirmation and Stripe intents."""
from __future__ import annotations

import time

import stripe
from flask import current_app
from werkzeug.exceptions import BadRequest, Forbidden, HTTPException, InternalServerError

from .auth import ADMIN, HOST
from .booking import apply_payment_status, get_appointment_or_404, transition
from .extensions import db
from .models import HOLDING_STATUSES, PAYMENT_METHODS, Appointment, User, utc_now
from .notifications import send_notification
from .slots import run_reserving
from .validation import parse_choice, validate_card_details

CARD_METHODS = ("visa", "mastercard", "paypal")


def _notify_paid(appointment: Appointment, message: str) -> None:
    send_notification(
        "PAYMENT",
        message,
        receiver_id=appointment.salon.host_id,
        metadata={
            "appointment_id": appointment.appointment_id,
            "amount_cents": appointment.payment_amount_cents,
            "payment_method": appointment.payment_method,
        },
    )


def process_payment(appointment_id: int, actor: User, payload: dict) -> Appointment:
    """Settle a pending appointment.

    Card methods are captured immediately and confirm the appointment; cash
    only records the method and stays pending until the host confirms it.
    """
    method = parse_choice(payload.get("payment_method") or "", PAYMENT_METHODS, "payment_method")
    validate_card_details(method, payload)

    def pay() -> Appointment:
        appointment = get_appointment_or_404(appointment_id)
        if appointment.user_id != actor.user_id:
            raise Forbidden("You can only pay for your own appointments")
        if appointment.status != "pending":
            raise BadRequest("Can only process payment for pending appointments")
        if appointment.payment_status == "paid":
            raise BadRequest("Payment has already been completed")

        appointment.payment_method = method
        if method == "cash":
            appointment.remarks = "Cash payment on arrival"
            return appointment

        digits = "".join(ch for ch in str(payload["card_number"]) if ch.isdigit())
        appointment.transaction_id = f"TXN{int(time.time() * 1000)}{appointment.appointment_id}"
        appointment.card_last_four = digits[-4:]
        appointment.card_holder_name = str(payload["card_holder_name"]).strip()
        apply_payment_status(appointment, "paid", remarks=f"{method} payment")
        return appointment

    appointment = run_reserving(pay)
    if appointment.payment_status == "paid":
        current_app.logger.info(
            "Card payment %s captured for appointment %s", appointment.transaction_id, appointment.appointment_id
        )
        _notify_paid(
            appointment,
            f"Payment of {appointment.payment_amount_cents / 100:.2f} received for appointment "
            f"{appointment.appointment_id}",
        )
    return appointment


def confirm_cash_payment(appointment_id: int, actor: User, payload: dict) -> Appointment:
    target = payload.get("status") or "confirmed"
    if target not in ("confirmed", "completed"):
        raise BadRequest("status must be one of: confirmed, completed")

    def confirm() -> tuple[Appointment, str]:
        appointment = get_appointment_or_404(appointment_id)
        is_host = actor.role in (HOST, ADMIN) and (
            actor.role == ADMIN or appointment.salon.host_id == actor.user_id
        )
        if not is_host and appointment.user_id != actor.user_id:
            raise Forbidden("Only the salon host/appointment user can confirm this payment")
        if appointment.payment_method != "cash":
            raise BadRequest("This endpoint is only for cash payments")
        if appointment.payment_status == "paid":
            raise BadRequest("Payment has already been confirmed")
        if appointment.status not in HOLDING_STATUSES:
            raise BadRequest(f"Cannot confirm payment for an appointment with status '{appointment.status}'")

        confirmed_by = "host" if is_host else "user"
        remarks = f"Cash payment confirmed by {confirmed_by}"
        appointment.remarks = remarks
        apply_payment_status(appointment, "paid", remarks=remarks, confirmed_by=actor)
        if target == "completed":
            transition(appointment, "completed")
        appointment.last_status_update = utc_now()
        return appointment, confirmed_by

    appointment, confirmed_by = run_reserving(confirm)
    current_app.logger.info(
        "Cash payment for appointment %s confirmed by %s", appointment.appointment_id, confirmed_by
    )

    other_party = appointment.user_id if confirmed_by == "host" else appointment.salon.host_id
    send_notification(
        "PAYMENT",
        f"Cash payment for appointment {appointment.appointment_id} has been confirmed",
        receiver_id=other_party,
        metadata={"appointment_id": appointment.appointment_id, "status": appointment.status},
    )
    send_notification(
        "ADMIN",
        f"Cash payment of {appointment.payment_amount_cents / 100:.2f} confirmed for appointment "
        f"{appointment.appointment_id}",
        metadata={"appointment_id": appointment.appointment_id, "salon_id": appointment.salon_id},
    )
    return appointment


def create_payment_intent(appointment_id: int, actor: User, payload: dict) -> dict[str, object]:
    """Create a Stripe PaymentIntent for the appointment's outstanding amount."""
    method = payload.get("payment_method")
    if method is not None:
        parse_choice(method, CARD_METHODS, "payment_method")

    appointment = get_appointment_or_404(appointment_id)
    if appointment.user_id != actor.user_id:
        raise Forbidden("You are not authorized to create a payment intent for this appointment")
    if appointment.status != "pending" or appointment.payment_status == "paid":
        raise BadRequest("Can only process payment for pending appointments")

    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        current_app.logger.warning("Stripe secret key not configured")
        raise InternalServerError("Payments are not currently available. Please contact support.")

    try:
        intent = stripe.PaymentIntent.create(
            amount=int(appointment.payment_amount_cents),
            currency=current_app.config.get("STRIPE_CURRENCY", "usd"),
            payment_method_types=["card"],
            metadata={
                "appointment_id": str(appointment.appointment_id),
                "user_id": str(actor.user_id),
                "salon_id": str(appointment.salon_id),
            },
            api_key=stripe_key,
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while creating payment intent", exc_info=exc)
        raise InternalServerError("An error occurred while processing the payment.") from exc

    if method is not None:
        appointment.payment_method = method
    appointment.transaction_id = intent.id
    db.session.commit()

    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "amount_cents": appointment.payment_amount_cents,
    }


def _find_intent_appointment(intent: stripe.PaymentIntent) -> Appointment | None:
    appointment = Appointment.query.filter_by(transaction_id=intent["id"]).first()
    if appointment is not None:
        return appointment
    metadata = intent["metadata"] if "metadata" in intent else None
    if metadata is None or "appointment_id" not in metadata:
        return None
    appointment_id = str(metadata["appointment_id"])
    if appointment_id.isdigit():
        return db.session.get(Appointment, int(appointment_id))
    return None


def handle_webhook(payload: bytes, signature: str | None) -> None:
    """Verify and apply a Stripe webhook event.

    Replays are harmless: an already-paid appointment is left as is.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        current_app.logger.error("Stripe webhook secret not configured - webhooks will not be processed")
        return

    try:
        event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except ValueError:
        current_app.logger.warning("Invalid webhook payload")
        raise BadRequest("Invalid webhook payload") from None
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Invalid signature for webhook")
        raise BadRequest("Invalid webhook signature") from None

    event_type = event["type"]
    intent = event["data"]["object"]
    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        current_app.logger.debug("Ignoring Stripe event %s", event_type)
        return

    def apply() -> Appointment | None:
        appointment = _find_intent_appointment(intent)
        if appointment is None:
            return None
        if event_type == "payment_intent.succeeded":
            if appointment.payment_status == "paid":
                return None
            appointment.transaction_id = intent["id"]
            apply_payment_status(appointment, "paid", remarks="Stripe payment")
        elif appointment.payment_status == "pending":
            appointment.payment_status = "failed"
        return appointment

    try:
        appointment = run_reserving(apply)
    except HTTPException as exc:
        db.session.rollback()
        current_app.logger.error(
            "Failed to apply Stripe event %s for payment intent %s: %s", event_type, intent["id"], exc.description
        )
        if event_type == "payment_intent.succeeded":
            send_notification(
                "ADMIN",
                f"Stripe payment {intent['id']} was captured but could not be applied: {exc.description}",
                metadata={"payment_intent_id": intent["id"]},
            )
        return

    if appointment is None:
        current_app.logger.info("Stripe event %s for %s needed no changes", event_type, intent["id"])
        return
    current_app.logger.info(
        "Stripe event %s applied to appointment %s", event_type, appointment.appointment_id
    )
    if appointment.payment_status == "paid":
        _notify_paid(appointment, f"Online payment received for appointment {appointment.appointment_id}")
