"""Salon onboarding, business hours and service catalog endpoints."""
from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import Blueprint, current_app, request
from werkzeug.exceptions import BadRequest, Forbidden, NotFound

from .auth import ADMIN, HOST, current_user, login_required
from .errors import success
from .extensions import db
from .models import WEEKDAYS, BusinessHours, Salon, Service, User
from .notifications import send_notification
from .scheduling import to_minutes
from .validation import parse_choice, parse_hhmm, parse_positive_int, require_fields

bp = Blueprint("salons", __name__)

SALON_STATUSES = ("pending", "active", "inactive", "rejected")
SERVICE_FIELDS = ("name", "description", "category", "price_cents", "duration_minutes",
                  "max_appointments_per_slot", "status")


def _get_salon_or_404(salon_id: int) -> Salon:
    salon = db.session.get(Salon, salon_id)
    if salon is None:
        raise NotFound("Salon not found")
    return salon


def _ensure_owner(salon: Salon, actor: User) -> None:
    if actor.role != ADMIN and salon.host_id != actor.user_id:
        raise Forbidden("You can only manage your own salon")


def _parse_timezone(value: object) -> str | None:
    if value in (None, ""):
        return None
    try:
        ZoneInfo(str(value))
    except (ZoneInfoNotFoundError, ValueError):
        raise BadRequest(f"Unknown timezone '{value}'") from None
    return str(value)


def _parse_business_hours(entries: object) -> list[BusinessHours]:
    """Build one BusinessHours row per weekday entry of the payload."""
    if not isinstance(entries, list):
        raise BadRequest("business_hours must be a list")

    seen = set()
    rows = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise BadRequest("business_hours entries must be objects")
        day = parse_choice(entry.get("day"), WEEKDAYS, "day")
        if day in seen:
            raise BadRequest(f"Duplicate business hours for {day}")
        seen.add(day)

        if entry.get("is_off"):
            rows.append(BusinessHours(day=day, is_off=True))
            continue
        start_time = parse_hhmm(entry.get("start_time"), "start_time")
        end_time = parse_hhmm(entry.get("end_time"), "end_time")
        if to_minutes(end_time) <= to_minutes(start_time):
            raise BadRequest(f"end_time must be after start_time on {day}")
        rows.append(BusinessHours(day=day, start_time=start_time, end_time=end_time, is_off=False))
    return rows


def _apply_service_fields(service: Service, payload: dict) -> None:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise BadRequest("name must not be empty")
        service.name = name
    if "description" in payload:
        service.description = payload.get("description")
    if "category" in payload:
        service.category = payload.get("category")
    if "price_cents" in payload:
        service.price_cents = parse_positive_int(payload["price_cents"], "price_cents", minimum=0)
    if "duration_minutes" in payload:
        service.duration_minutes = parse_positive_int(payload["duration_minutes"], "duration_minutes")
    if "max_appointments_per_slot" in payload:
        service.max_appointments_per_slot = parse_positive_int(
            payload["max_appointments_per_slot"], "max_appointments_per_slot"
        )
    if "status" in payload:
        service.status = parse_choice(payload["status"], ("active", "inactive"), "status")


@bp.post("/salons")
@login_required(HOST)
def create_salon():
    """Register a salon for the calling host.
    ---
    tags:
      - Salons
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - name
          properties:
            name:
              type: string
            phone:
              type: string
            address:
              type: string
            gender:
              type: string
              enum: [male, female, both]
            timezone:
              type: string
              example: America/New_York
            business_hours:
              type: array
              items:
                type: object
                properties:
                  day:
                    type: string
                  start_time:
                    type: string
                  end_time:
                    type: string
                  is_off:
                    type: boolean
    responses:
      201:
        description: Salon created and awaiting approval
      400:
        description: Invalid payload
    """
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "name")
    host = current_user()

    gender = payload.get("gender")
    if gender is not None:
        gender = parse_choice(gender, ("male", "female", "both"), "gender")

    salon = Salon(
        host_id=host.user_id,
        name=payload["name"].strip(),
        phone=payload.get("phone"),
        address=payload.get("address"),
        gender=gender,
        timezone=_parse_timezone(payload.get("timezone")),
        status="pending",
    )
    salon.business_hours = _parse_business_hours(payload.get("business_hours") or [])
    db.session.add(salon)
    db.session.commit()
    current_app.logger.info("Salon %s submitted by host %s", salon.salon_id, host.user_id)

    send_notification(
        "ADMIN",
        f"New salon '{salon.name}' is waiting for approval",
        metadata={"salon_id": salon.salon_id},
    )
    return success(salon.to_dict(), "Salon created successfully", 201)


@bp.get("/salons/<int:salon_id>")
def get_salon(salon_id: int):
    return success(_get_salon_or_404(salon_id).to_dict(), "Salon retrieved")


@bp.patch("/salons/<int:salon_id>/status")
@login_required(ADMIN)
def update_salon_status(salon_id: int):
    """Approve, reject or deactivate a salon.
    ---
    tags:
      - Salons
    security:
      - Bearer: []
    responses:
      200:
        description: Salon status updated
      404:
        description: Salon not found
    """
    payload = request.get_json(silent=True) or {}
    status = parse_choice(payload.get("status"), SALON_STATUSES, "status")
    salon = _get_salon_or_404(salon_id)

    salon.status = status
    if payload.get("remarks"):
        salon.remarks = payload["remarks"]
    db.session.commit()
    current_app.logger.info("Salon %s is now %s", salon.salon_id, status)

    send_notification(
        "HOST",
        f"Your salon '{salon.name}' is now {status}",
        receiver_id=salon.host_id,
        metadata={"salon_id": salon.salon_id, "status": status},
    )
    return success(salon.to_dict(), "Salon status updated")


@bp.put("/salons/<int:salon_id>/business-hours")
@login_required(HOST, ADMIN)
def replace_business_hours(salon_id: int):
    """Replace the weekly business hours of a salon.

    Existing bookings are left untouched.
    """
    payload = request.get_json(silent=True) or {}
    salon = _get_salon_or_404(salon_id)
    _ensure_owner(salon, current_user())

    rows = _parse_business_hours(payload.get("business_hours"))
    # Flush the removals first so the (salon, day) key is free for the new rows.
    salon.business_hours = []
    db.session.flush()
    salon.business_hours = rows
    db.session.commit()
    return success(salon.to_dict(), "Business hours updated")


@bp.get("/salons/<int:salon_id>/services")
def list_services(salon_id: int):
    _get_salon_or_404(salon_id)
    query = Service.query.filter_by(salon_id=salon_id)
    if request.args.get("include_inactive", "").lower() != "true":
        query = query.filter(Service.status == "active")
    services = query.order_by(Service.name.asc()).all()
    return success([service.to_dict() for service in services], "Services retrieved")


@bp.post("/salons/<int:salon_id>/services")
@login_required(HOST, ADMIN)
def create_service(salon_id: int):
    """Add a service to a salon.
    ---
    tags:
      - Services
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - name
            - price_cents
            - duration_minutes
          properties:
            name:
              type: string
            description:
              type: string
            category:
              type: string
            price_cents:
              type: integer
            duration_minutes:
              type: integer
            max_appointments_per_slot:
              type: integer
              default: 1
    responses:
      201:
        description: Service created
      403:
        description: Caller does not own the salon
    """
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "name", "price_cents", "duration_minutes")
    salon = _get_salon_or_404(salon_id)
    _ensure_owner(salon, current_user())

    service = Service(salon_id=salon.salon_id, max_appointments_per_slot=1, status="active")
    _apply_service_fields(service, {key: payload[key] for key in SERVICE_FIELDS if key in payload})
    db.session.add(service)
    db.session.commit()
    return success(service.to_dict(), "Service created successfully", 201)


@bp.put("/services/<int:service_id>")
@login_required(HOST, ADMIN)
def update_service(service_id: int):
    """Update a service.

    Booked appointments keep the price and duration they were booked with.
    """
    payload = request.get_json(silent=True) or {}
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFound("Service not found")
    _ensure_owner(service.salon, current_user())

    _apply_service_fields(service, payload)
    db.session.commit()
    return success(service.to_dict(), "Service updated successfully")
