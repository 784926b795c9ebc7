"""Income ledger and notification routes."""
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy import and_, or_
from werkzeug.exceptions import BadRequest, Forbidden, NotFound

from .auth import ADMIN, HOST, current_user, login_required
from .errors import success
from .extensions import db
from .income import INCOME_STATUSES, REPORT_PERIODS, generate_report, get_host_incomes, update_income_status
from .models import Notification, User
from .validation import parse_choice, parse_date

bp = Blueprint("api_ext", __name__)

ROLE_BROADCASTS = {"admin": "ADMIN", "host": "HOST", "user": "USER"}


# INCOME
@bp.get("/incomes")
@login_required(HOST)
def list_incomes():
    """List the calling host's income entries.
    ---
    tags:
      - Income
    security:
      - Bearer: []
    parameters:
      - name: status
        in: query
        type: string
        enum: [pending, paid, cancelled]
      - name: type
        in: query
        type: string
        enum: [service, product]
      - name: salon_id
        in: query
        type: integer
    responses:
      200:
        description: Income entries, newest first
    """
    filters = request.args.to_dict()
    if filters.get("status"):
        parse_choice(filters["status"], INCOME_STATUSES, "status")
    incomes = get_host_incomes(current_user(), filters)
    return success([income.to_dict() for income in incomes], "Incomes retrieved")


@bp.get("/incomes/report")
@login_required(HOST)
def income_report():
    """Summarise paid income over a period or an explicit date range.
    ---
    tags:
      - Income
    security:
      - Bearer: []
    parameters:
      - name: period
        in: query
        type: string
        enum: [daily, weekly, monthly, yearly]
        default: monthly
      - name: start_date
        in: query
        type: string
      - name: end_date
        in: query
        type: string
    responses:
      200:
        description: Totals for all, service and product income
      400:
        description: Invalid period or date range
    """
    period = request.args.get("period", "monthly")
    if period not in REPORT_PERIODS:
        raise BadRequest(f"period must be one of: {', '.join(REPORT_PERIODS)}")

    start_raw = request.args.get("start_date")
    end_raw = request.args.get("end_date")
    if bool(start_raw) != bool(end_raw):
        raise BadRequest("start_date and end_date must be given together")
    start_date = parse_date(start_raw, "start_date") if start_raw else None
    end_date = parse_date(end_raw, "end_date") if end_raw else None

    report = generate_report(current_user(), period, start_date, end_date)
    return success(report, "Income report generated")


@bp.patch("/incomes/<int:income_id>/status")
@login_required(HOST, ADMIN)
def change_income_status(income_id: int):
    payload = request.get_json(silent=True) or {}
    income = update_income_status(income_id, current_user(), payload.get("status"))
    return success(income.to_dict(), "Income status updated")


# NOTIFICATIONS
def _visible_to(user: User):
    return or_(
        Notification.receiver_id == user.user_id,
        and_(
            Notification.receiver_id.is_(None),
            Notification.type == ROLE_BROADCASTS.get(user.role, "USER"),
        ),
    )


@bp.get("/notifications")
@login_required()
def get_notifications():
    """Get the caller's notifications with pagination.
    ---
    tags:
      - Notifications
    security:
      - Bearer: []
    parameters:
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 20
        maximum: 50
      - name: unread_only
        in: query
        type: boolean
        default: false
    responses:
      200:
        description: List of notifications with pagination
      400:
        description: Invalid parameters
    """
    try:
        page = max(1, int(request.args.get("page", 1)))
        limit = min(50, max(1, int(request.args.get("limit", 20))))
    except (ValueError, TypeError):
        raise BadRequest("page and limit must be integers") from None
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    user = current_user()
    query = Notification.query.filter(_visible_to(user))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc(), Notification.notification_id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )

    return success(
        {
            "notifications": [n.to_dict() for n in notifications],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
            "unread_count": Notification.query.filter(
                _visible_to(user), Notification.is_read.is_(False)
            ).count(),
        },
        "Notifications retrieved",
    )


@bp.patch("/notifications/<int:notification_id>/read")
@login_required()
def mark_notification_read(notification_id: int):
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    user = current_user()
    if not Notification.query.filter(
        Notification.notification_id == notification_id, _visible_to(user)
    ).count():
        raise Forbidden("You cannot modify this notification")

    notification.is_read = True
    db.session.commit()
    return success(notification.to_dict(), "Notification marked as read")
