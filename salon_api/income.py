"""Income ledger: one append-only entry per completed payment."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from flask import current_app
from werkzeug.exceptions import BadRequest, Forbidden, NotFound

from .auth import ADMIN
from .extensions import db
from .models import Appointment, Income, User, utc_now
from .validation import parse_positive_int

INCOME_STATUSES = ("pending", "paid", "cancelled")
REPORT_PERIODS = ("daily", "weekly", "monthly", "yearly")


def create_income(
    appointment: Appointment,
    payment_method: str,
    remarks: str,
    confirmed_by: User | None = None,
) -> Income:
    """Add a paid service income for ``appointment`` to the current session.

    The caller commits, so the entry lands atomically with the payment update.
    """
    income = Income(
        salon_id=appointment.salon_id,
        host_id=appointment.salon.host_id,
        appointment_id=appointment.appointment_id,
        confirmed_by_id=confirmed_by.user_id if confirmed_by else None,
        type="service",
        amount_cents=appointment.price_cents,
        status="paid",
        payment_method=payment_method,
        transaction_date=utc_now(),
        remarks=remarks,
    )
    db.session.add(income)
    current_app.logger.info(
        "Recorded %s income of %s cents for appointment %s",
        payment_method,
        appointment.price_cents,
        appointment.appointment_id,
    )
    return income


def get_host_incomes(host: User, filters: dict[str, object]) -> list[Income]:
    query = Income.query.filter(Income.host_id == host.user_id)
    if filters.get("status"):
        query = query.filter(Income.status == filters["status"])
    if filters.get("type"):
        query = query.filter(Income.type == filters["type"])
    if filters.get("salon_id"):
        query = query.filter(Income.salon_id == parse_positive_int(filters["salon_id"], "salon_id"))
    return query.order_by(Income.transaction_date.desc()).all()


def report_range(period: str, today: date) -> tuple[date, date]:
    if period == "daily":
        return today, today
    if period == "weekly":
        # Weeks run Sunday..Saturday.
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == "monthly":
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    if period == "yearly":
        return today.replace(month=1, day=1), today.replace(month=12, day=31)
    raise BadRequest(f"period must be one of: {', '.join(REPORT_PERIODS)}")


def generate_report(
    host: User,
    period: str = "monthly",
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, object]:
    if start_date is None or end_date is None:
        start_date, end_date = report_range(period, datetime.now(timezone.utc).date())
    if start_date > end_date:
        raise BadRequest("start_date must not be after end_date")

    window_start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
    entries = (
        Income.query.filter(
            Income.host_id == host.user_id,
            Income.status == "paid",
            Income.transaction_date >= window_start,
            Income.transaction_date <= window_end,
        )
        .order_by(Income.transaction_date.asc())
        .all()
    )

    return {
        "period": period,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "total_amount_cents": sum(entry.amount_cents for entry in entries),
        "service_income_cents": sum(e.amount_cents for e in entries if e.type == "service"),
        "product_income_cents": sum(e.amount_cents for e in entries if e.type == "product"),
        "transactions": [entry.to_dict() for entry in entries],
    }


def update_income_status(income_id: int, actor: User, status: str) -> Income:
    if status not in INCOME_STATUSES:
        raise BadRequest(f"status must be one of: {', '.join(INCOME_STATUSES)}")
    income = db.session.get(Income, income_id)
    if income is None:
        raise NotFound("Income not found")
    if actor.role != ADMIN and income.host_id != actor.user_id:
        raise Forbidden("You are not allowed to update this income")
    income.status = status
    db.session.commit()
    return income
