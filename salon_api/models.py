"""Database models for the salon booking backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Appointment statuses that hold a unit of slot capacity.
HOLDING_STATUSES = ("pending", "confirmed")
TERMINAL_STATUSES = ("cancelled", "completed", "no-show")
APPOINTMENT_STATUSES = HOLDING_STATUSES + TERMINAL_STATUSES

PAYMENT_METHODS = ("cash", "visa", "mastercard", "paypal")
PAYMENT_STATUSES = ("pending", "paid", "refunded", "failed")


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "user",
            "host",
            "admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="user",
    )
    phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    salons = db.relationship("Salon", back_populates="host", lazy="dynamic")
    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Salon(db.Model):
    __tablename__ = "salons"

    salon_id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(30))
    address = db.Column(db.String(255))
    gender = db.Column(db.String(10))  # male, female, both
    # IANA zone name; slot math is done in this zone.
    timezone = db.Column(db.String(64))
    status = db.Column(
        db.Enum(
            "pending",
            "active",
            "inactive",
            "rejected",
            name="salon_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    remarks = db.Column(db.String(255), default="Initial submission")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    host = db.relationship("User", back_populates="salons")
    business_hours = db.relationship(
        "BusinessHours",
        back_populates="salon",
        cascade="all, delete-orphan",
        order_by="BusinessHours.hours_id",
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.salon_id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "gender": self.gender,
            "timezone": self.timezone,
            "status": self.status,
            "remarks": self.remarks,
            "host": self.host.to_dict_basic() if self.host else None,
            "business_hours": [hours.to_dict() for hours in self.business_hours],
        }


class BusinessHours(db.Model):
    """Opening window of a salon for one weekday."""

    __tablename__ = "business_hours"
    __table_args__ = (db.UniqueConstraint("salon_id", "day", name="uq_business_hours_day"),)

    hours_id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.salon_id"), nullable=False)
    day = db.Column(
        db.Enum(*WEEKDAYS, name="weekday", native_enum=False, validate_strings=True),
        nullable=False,
    )
    start_time = db.Column(db.String(5))  # HH:MM
    end_time = db.Column(db.String(5))  # HH:MM
    is_off = db.Column(db.Boolean, nullable=False, default=False)

    salon = db.relationship("Salon", back_populates="business_hours")

    def to_dict(self) -> dict[str, object]:
        return {
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "is_off": bool(self.is_off),
        }


class Service(db.Model):
    """Services offered by a salon."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.salon_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    max_appointments_per_slot = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.Enum("active", "inactive", name="service_status", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="active",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    salon = db.relationship("Salon")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "salon_id": self.salon_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "duration_minutes": self.duration_minutes,
            "max_appointments_per_slot": self.max_appointments_per_slot,
            "status": self.status,
        }


class Appointment(db.Model):
    """A booked service at a salon, with its embedded payment info."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.salon_id"), nullable=False)

    appointment_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # HH:MM
    end_time = db.Column(db.String(5), nullable=False)  # HH:MM
    # Copied from the service at booking time.
    duration_minutes = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    last_status_update = db.Column(db.DateTime(timezone=True))
    reschedule_count = db.Column(db.Integer, nullable=False, default=0)
    cancellation_deadline = db.Column(db.DateTime(timezone=True))
    notes = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)
    remarks = db.Column(db.String(255))

    payment_method = db.Column(
        db.Enum(*PAYMENT_METHODS, name="payment_method", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="cash",
    )
    payment_status = db.Column(
        db.Enum(*PAYMENT_STATUSES, name="payment_status", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="pending",
    )
    payment_amount_cents = db.Column(db.Integer, nullable=False)
    payment_currency = db.Column(db.String(3), nullable=False, default="USD")
    transaction_id = db.Column(db.String(255), unique=True)
    card_last_four = db.Column(db.String(4))
    card_holder_name = db.Column(db.String(255))
    payment_date = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    user = db.relationship("User")
    service = db.relationship("Service")
    salon = db.relationship("Salon")

    def payment_dict(self) -> dict[str, object]:
        return {
            "method": self.payment_method,
            "status": self.payment_status,
            "amount_cents": self.payment_amount_cents,
            "currency": self.payment_currency,
            "transaction_id": self.transaction_id,
            "card_last_four": self.card_last_four,
            "card_holder_name": self.card_holder_name,
            "payment_date": _iso(self.payment_date),
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "user_id": self.user_id,
            "service_id": self.service_id,
            "salon_id": self.salon_id,
            "appointment_date": self.appointment_date.isoformat() if self.appointment_date else None,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "price_cents": self.price_cents,
            "status": self.status,
            "last_status_update": _iso(self.last_status_update),
            "reschedule_count": self.reschedule_count,
            "cancellation_deadline": _iso(self.cancellation_deadline),
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "remarks": self.remarks,
            "payment": self.payment_dict(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SlotReservation(db.Model):
    """One held unit of capacity for a (salon, service, date, start time) slot.

    ``slot_index`` runs from 0 to ``max_appointments_per_slot - 1``; the unique
    key makes the database reject a reservation beyond capacity even when two
    requests race for the last free index.
    """

    __tablename__ = "slot_reservations"
    __table_args__ = (
        db.UniqueConstraint(
            "salon_id",
            "service_id",
            "slot_date",
            "start_time",
            "slot_index",
            name="uq_slot_reservation_index",
        ),
    )

    reservation_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(
        db.Integer,
        db.ForeignKey("appointments.appointment_id"),
        nullable=False,
        unique=True,
    )
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.salon_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    slot_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)
    slot_index = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)


class Income(db.Model):
    """Ledger entry for money received by a salon host."""

    __tablename__ = "incomes"

    income_id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.salon_id"), nullable=False)
    host_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True)
    confirmed_by_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    type = db.Column(
        db.Enum("service", "product", name="income_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum("pending", "paid", "cancelled", name="income_status", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="pending",
    )
    payment_method = db.Column(
        db.Enum(*PAYMENT_METHODS, name="income_payment_method", native_enum=False, validate_strings=True),
        nullable=False,
    )
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    remarks = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    salon = db.relationship("Salon")
    confirmed_by = db.relationship("User", foreign_keys=[confirmed_by_id])

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.income_id,
            "salon_id": self.salon_id,
            "host_id": self.host_id,
            "appointment_id": self.appointment_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "transaction_date": _iso(self.transaction_date),
            "confirmed_by": self.confirmed_by.to_dict_basic() if self.confirmed_by else None,
            "remarks": self.remarks,
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    # Null for broadcast types (ADMIN, HOST, USER).
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    type = db.Column(
        db.Enum(
            "ADMIN",
            "HOST",
            "USER",
            "PAYMENT",
            name="notification_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    message = db.Column(db.Text, nullable=False)
    extra = db.Column("metadata", db.JSON, nullable=True, default=dict)
    is_read = db.Column(db.Boolean, nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "receiver_id": self.receiver_id,
            "type": self.type,
            "message": self.message,
            "metadata": self.extra or {},
            "is_read": bool(self.is_read),
            "created_at": _iso(self.created_at),
        }
