"""Shared fixtures: an app on in-memory SQLite plus small data factories."""
from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from werkzeug.security import generate_password_hash

# Ensure the project root is available on sys.path so tests can import the package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from salon_api import create_app  # noqa: E402
from salon_api.auth import build_token  # noqa: E402
from salon_api.config import TestConfig  # noqa: E402
from salon_api.extensions import db  # noqa: E402
from salon_api.models import (WEEKDAYS, Appointment, AuthAccount, BusinessHours, Salon, Service,  # noqa: E402
                              SlotReservation, User)
from salon_api.scheduling import slot_end  # noqa: E402


def upcoming(weekday: str, min_days: int = 3) -> date:
    """The first ``weekday`` at least ``min_days`` from today (UTC)."""
    day = datetime.now(timezone.utc).date() + timedelta(days=min_days)
    while WEEKDAYS[day.weekday()] != weekday:
        day += timedelta(days=1)
    return day


class Emitted(list):
    def __call__(self, event, payload):
        self.append((event, payload))


@pytest.fixture
def emitted():
    return Emitted()


@pytest.fixture
def app(emitted):
    app = create_app(TestConfig, emitter=emitted)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def factory(role="user", name=None, email=None, password="secret123"):
        counter["n"] += 1
        user = User(
            name=name or f"{role.title()} {counter['n']}",
            email=email or f"{role}{counter['n']}@example.com",
            role=role,
        )
        db.session.add(user)
        db.session.flush()
        db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
        return user

    return factory


@pytest.fixture
def make_salon(app):
    def factory(host, hours=None, status="active", timezone_name="UTC", name="Test Salon"):
        salon = Salon(host_id=host.user_id, name=name, status=status, timezone=timezone_name)
        if hours is None:
            hours = {day: ("09:00", "17:00") for day in WEEKDAYS}
        for day, window in hours.items():
            if window is None:
                salon.business_hours.append(BusinessHours(day=day, is_off=True))
            else:
                salon.business_hours.append(
                    BusinessHours(day=day, start_time=window[0], end_time=window[1], is_off=False)
                )
        db.session.add(salon)
        db.session.commit()
        return salon

    return factory


@pytest.fixture
def make_service(app):
    def factory(salon, duration=30, capacity=1, price_cents=2500, name="Haircut", status="active"):
        service = Service(
            salon_id=salon.salon_id,
            name=name,
            price_cents=price_cents,
            duration_minutes=duration,
            max_appointments_per_slot=capacity,
            status=status,
        )
        db.session.add(service)
        db.session.commit()
        return service

    return factory


@pytest.fixture
def seed_appointment(app):
    """Insert an appointment with its slot hold, bypassing booking rules."""

    def factory(user, service, day, start_time, status="pending", payment_method="cash",
                payment_status="pending"):
        appointment = Appointment(
            user_id=user.user_id,
            service_id=service.service_id,
            salon_id=service.salon_id,
            appointment_date=day,
            start_time=start_time,
            end_time=slot_end(start_time, service.duration_minutes),
            duration_minutes=service.duration_minutes,
            price_cents=service.price_cents,
            status=status,
            reschedule_count=0,
            payment_method=payment_method,
            payment_status=payment_status,
            payment_amount_cents=service.price_cents,
        )
        db.session.add(appointment)
        db.session.flush()
        if status in ("pending", "confirmed"):
            taken = SlotReservation.query.filter_by(
                salon_id=service.salon_id,
                service_id=service.service_id,
                slot_date=day,
                start_time=start_time,
            ).count()
            db.session.add(
                SlotReservation(
                    appointment_id=appointment.appointment_id,
                    salon_id=service.salon_id,
                    service_id=service.service_id,
                    slot_date=day,
                    start_time=start_time,
                    slot_index=taken,
                )
            )
        db.session.commit()
        return appointment

    return factory


@pytest.fixture
def auth_header(app):
    def factory(user):
        token = build_token({"user_id": user.user_id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture
def booking_setup(make_user, make_salon, make_service):
    """A host, a customer, an active salon open 09:00-17:00 daily and a 30 minute service."""
    host = make_user("host")
    customer = make_user("user")
    salon = make_salon(host)
    service = make_service(salon)
    return {"host": host, "customer": customer, "salon": salon, "service": service}


def reload(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)
