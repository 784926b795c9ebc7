"""Business-hours resolution and slot enumeration.

All slot arithmetic works on minutes since local midnight; ``HH:MM`` strings
only appear at the edges (stored columns and JSON). Local means the salon's
own time zone, falling back to ``DEFAULT_TIMEZONE``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from .models import WEEKDAYS, Salon

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class BusinessWindow:
    start: int  # minutes since midnight
    end: int

    @property
    def start_time(self) -> str:
        return format_minutes(self.start)

    @property
    def end_time(self) -> str:
        return format_minutes(self.end)


def to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(total: int) -> str:
    total %= MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def slot_end(start_time: str, duration_minutes: int) -> str:
    return format_minutes(to_minutes(start_time) + duration_minutes)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def resolve_hours(salon: Salon, day: date) -> BusinessWindow | None:
    """Return the opening window of ``salon`` on ``day``, or None when closed."""
    name = weekday_name(day)
    for hours in salon.business_hours:
        if hours.day != name or hours.is_off:
            continue
        if not hours.start_time or not hours.end_time:
            continue
        return BusinessWindow(to_minutes(hours.start_time), to_minutes(hours.end_time))
    return None


def enumerate_slots(window: BusinessWindow, duration_minutes: int) -> list[str]:
    """List bookable start times in ``window`` for a service of the given length.

    A slot is emitted while its start is before closing and the service
    still finishes by closing time.
    """
    if duration_minutes <= 0:
        return []
    slots = []
    current = window.start
    while current < window.end and current + duration_minutes <= window.end:
        slots.append(format_minutes(current))
        current += duration_minutes
    return slots


def within_window(window: BusinessWindow, start: int, end: int) -> bool:
    return window.start <= start < window.end and end <= window.end


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    # Half-open: back-to-back appointments do not overlap.
    return start_a < end_b and start_b < end_a


def salon_zone(salon: Salon | None) -> ZoneInfo:
    name = (salon.timezone if salon else None) or current_app.config.get("DEFAULT_TIMEZONE", "UTC")
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        current_app.logger.warning("Unknown time zone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def local_now(zone: ZoneInfo) -> datetime:
    return datetime.now(timezone.utc).astimezone(zone)


def local_start(day: date, start_time: str, zone: ZoneInfo) -> datetime:
    minutes = to_minutes(start_time)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=zone)


def cancellation_deadline(day: date, start_time: str, zone: ZoneInfo, window_hours: int) -> datetime:
    """Last moment (UTC) at which the appointment may still be cancelled."""
    start = local_start(day, start_time, zone)
    return (start - timedelta(hours=window_hours)).astimezone(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
