"""Persisted notifications with a pluggable real-time emitter."""
from __future__ import annotations

from typing import Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import Notification

BROADCAST_TYPES = ("ADMIN", "HOST", "USER")

Emitter = Callable[[str, dict], None]


def _log_emitter(event: str, payload: dict) -> None:
    current_app.logger.debug("Notification event %s: %s", event, payload)


class NotificationDispatcher:
    """Stores notifications and pushes them through ``emitter``.

    The emitter is whatever the deployment wires in (a socket server, a
    queue producer); by default events are only logged.
    """

    def __init__(self, emitter: Emitter | None = None) -> None:
        self.emitter = emitter if emitter is not None else _log_emitter

    def send(
        self,
        type: str,
        message: str,
        receiver_id: int | None = None,
        metadata: dict | None = None,
    ) -> Notification | None:
        try:
            notification = Notification(
                receiver_id=receiver_id,
                type=type,
                message=message,
                extra=metadata or {},
            )
            db.session.add(notification)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.warning("Failed to store %s notification: %s", type, exc)
            return None

        if receiver_id is None and type in BROADCAST_TYPES:
            event = f"get-notification::{type}"
        else:
            event = f"get-notification::{receiver_id}"
        try:
            self.emitter(event, notification.to_dict())
        except Exception as exc:  # emitter failures never reach the caller
            current_app.logger.warning("Failed to emit %s: %s", event, exc)
        return notification


def init_app(app, emitter: Emitter | None = None) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(emitter)
    app.extensions["notifications"] = dispatcher
    return dispatcher


def send_notification(
    type: str,
    message: str,
    receiver_id: int | None = None,
    metadata: dict | None = None,
) -> Notification | None:
    """Send through the app's dispatcher. Call only after the caller has committed."""
    dispatcher: NotificationDispatcher = current_app.extensions["notifications"]
    return dispatcher.send(type, message, receiver_id=receiver_id, metadata=metadata)
