"""Error envelope and handlers shared by every blueprint."""
from __future__ import annotations

from flask import Flask, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db

_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    500: "server_error",
}


def success(data: object = None, message: str = "OK", status: int = 200):
    """Build the uniform success envelope."""
    return jsonify({"success": True, "message": message, "data": data}), status


def failure(status: int, message: str, code: str | None = None):
    body = {
        "success": False,
        "error": code or _ERROR_CODES.get(status, "error"),
        "message": message,
        "data": None,
    }
    return jsonify(body), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        db.session.rollback()
        return failure(exc.code or 500, exc.description or exc.name)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Unhandled database error", exc_info=exc)
        return failure(500, "A database error occurred.", "database_error")
