"""Health and authentication routes, plus blueprint registration."""
from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, Flask, current_app, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadRequest, Conflict, Unauthorized
from werkzeug.security import check_password_hash, generate_password_hash

from .auth import HOST, USER, build_token
from .errors import failure, register_error_handlers, success
from .extensions import db
from .models import AuthAccount, User

bp = Blueprint("api", __name__)


@bp.get("/health")
def health_check():
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return success({"status": "ok"})


@bp.get("/db-health")
def database_health():
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return failure(500, "Database is unavailable", "database_error")

    return success({"database": "ok"})


@bp.post("/auth/register")
def register_user():
    """Register a new customer or salon host.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [user, host]
            phone:
              type: string
          required:
            - name
            - email
            - password
    responses:
      201:
        description: User registered successfully
      400:
        description: Invalid payload
      409:
        description: Email already exists
    """
    payload = request.get_json(silent=True) or {}

    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = (payload.get("role") or USER).strip().lower()
    phone = (payload.get("phone") or "").strip() or None

    if not name or not email or not password:
        raise BadRequest("name, email, and password are required")

    # Admin accounts are never self-registered.
    if role not in (USER, HOST):
        raise BadRequest("role must be 'user' or 'host'")

    if User.query.filter_by(email=email).first():
        raise Conflict("email address is already in use")

    user = User(name=name, email=email, role=role, phone=phone)
    db.session.add(user)
    db.session.flush()
    db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
    db.session.commit()
    current_app.logger.info("Registered %s account %s", role, user.user_id)

    token = build_token({"user_id": user.user_id, "role": user.role})
    return success({"token": token, "user": user.to_dict_basic()}, "User registered successfully", 201)


@bp.post("/auth/login")
def login():
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
          required:
            - email
            - password
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid email or password
    """
    payload = request.get_json(silent=True) or {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        raise BadRequest("email and password are required")

    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )
    if not record:
        raise Unauthorized("invalid email or password")

    user, auth_account = record
    if not check_password_hash(auth_account.password_hash, password):
        raise Unauthorized("invalid email or password")

    auth_account.last_login_at = datetime.now(timezone.utc)
    db.session.commit()

    token = build_token({"user_id": user.user_id, "role": user.role})
    return success({"token": token, "user": user.to_dict_basic()}, "Login successful")


def register_routes(app: Flask) -> None:
    from .appointment_routes import bp as appointments_bp
    from .routes_extended import bp as ledger_bp
    from .salon_routes import bp as salons_bp

    app.register_blueprint(bp)
    app.register_blueprint(salons_bp)
    app.register_blueprint(appointments_bp)
    app.register_blueprint(ledger_bp)
    register_error_handlers(app)
