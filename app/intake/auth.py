from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.intake import audit
from app.intake.db import db_session
from app.intake.errors import NotFound, ValidationFailed
from app.intake.models import LoginAttempt, User
from app.intake.rbac import admin_required, login_required

bp = Blueprint("auth", __name__)


class LoginRateLimiter:
    """Per-IP attempt counter kept in the database so every worker sees the same window."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)

    def is_limited(self, s: Session, ip: str) -> bool:
        cutoff = datetime.utcnow() - self.window
        s.execute(delete(LoginAttempt).where(LoginAttempt.ip_address == ip, LoginAttempt.attempted_at <= cutoff))
        count = s.scalar(select(func.count(LoginAttempt.id)).where(LoginAttempt.ip_address == ip)) or 0
        return count >= self.limit

    def record(self, s: Session, ip: str, email: str | None = None) -> None:
        s.add(LoginAttempt(ip_address=ip, email=email, attempted_at=datetime.utcnow()))
        s.flush()

    def clear(self, s: Session, ip: str) -> None:
        s.execute(delete(LoginAttempt).where(LoginAttempt.ip_address == ip))


def _limiter() -> LoginRateLimiter:
    return LoginRateLimiter(
        int(current_app.config.get("LOGIN_RATE_LIMIT") or 5),
        int(current_app.config.get("LOGIN_RATE_WINDOW_SECONDS") or 300),
    )


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "company_name": user.company_name,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.impersonator_id = session.get("impersonator_id")
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    ip = request.remote_addr or "unknown"

    s = db_session()
    limiter = _limiter()
    if limiter.is_limited(s, ip):
        s.commit()
        current_app.logger.warning("Login rate limit hit (ip=%s request_id=%s)", ip, g.request_id)
        return jsonify({"error": "RateLimited", "message": "Too many login attempts. Please wait and try again."}), 429

    limiter.record(s, ip, email)
    user = s.scalars(select(User).where(User.email == email)).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        audit.record_event(
            s,
            actor=None,
            action=audit.USER_LOGIN_FAILED,
            resource_type="user",
            resource_id=email or None,
            metadata={"email": email},
        )
        s.commit()
        return jsonify({"error": "InvalidCredentials", "message": "Invalid credentials."}), 401

    limiter.clear(s, ip)
    session.clear()
    session["user_id"] = user.id
    audit.record_event(s, actor=user, action=audit.USER_LOGIN, resource_type="user", resource_id=user.id)
    s.commit()
    return jsonify({"user": serialize_user(user)})


@bp.post("/logout")
@login_required
def logout():
    s = db_session()
    user = g.current_user
    audit.record_event(s, actor=user, action=audit.USER_LOGOUT, resource_type="user", resource_id=user.id)
    s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me():
    out = serialize_user(g.current_user)
    out["impersonated_by"] = g.impersonator_id
    return jsonify(out)


@bp.post("/impersonate/<int:user_id>")
@admin_required
def impersonate_start(user_id: int):
    s = db_session()
    admin = g.current_user
    target = s.get(User, user_id)
    if target is None or not target.is_active:
        raise NotFound(f"User {user_id} not found")
    if target.is_admin:
        raise ValidationFailed("Administrators cannot be impersonated")

    audit.record_event(
        s,
        actor=admin,
        action=audit.ADMIN_IMPERSONATE_START,
        resource_type="user",
        resource_id=target.id,
        metadata={"target_email": target.email},
    )
    s.commit()
    session["impersonator_id"] = admin.id
    session["user_id"] = target.id
    current_app.logger.info("Admin %s impersonating user %s", admin.id, target.id)
    return jsonify({"user": serialize_user(target), "impersonated_by": admin.id})


@bp.post("/impersonate/end")
@login_required
def impersonate_end():
    impersonator_id = session.get("impersonator_id")
    if not impersonator_id:
        raise ValidationFailed("Not impersonating")

    s = db_session()
    admin = s.get(User, int(impersonator_id))
    target = g.current_user
    session.pop("impersonator_id", None)
    if admin is None or not admin.is_active or not admin.is_admin:
        session.clear()
        raise NotFound("Original administrator account is no longer available")

    audit.record_event(
        s,
        actor=admin,
        action=audit.ADMIN_IMPERSONATE_END,
        resource_type="user",
        resource_id=target.id,
        metadata={"target_email": target.email},
    )
    s.commit()
    session["user_id"] = admin.id
    return jsonify({"user": serialize_user(admin)})
