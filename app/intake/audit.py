from __future__ import annotations

import json
import logging
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.intake.errors import AuditWriteFailed
from app.intake.models import AuditLogEntry, User

logger = logging.getLogger(__name__)

# Actions
USER_LOGIN = "USER_LOGIN"
USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
USER_LOGOUT = "USER_LOGOUT"
DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
DOCUMENT_DOWNLOAD = "DOCUMENT_DOWNLOAD"
DOCUMENT_APPROVE = "DOCUMENT_APPROVE"
DOCUMENT_REJECT = "DOCUMENT_REJECT"
DOCUMENT_STATUS_UPDATE = "DOCUMENT_STATUS_UPDATE"
DOCUMENT_DELETE = "DOCUMENT_DELETE"
ADMIN_IMPERSONATE_START = "ADMIN_IMPERSONATE_START"
ADMIN_IMPERSONATE_END = "ADMIN_IMPERSONATE_END"
SENSITIVE_DATA_ACCESS = "SENSITIVE_DATA_ACCESS"
MERCHANT_APPLICATION_CREATE = "MERCHANT_APPLICATION_CREATE"
MERCHANT_APPLICATION_UPDATE = "MERCHANT_APPLICATION_UPDATE"
MERCHANT_APPLICATION_SUBMIT = "MERCHANT_APPLICATION_SUBMIT"
MERCHANT_APPLICATION_REVIEW = "MERCHANT_APPLICATION_REVIEW"
MERCHANT_APPLICATION_DELETE = "MERCHANT_APPLICATION_DELETE"


def _request_context() -> tuple[str | None, str | None, str | None]:
    if not has_request_context():
        return None, None, None
    return (
        getattr(g, "request_id", None),
        request.remote_addr,
        request.headers.get("User-Agent"),
    )


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | int | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLogEntry | None:
    """
    Append one audit entry in the caller's unit of work.

    The insert runs inside a SAVEPOINT so a failing audit write rolls back only
    itself; the failure is logged and None is returned. Callers never see it.
    """
    rid, ip, user_agent = _request_context()
    try:
        ev = AuditLogEntry(
            request_id=request_id or rid,
            actor_id=actor.id if actor else None,
            actor_email=actor.email if actor else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
            ip_address=ip,
            user_agent=user_agent,
        )
        with s.begin_nested():
            s.add(ev)
            s.flush()
        return ev
    except Exception as e:
        err = AuditWriteFailed(f"{action} {resource_type}:{resource_id}: {e}")
        logger.error("Audit write failed (request_id=%s): %s", rid, err, exc_info=True)
        return None


def event_metadata(ev: AuditLogEntry) -> dict[str, Any]:
    if not ev.metadata_json:
        return {}
    try:
        return json.loads(ev.metadata_json)
    except ValueError:
        return {}


def trail(s: Session, resource_type: str, resource_id: str | int) -> list[AuditLogEntry]:
    """Full history of one resource, newest first."""
    stmt = (
        select(AuditLogEntry)
        .where(AuditLogEntry.resource_type == resource_type, AuditLogEntry.resource_id == str(resource_id))
        .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
    )
    return list(s.scalars(stmt))


def trail_for_actor(s: Session, actor_id: int, limit: int = 100) -> list[AuditLogEntry]:
    stmt = (
        select(AuditLogEntry)
        .where(AuditLogEntry.actor_id == actor_id)
        .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        .limit(limit)
    )
    return list(s.scalars(stmt))


def recent_events(s: Session, limit: int = 50) -> list[AuditLogEntry]:
    stmt = select(AuditLogEntry).order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc()).limit(limit)
    return list(s.scalars(stmt))


def serialize_event(ev: AuditLogEntry) -> dict[str, Any]:
    return {
        "id": ev.id,
        "timestamp": ev.timestamp.isoformat() if ev.timestamp else None,
        "actor_id": ev.actor_id,
        "actor_email": ev.actor_email,
        "action": ev.action,
        "resource_type": ev.resource_type,
        "resource_id": ev.resource_id,
        "metadata": event_metadata(ev),
        "ip_address": ev.ip_address,
    }
