from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import String, select

from app.intake import audit
from app.intake.errors import AlreadyTerminal, InvalidTransition, MissingReason, NotFound, NotReady, OwnerNotFound
from app.intake.events import ApplicationStatusChanged, Recipient, emit
from app.intake.models import Client
from app.intake.modules.merchant_applications.fields import (
    FIELDS,
    OBJECT,
    SENSITIVE_FIELDS,
    missing_required_sections,
    prepare_update,
)
from app.intake.modules.merchant_applications.models import APPLICATION_STATUSES, MerchantApplication
from app.intake.repository import Repository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.intake.models import User

logger = logging.getLogger(__name__)

ReadinessCheck = Callable[[MerchantApplication], list[str]]

# Bounded text columns; longer values are dropped before they reach the database.
_COLUMN_LENGTHS = {
    column.name: column.type.length
    for column in MerchantApplication.__table__.columns
    if isinstance(column.type, String) and column.type.length
}

# Allowed source statuses per review target.
_REVIEW_SOURCES = {
    "UNDER_REVIEW": frozenset({"SUBMITTED"}),
    "APPROVED": frozenset({"SUBMITTED", "UNDER_REVIEW"}),
    "REJECTED": frozenset({"SUBMITTED", "UNDER_REVIEW"}),
}


class ApplicationRepository(Repository[MerchantApplication]):
    model = MerchantApplication
    review_order = ("-updated_at", "-id")

    def list_for_review(self, status: str | None = None) -> list[MerchantApplication]:
        stmt = select(MerchantApplication)
        if status:
            stmt = stmt.where(MerchantApplication.status == status)
        return list(self.session.scalars(stmt.order_by(*self._order())))


def _recipient(application: MerchantApplication) -> Recipient:
    user = application.client.user
    return Recipient(user_id=user.id, email=user.email, name=user.display_name)


def _status_event(application: MerchantApplication, old_status: str, reason: str | None = None) -> ApplicationStatusChanged:
    return ApplicationStatusChanged(
        application_id=application.id,
        client_id=application.client_id,
        business_name=application.business_name,
        old_status=old_status,
        new_status=application.status,
        reason=reason,
        owner=_recipient(application),
    )


def _deep_merge(stored: Any, update: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(stored) if isinstance(stored, dict) else {}
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def save_application(
    s: "Session",
    *,
    owner_id: int,
    payload: Mapping[str, Any] | None,
    actor: "User",
    application_id: int | None = None,
) -> MerchantApplication:
    """
    Create or partially update an application.

    Only allowlisted, sanitized, well-typed values are merged, so absent or blank
    input never clears a stored value. Nested objects are merged key by key.
    Status is never changed here.
    """
    client = s.get(Client, owner_id)
    if client is None:
        raise OwnerNotFound(f"Client {owner_id} not found")

    repo = ApplicationRepository(s)
    created = application_id is None
    if created:
        application = MerchantApplication(client_id=client.id, status="DRAFT")
    else:
        application = repo.get_by_id(application_id)
        if application is None or application.client_id != client.id:
            raise NotFound(f"Merchant application {application_id} not found")
        if application.is_terminal:
            raise AlreadyTerminal(f"Application is {application.status} and can no longer be edited")

    updates = prepare_update(payload, _COLUMN_LENGTHS)
    for key, value in updates.items():
        if FIELDS[key] == OBJECT:
            updates[key] = _deep_merge(getattr(application, key, None), value)
    changed = sorted(k for k, v in updates.items() if getattr(application, k, None) != v)
    for key in changed:
        setattr(application, key, updates[key])

    now = datetime.utcnow()
    application.updated_at = now
    application.last_saved_at = now
    if created:
        application.created_at = now
        repo.insert(application)
    else:
        s.flush()

    audit.record_event(
        s,
        actor=actor,
        action=audit.MERCHANT_APPLICATION_CREATE if created else audit.MERCHANT_APPLICATION_UPDATE,
        resource_type="merchant_application",
        resource_id=application.id,
        metadata={"client_id": client.id, "fields": changed},
    )
    return application


def submit_application(
    s: "Session",
    application: MerchantApplication,
    *,
    actor: "User",
    readiness_check: ReadinessCheck | None = None,
) -> MerchantApplication:
    if application.status in ("SUBMITTED", "UNDER_REVIEW"):
        logger.info("Application %s already %s; submit ignored", application.id, application.status)
        return application
    if application.is_terminal:
        raise AlreadyTerminal(f"Application is already {application.status}")

    check = readiness_check or missing_required_sections
    missing = check(application)
    if missing:
        raise NotReady(missing)

    old_status = application.status
    now = datetime.utcnow()
    application.status = "SUBMITTED"
    if application.submitted_at is None:
        application.submitted_at = now
    application.updated_at = now
    s.flush()

    audit.record_event(
        s,
        actor=actor,
        action=audit.MERCHANT_APPLICATION_SUBMIT,
        resource_type="merchant_application",
        resource_id=application.id,
        metadata={"old_status": old_status, "new_status": application.status},
    )
    emit(s, _status_event(application, old_status))
    return application


def set_application_status(
    s: "Session",
    application: MerchantApplication,
    new_status: str,
    reason: str | None = None,
    *,
    reviewer: "User",
) -> MerchantApplication:
    new_status = (new_status or "").strip().upper()
    sources = _REVIEW_SOURCES.get(new_status)
    if sources is None or application.status not in sources:
        raise InvalidTransition(
            f"Cannot move application from {application.status} to {new_status or '(none)'}",
            current=application.status,
            requested=new_status,
        )
    reason = (reason or "").strip() or None
    if new_status == "REJECTED" and not reason:
        raise MissingReason("Rejection reason is required")

    old_status = application.status
    now = datetime.utcnow()
    application.status = new_status
    application.updated_at = now
    if new_status in ("APPROVED", "REJECTED"):
        application.reviewed_at = now
        application.reviewed_by_user_id = reviewer.id
    application.rejection_reason = reason if new_status == "REJECTED" else None
    s.flush()

    audit.record_event(
        s,
        actor=reviewer,
        action=audit.MERCHANT_APPLICATION_REVIEW,
        resource_type="merchant_application",
        resource_id=application.id,
        metadata={"old_status": old_status, "new_status": new_status, "rejection_reason": reason},
    )
    emit(s, _status_event(application, old_status, reason if new_status == "REJECTED" else None))
    return application


def delete_application(s: "Session", application: MerchantApplication, *, actor: "User") -> None:
    # Clients may only discard drafts; administrators may delete in any state.
    if not actor.is_admin and application.status != "DRAFT":
        raise InvalidTransition("Only draft applications can be deleted", current=application.status)
    meta = {"client_id": application.client_id, "status": application.status, "business_name": application.business_name}
    application_id = application.id
    ApplicationRepository(s).delete(application)
    audit.record_event(
        s,
        actor=actor,
        action=audit.MERCHANT_APPLICATION_DELETE,
        resource_type="merchant_application",
        resource_id=application_id,
        metadata=meta,
    )


def mask_value(value: str | None) -> str | None:
    if not value:
        return value
    tail = value[-4:] if len(value) > 4 else ""
    return "*" * max(len(value) - len(tail), 4) + tail


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def serialize_application(application: MerchantApplication, *, reveal: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": application.id,
        "client_id": application.client_id,
        "status": application.status,
        "rejection_reason": application.rejection_reason,
        "reviewed_by_user_id": application.reviewed_by_user_id,
        "created_at": _json_value(application.created_at),
        "updated_at": _json_value(application.updated_at),
        "last_saved_at": _json_value(application.last_saved_at),
        "submitted_at": _json_value(application.submitted_at),
        "reviewed_at": _json_value(application.reviewed_at),
    }
    for name in FIELDS:
        out[name] = _json_value(getattr(application, name, None))
    if not reveal:
        for name in SENSITIVE_FIELDS:
            out[name] = mask_value(out.get(name))
    return out


def reveal_sensitive(s: "Session", application: MerchantApplication, *, actor: "User") -> dict[str, Any]:
    """Unmasked view for administrators. Every call is audited."""
    audit.record_event(
        s,
        actor=actor,
        action=audit.SENSITIVE_DATA_ACCESS,
        resource_type="merchant_application",
        resource_id=application.id,
        metadata={"fields": [f for f in SENSITIVE_FIELDS if getattr(application, f, None)]},
    )
    return serialize_application(application, reveal=True)


def status_counts(s: "Session") -> dict[str, int]:
    counts = {status: 0 for status in APPLICATION_STATUSES}
    for application in ApplicationRepository(s).list_all_for_review():
        counts[application.status] = counts.get(application.status, 0) + 1
    return counts
