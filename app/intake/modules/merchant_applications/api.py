from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.intake import audit
from app.intake.db import db_session
from app.intake.errors import InvalidTransition, NotFound, ValidationFailed
from app.intake.models import User
from app.intake.modules.merchant_applications.fields import missing_required_sections
from app.intake.modules.merchant_applications.models import MerchantApplication
from app.intake.modules.merchant_applications.service import (
    ApplicationRepository,
    delete_application,
    reveal_sensitive,
    save_application,
    serialize_application,
    set_application_status,
    status_counts,
    submit_application,
)
from app.intake.rbac import admin_required, login_required
from app.intake.repository import ClientRepository

bp = Blueprint("merchant_applications", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed("Expected a JSON object body")
    return data


def _load_application(s, application_id: int) -> MerchantApplication:
    user = _current_user()
    application = ApplicationRepository(s).get_or_404(application_id)
    if not user.is_admin:
        client = ClientRepository(s).for_user(user, create=False)
        if client is None or application.client_id != client.id:
            raise NotFound(f"Merchant application {application_id} not found")
    return application


def _detail(application: MerchantApplication) -> dict:
    out = serialize_application(application)
    out["missing_sections"] = missing_required_sections(application)
    return out


@bp.get("")
@login_required
def application_list():
    s = db_session()
    user = _current_user()
    repo = ApplicationRepository(s)
    if user.is_admin:
        status_filter = (request.args.get("status") or "").strip().upper() or None
        apps = repo.list_for_review(status_filter)
    else:
        client = ClientRepository(s).for_user(user)
        s.commit()
        apps = repo.list_by_owner(client.id)
    return jsonify([serialize_application(a) for a in apps])


@bp.get("/stats")
@admin_required
def application_stats():
    return jsonify(status_counts(db_session()))


@bp.post("")
@login_required
def application_create():
    s = db_session()
    user = _current_user()
    data = _payload()
    if user.is_admin:
        owner_id = data.get("client_id") or data.get("clientId")
        if isinstance(owner_id, bool) or not isinstance(owner_id, int):
            raise ValidationFailed("client_id is required", field="client_id")
    else:
        owner_id = ClientRepository(s).for_user(user).id
    application = save_application(s, owner_id=owner_id, payload=data, actor=user)
    s.commit()
    return jsonify(_detail(application)), 201


@bp.get("/<int:application_id>")
@login_required
def application_detail(application_id: int):
    s = db_session()
    return jsonify(_detail(_load_application(s, application_id)))


@bp.patch("/<int:application_id>")
@login_required
def application_save(application_id: int):
    s = db_session()
    user = _current_user()
    application = _load_application(s, application_id)
    if not user.is_admin and application.status in ("SUBMITTED", "UNDER_REVIEW"):
        raise InvalidTransition("Submitted applications can no longer be edited", current=application.status)
    application = save_application(
        s,
        owner_id=application.client_id,
        payload=_payload(),
        actor=user,
        application_id=application.id,
    )
    s.commit()
    return jsonify(_detail(application))


@bp.post("/<int:application_id>/submit")
@login_required
def application_submit(application_id: int):
    s = db_session()
    application = _load_application(s, application_id)
    submit_application(s, application, actor=_current_user())
    s.commit()
    return jsonify(_detail(application))


@bp.post("/<int:application_id>/status")
@admin_required
def application_set_status(application_id: int):
    s = db_session()
    data = _payload()
    application = _load_application(s, application_id)
    set_application_status(
        s,
        application,
        data.get("status") or "",
        data.get("reason") or data.get("rejection_reason"),
        reviewer=_current_user(),
    )
    s.commit()
    return jsonify(_detail(application))


@bp.get("/<int:application_id>/sensitive")
@admin_required
def application_sensitive(application_id: int):
    s = db_session()
    application = _load_application(s, application_id)
    out = reveal_sensitive(s, application, actor=_current_user())
    s.commit()
    return jsonify(out)


@bp.get("/<int:application_id>/audit")
@admin_required
def application_audit(application_id: int):
    s = db_session()
    application = _load_application(s, application_id)
    return jsonify([audit.serialize_event(ev) for ev in audit.trail(s, "merchant_application", application.id)])


@bp.delete("/<int:application_id>")
@login_required
def application_delete(application_id: int):
    s = db_session()
    application = _load_application(s, application_id)
    delete_application(s, application, actor=_current_user())
    s.commit()
    return "", 204
