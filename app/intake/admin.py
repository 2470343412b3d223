from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.intake import audit
from app.intake.db import db_session
from app.intake.rbac import admin_required

bp = Blueprint("audit", __name__)

_MAX_LIMIT = 500


def _limit(default: int) -> int:
    limit = request.args.get("limit", default, type=int)
    return max(1, min(limit, _MAX_LIMIT))


@bp.get("")
@admin_required
def audit_recent():
    s = db_session()
    return jsonify([audit.serialize_event(ev) for ev in audit.recent_events(s, limit=_limit(50))])


@bp.get("/actors/<int:actor_id>")
@admin_required
def audit_for_actor(actor_id: int):
    s = db_session()
    return jsonify([audit.serialize_event(ev) for ev in audit.trail_for_actor(s, actor_id, limit=_limit(100))])


@bp.get("/<resource_type>/<resource_id>")
@admin_required
def audit_for_resource(resource_type: str, resource_id: str):
    s = db_session()
    return jsonify([audit.serialize_event(ev) for ev in audit.trail(s, resource_type, resource_id)])
