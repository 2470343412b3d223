from __future__ import annotations

from flask import Blueprint, g, jsonify, request, send_file

from app.intake.db import db_session
from app.intake.errors import NotFound, ValidationFailed
from app.intake.models import User
from app.intake.modules.documents.models import Document
from app.intake.modules.documents.service import (
    DOCUMENT_TYPES,
    DocumentRepository,
    FileMeta,
    delete_document,
    open_document,
    review_document,
    serialize_document,
    status_counts,
    upload_document,
)
from app.intake.rbac import admin_required, login_required
from app.intake.repository import ClientRepository
from app.intake.storage import local_storage, remote_storage

bp = Blueprint("documents", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _load_document(s, document_id: int) -> Document:
    """Clients only see their own documents; anything else looks missing."""
    user = _current_user()
    doc = DocumentRepository(s).get_or_404(document_id)
    if not user.is_admin:
        client = ClientRepository(s).for_user(user, create=False)
        if client is None or doc.client_id != client.id:
            raise NotFound(f"Document {document_id} not found")
    return doc


@bp.get("/types")
@login_required
def document_types():
    return jsonify(
        [
            {
                "code": code,
                "name": rule.name,
                "max_mb": rule.max_mb,
                "accepted_types": list(rule.accepted_types),
                "required": rule.required,
            }
            for code, rule in DOCUMENT_TYPES.items()
        ]
    )


@bp.get("")
@login_required
def document_list():
    s = db_session()
    user = _current_user()
    repo = DocumentRepository(s)
    if user.is_admin:
        client_id = request.args.get("client_id", type=int)
        docs = repo.list_by_owner(client_id) if client_id else repo.list_all_for_review()
    else:
        client = ClientRepository(s).for_user(user)
        s.commit()
        docs = repo.list_by_owner(client.id)

    status_filter = (request.args.get("status") or "").strip().upper()
    if status_filter:
        docs = [d for d in docs if d.status == status_filter]
    return jsonify([serialize_document(d) for d in docs])


@bp.get("/stats")
@admin_required
def document_stats():
    return jsonify(status_counts(db_session()))


@bp.post("")
@login_required
def document_upload():
    s = db_session()
    user = _current_user()

    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationFailed("File is required", field="file")

    if user.is_admin:
        owner_id = request.form.get("client_id", type=int)
        if not owner_id:
            raise ValidationFailed("client_id is required", field="client_id")
    else:
        owner_id = ClientRepository(s).for_user(user).id

    doc = upload_document(
        s,
        owner_id=owner_id,
        file_meta=FileMeta(filename=f.filename, content_type=f.mimetype or "", data=f.read()),
        document_type=(request.form.get("document_type") or "").strip(),
        merchant_application_id=request.form.get("merchant_application_id", type=int),
        actor=user,
        local=local_storage(),
        remote=remote_storage(),
    )
    s.commit()
    return jsonify(serialize_document(doc)), 201


@bp.get("/<int:document_id>")
@login_required
def document_detail(document_id: int):
    s = db_session()
    return jsonify(serialize_document(_load_document(s, document_id)))


@bp.get("/<int:document_id>/download")
@login_required
def document_download(document_id: int):
    s = db_session()
    doc = _load_document(s, document_id)
    fobj = open_document(s, doc, actor=_current_user(), local=local_storage(), remote=remote_storage())
    s.commit()
    return send_file(fobj, mimetype=doc.mime_type, as_attachment=True, download_name=doc.original_name)


@bp.post("/<int:document_id>/review")
@admin_required
def document_review(document_id: int):
    s = db_session()
    data = request.get_json(silent=True) or request.form
    doc = review_document(
        s,
        document_id,
        data.get("status") or "",
        data.get("reason") or data.get("rejection_reason"),
        actor=_current_user(),
    )
    s.commit()
    return jsonify(serialize_document(doc))


@bp.delete("/<int:document_id>")
@login_required
def document_delete(document_id: int):
    s = db_session()
    doc = _load_document(s, document_id)
    delete_document(s, doc, actor=_current_user())
    s.commit()
    return "", 204
