from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, BinaryIO

from werkzeug.utils import secure_filename

from app.intake import audit
from app.intake.errors import InvalidStatus, MissingReason, OwnerNotFound, StorageDegraded, ValidationFailed
from app.intake.events import ClientDocumentsFullyApproved, DocumentStatusChanged, DocumentUploaded, Recipient, emit, on_rollback
from app.intake.models import Client
from app.intake.modules.documents.models import Document
from app.intake.repository import Repository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.intake.events import EventBus
    from app.intake.models import User
    from app.intake.storage import Storage

logger = logging.getLogger(__name__)

DOCUMENT_STATUSES = ("PENDING", "APPROVED", "REJECTED")

_PDF = "application/pdf"
_JPEG = "image/jpeg"
_PNG = "image/png"
_IMAGES_AND_PDF = (_PDF, _JPEG, _PNG)


@dataclass(frozen=True)
class DocumentTypeRule:
    name: str
    max_mb: int
    accepted_types: tuple[str, ...] = _IMAGES_AND_PDF
    required: bool = True


DOCUMENT_TYPES: dict[str, DocumentTypeRule] = {
    "SS4_EIN_LETTER": DocumentTypeRule("SS-4 IRS EIN Confirmation Letter or W9", 10),
    "W9": DocumentTypeRule("W9", 10, required=False),
    "BENEFICIAL_OWNERSHIP": DocumentTypeRule("Beneficial Ownership Certification", 10, required=False),
    "DRIVERS_LICENSE": DocumentTypeRule("Driver's License (front and back) or US Passport", 10),
    "PASSPORT": DocumentTypeRule("US Passport", 10, required=False),
    "BANK_STATEMENTS": DocumentTypeRule("3 Most Recent Business Bank Statements", 20),
    "BANKING_INFO": DocumentTypeRule("Banking Information", 10, required=False),
    "ARTICLES_OF_INCORPORATION": DocumentTypeRule("Articles of Incorporation", 10),
    "OPERATING_AGREEMENT": DocumentTypeRule("Operating Agreement or Bylaws", 10, required=False),
    "BUSINESS_LICENSE": DocumentTypeRule("Business License & State/Local Permits", 10),
    "VOIDED_CHECK": DocumentTypeRule("Voided Check or Bank Letter", 10),
    "INSURANCE_COVERAGE": DocumentTypeRule("Insurance Coverage", 10),
    "COA_PRODUCTS": DocumentTypeRule("COA's for Products You Produce", 10, required=False),
    "SEED_TO_SALE_INFO": DocumentTypeRule("Seed-to-Sale System Information", 10, required=False),
    "POS_INFO": DocumentTypeRule("Point of Sale Information", 10, required=False),
    "PROVIDER_CONTRACT": DocumentTypeRule("Provider Contract", 10, required=False),
}

# Leading bytes each accepted MIME type must start with.
_SIGNATURES: dict[str, tuple[bytes, ...]] = {
    _PDF: (b"%PDF",),
    _JPEG: (b"\xff\xd8\xff",),
    _PNG: (b"\x89PNG\r\n\x1a\n",),
}


@dataclass(frozen=True)
class FileMeta:
    filename: str
    content_type: str
    data: bytes


class DocumentRepository(Repository[Document]):
    model = Document
    review_order = ("-uploaded_at", "-id")


def recipient_for(client: Client) -> Recipient:
    user = client.user
    return Recipient(user_id=user.id, email=user.email, name=user.display_name)


def file_digest_and_bytes(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def validate_upload(document_type: str, meta: FileMeta) -> DocumentTypeRule:
    rule = DOCUMENT_TYPES.get((document_type or "").strip())
    if rule is None:
        raise ValidationFailed("Invalid document type", field="document_type")
    if not meta.data:
        raise ValidationFailed("Uploaded file is empty", field="file")
    if len(meta.data) > rule.max_mb * 1024 * 1024:
        raise ValidationFailed(f"File size exceeds maximum allowed size of {rule.max_mb}MB", field="file")
    content_type = (meta.content_type or "").split(";")[0].strip().lower()
    if content_type not in rule.accepted_types:
        raise ValidationFailed(
            f"File type {content_type or 'unknown'} not allowed for {rule.name}. "
            f"Allowed types: {', '.join(rule.accepted_types)}",
            field="file",
        )
    if not meta.data.startswith(_SIGNATURES[content_type]):
        raise ValidationFailed("File content does not match its declared type", field="file")
    return rule


def upload_document(
    s: "Session",
    *,
    owner_id: int,
    file_meta: FileMeta,
    document_type: str,
    actor: "User",
    local: "Storage",
    remote: "Storage | None" = None,
    merchant_application_id: int | None = None,
) -> Document:
    validate_upload(document_type, file_meta)

    client = s.get(Client, owner_id)
    if client is None:
        raise OwnerNotFound(f"Client {owner_id} not found")

    if merchant_application_id is not None:
        from app.intake.modules.merchant_applications.models import MerchantApplication

        app_row = s.get(MerchantApplication, merchant_application_id)
        if app_row is None or app_row.client_id != client.id:
            raise ValidationFailed("Merchant application does not belong to this client", field="merchant_application_id")

    original_name = (file_meta.filename or "").strip() or "document.bin"
    filename = f"{uuid.uuid4().hex[:16]}_{secure_filename(original_name) or 'document.bin'}"
    content_type = file_meta.content_type.split(";")[0].strip().lower()
    sha256, size_bytes = file_digest_and_bytes(file_meta.data)
    key = f"documents/{client.id}/{filename}"

    file_path = local.put_bytes(key, file_meta.data, content_type=content_type)

    remote_key = None
    if remote is not None:
        try:
            remote_key = remote.put_bytes(key, file_meta.data, content_type=content_type)
        except Exception as e:
            degraded = StorageDegraded(f"remote put failed for {key}: {e}")
            logger.warning("Storage degraded, keeping local copy only: %s", degraded)

    # The blobs exist before the row does; undo them if the transaction never commits.
    def _discard_blobs() -> None:
        logger.warning("Upload %s was rolled back; removing its blobs", key)
        BlobCleanup(local, remote).free(file_path, remote_key, f"rolled-back upload {key}")

    on_rollback(s, _discard_blobs)

    doc = DocumentRepository(s).insert(
        Document(
            client_id=client.id,
            merchant_application_id=merchant_application_id,
            document_type=document_type,
            original_name=original_name,
            filename=filename,
            mime_type=content_type,
            file_size=size_bytes,
            sha256=sha256,
            status="PENDING",
            file_path=file_path,
            remote_key=remote_key,
            uploaded_at=datetime.utcnow(),
        )
    )
    # A new PENDING document means the client is no longer fully approved.
    client.documents_approved_at = None

    audit.record_event(
        s,
        actor=actor,
        action=audit.DOCUMENT_UPLOAD,
        resource_type="document",
        resource_id=doc.id,
        metadata={
            "client_id": client.id,
            "document_type": document_type,
            "filename": original_name,
            "sha256": sha256,
            "size_bytes": size_bytes,
            "remote": remote_key is not None,
        },
    )
    emit(
        s,
        DocumentUploaded(
            document_id=doc.id,
            client_id=client.id,
            document_type=document_type,
            original_name=original_name,
            owner=recipient_for(client),
        ),
    )
    return doc


def _status_action(new_status: str) -> str:
    if new_status == "APPROVED":
        return audit.DOCUMENT_APPROVE
    if new_status == "REJECTED":
        return audit.DOCUMENT_REJECT
    return audit.DOCUMENT_STATUS_UPDATE


def transition(
    s: "Session",
    document: Document,
    new_status: str,
    reason: str | None = None,
    *,
    actor: "User",
) -> Document:
    """
    Set a document's review status.

    REJECTED requires a reason; any other status clears a previous one.
    reviewed_at is stamped on every successful call.
    """
    new_status = (new_status or "").strip().upper()
    if new_status not in DOCUMENT_STATUSES:
        raise InvalidStatus(f"Invalid status {new_status!r}", allowed=list(DOCUMENT_STATUSES))
    reason = (reason or "").strip() or None
    if new_status == "REJECTED" and not reason:
        raise MissingReason("Rejection reason is required")

    old_status = document.status
    DocumentRepository(s).update_fields(
        document,
        {
            "status": new_status,
            "reviewed_at": datetime.utcnow(),
            "rejection_reason": reason if new_status == "REJECTED" else None,
        },
    )

    audit.record_event(
        s,
        actor=actor,
        action=_status_action(new_status),
        resource_type="document",
        resource_id=document.id,
        metadata={"old_status": old_status, "new_status": new_status, "rejection_reason": reason},
    )

    client = document.client
    emit(
        s,
        DocumentStatusChanged(
            document_id=document.id,
            client_id=client.id,
            document_type=document.document_type,
            original_name=document.original_name,
            old_status=old_status,
            new_status=new_status,
            reason=reason if new_status == "REJECTED" else None,
            owner=recipient_for(client),
        ),
    )
    _update_fully_approved(s, client, old_status=old_status, new_status=new_status)
    return document


def _update_fully_approved(s: "Session", client: Client, *, old_status: str, new_status: str) -> None:
    if new_status != "APPROVED":
        if client.documents_approved_at is not None:
            client.documents_approved_at = None
        return
    if old_status == "APPROVED" or client.documents_approved_at is not None:
        return
    docs = DocumentRepository(s).list_by_owner(client.id)
    if docs and all(d.status == "APPROVED" for d in docs):
        client.documents_approved_at = datetime.utcnow()
        emit(s, ClientDocumentsFullyApproved(client_id=client.id, document_count=len(docs), owner=recipient_for(client)))


def review_document(
    s: "Session",
    document_id: int,
    status: str,
    reason: str | None = None,
    *,
    actor: "User",
) -> Document:
    document = DocumentRepository(s).get_or_404(document_id)
    return transition(s, document, status, reason, actor=actor)


@dataclass(frozen=True)
class DocumentDeleted:
    document_id: int
    client_id: int
    file_path: str
    remote_key: str | None


def delete_document(s: "Session", document: Document, *, actor: "User") -> None:
    """
    Remove the record in any state. Blob cleanup runs after commit (see BlobCleanup);
    its failure never affects the deletion.
    """
    meta = {
        "client_id": document.client_id,
        "filename": document.original_name,
        "document_type": document.document_type,
        "status": document.status,
    }
    deleted = DocumentDeleted(
        document_id=document.id,
        client_id=document.client_id,
        file_path=document.file_path,
        remote_key=document.remote_key,
    )
    DocumentRepository(s).delete(document)
    audit.record_event(
        s,
        actor=actor,
        action=audit.DOCUMENT_DELETE,
        resource_type="document",
        resource_id=deleted.document_id,
        metadata=meta,
    )
    emit(s, deleted)


class BlobCleanup:
    """Frees the local and remote copies of deleted documents, independently and best-effort."""

    def __init__(self, local: "Storage", remote: "Storage | None" = None) -> None:
        self.local = local
        self.remote = remote

    def register(self, bus: "EventBus") -> None:
        bus.subscribe(DocumentDeleted, self.on_document_deleted)

    def on_document_deleted(self, ev: DocumentDeleted) -> None:
        self.free(ev.file_path, ev.remote_key, f"deleted document {ev.document_id}")

    def free(self, file_path: str, remote_key: str | None, owner: str) -> None:
        if remote_key and self.remote is not None:
            try:
                self.remote.delete(remote_key)
            except Exception as e:
                logger.warning("Orphaned remote blob %s for %s: %s", remote_key, owner, e)
        try:
            self.local.delete(file_path)
        except Exception as e:
            logger.warning("Orphaned local blob %s for %s: %s", file_path, owner, e)


def open_document(
    s: "Session",
    document: Document,
    *,
    actor: "User",
    local: "Storage",
    remote: "Storage | None" = None,
) -> BinaryIO:
    """Stream for download. Prefers the remote copy, falls back to the local one."""
    fobj: BinaryIO | None = None
    if document.remote_key and remote is not None:
        try:
            fobj = remote.open(document.remote_key)
        except Exception as e:
            logger.warning("Remote read failed for document %s, using local copy: %s", document.id, e)
    if fobj is None:
        fobj = local.open(document.file_path)

    audit.record_event(
        s,
        actor=actor,
        action=audit.DOCUMENT_DOWNLOAD,
        resource_type="document",
        resource_id=document.id,
        metadata={"filename": document.original_name},
    )
    return fobj


def status_counts(s: "Session") -> dict[str, int]:
    counts = {status: 0 for status in DOCUMENT_STATUSES}
    for doc in DocumentRepository(s).list_all_for_review():
        counts[doc.status] = counts.get(doc.status, 0) + 1
    return counts


def serialize_document(doc: Document) -> dict[str, Any]:
    return {
        "id": doc.id,
        "client_id": doc.client_id,
        "merchant_application_id": doc.merchant_application_id,
        "document_type": doc.document_type,
        "original_name": doc.original_name,
        "mime_type": doc.mime_type,
        "file_size": doc.file_size,
        "status": doc.status,
        "rejection_reason": doc.rejection_reason,
        "uploaded_at": doc.uploaded_at.isoformat() if doc.uploaded_at else None,
        "reviewed_at": doc.reviewed_at.isoformat() if doc.reviewed_at else None,
    }
