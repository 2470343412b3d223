from __future__ import annotations

import logging
import smtplib
from collections import defaultdict
from concurrent.futures import Executor
from email.message import EmailMessage
from typing import Any

from app.intake.events import (
    ApplicationStatusChanged,
    ClientDocumentsFullyApproved,
    DocumentStatusChanged,
    DocumentUploaded,
    EventBus,
)

logger = logging.getLogger(__name__)

# Template ids
DOCUMENT_UPLOADED = "document_uploaded"
NEW_DOCUMENT_ADMIN = "new_document_admin"
DOCUMENT_APPROVED = "document_approved"
DOCUMENT_REJECTED = "document_rejected"
ALL_DOCUMENTS_APPROVED = "all_documents_approved"
APPLICATION_SUBMITTED = "application_submitted"
APPLICATION_SUBMITTED_ADMIN = "application_submitted_admin"
APPLICATION_UNDER_REVIEW = "application_under_review"
APPLICATION_APPROVED = "application_approved"
APPLICATION_REJECTED = "application_rejected"


class NotificationDispatcher:
    """Delivers a rendered template to one recipient. Fire-and-forget."""

    def notify(self, template_id: str, recipient: str, context: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    """Used when SMTP is not configured: logs instead of sending."""

    def notify(self, template_id: str, recipient: str, context: dict[str, Any]) -> None:
        logger.info("notify template=%s recipient=%s context_keys=%s", template_id, recipient, sorted(context))


_SUBJECTS = {
    DOCUMENT_UPLOADED: "Document received: {document_type}",
    NEW_DOCUMENT_ADMIN: "New document uploaded by {client_email}",
    DOCUMENT_APPROVED: "Document approved: {document_type}",
    DOCUMENT_REJECTED: "Action needed: {document_type} was not accepted",
    ALL_DOCUMENTS_APPROVED: "All of your documents have been approved",
    APPLICATION_SUBMITTED: "Application received: {business_name}",
    APPLICATION_SUBMITTED_ADMIN: "New merchant application: {business_name}",
    APPLICATION_UNDER_REVIEW: "Your application is under review",
    APPLICATION_APPROVED: "Your application has been approved",
    APPLICATION_REJECTED: "Update on your application: {business_name}",
}


def render_message(template_id: str, context: dict[str, Any]) -> tuple[str, str]:
    """(subject, plain text body) for a template. Unknown placeholders render empty."""
    values = defaultdict(str, {k: "" if v is None else v for k, v in context.items()})
    subject = _SUBJECTS.get(template_id, template_id).format_map(values)
    lines = [f"Hello {values['name']}," if values["name"] else "Hello,", "", subject + "."]
    if values["reason"]:
        lines += ["", f"Reason: {values['reason']}"]
    return subject, "\n".join(lines) + "\n"


class SmtpDispatcher(NotificationDispatcher):
    def __init__(
        self,
        server: str,
        *,
        email_from: str,
        port: int | None = None,
        use_tls: bool = True,
        username: str = "",
        password: str = "",
    ) -> None:
        self.server = server
        self.port = port
        self.email_from = email_from
        self.use_tls = use_tls
        self.username = username
        self.password = password

    def notify(self, template_id: str, recipient: str, context: dict[str, Any]) -> None:
        subject, body = render_message(template_id, context)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = recipient
        msg.set_content(body)

        with smtplib.SMTP(self.server, self.port or 0, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Sent %s to %s", template_id, recipient)


def dispatcher_from_config(config: dict) -> NotificationDispatcher:
    server = (config.get("SMTP_SERVER") or "").strip()
    email_from = (config.get("EMAIL_FROM") or "").strip()
    if not server or not email_from:
        return LoggingDispatcher()
    return SmtpDispatcher(
        server,
        email_from=email_from,
        port=config.get("SMTP_PORT") or None,
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        username=(config.get("SMTP_USERNAME") or "").strip(),
        password=(config.get("SMTP_PASSWORD") or "").strip(),
    )


class NotificationSubscriber:
    """
    Single consumer of domain events for user-facing notifications.

    With an executor, delivery runs on its worker threads so the committing
    request only enqueues. Without one, delivery is inline.
    Dispatcher failures are logged and never propagated or retried.
    """

    _APPLICATION_TEMPLATES = {
        "SUBMITTED": APPLICATION_SUBMITTED,
        "UNDER_REVIEW": APPLICATION_UNDER_REVIEW,
        "APPROVED": APPLICATION_APPROVED,
        "REJECTED": APPLICATION_REJECTED,
    }

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        admin_email: str | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.admin_email = (admin_email or "").strip() or None
        self.executor = executor

    def register(self, bus: EventBus) -> None:
        bus.subscribe(DocumentUploaded, self.on_document_uploaded)
        bus.subscribe(DocumentStatusChanged, self.on_document_status_changed)
        bus.subscribe(ClientDocumentsFullyApproved, self.on_documents_fully_approved)
        bus.subscribe(ApplicationStatusChanged, self.on_application_status_changed)

    def shutdown(self, wait: bool = True) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=wait)

    def _send(self, template_id: str, recipient: str | None, context: dict[str, Any]) -> None:
        if not recipient:
            return
        if self.executor is None:
            self._deliver(template_id, recipient, context)
            return
        try:
            self.executor.submit(self._deliver, template_id, recipient, context)
        except RuntimeError:
            # Executor already shut down (interpreter exit).
            logger.warning("Notification %s to %s dropped: worker pool is closed", template_id, recipient)

    def _deliver(self, template_id: str, recipient: str, context: dict[str, Any]) -> None:
        try:
            self.dispatcher.notify(template_id, recipient, context)
        except Exception:
            logger.exception("Notification %s to %s failed", template_id, recipient)

    def on_document_uploaded(self, ev: DocumentUploaded) -> None:
        context = {
            "name": ev.owner.name,
            "document_id": ev.document_id,
            "document_type": ev.document_type,
            "filename": ev.original_name,
        }
        self._send(DOCUMENT_UPLOADED, ev.owner.email, context)
        self._send(NEW_DOCUMENT_ADMIN, self.admin_email, {**context, "client_email": ev.owner.email})

    def on_document_status_changed(self, ev: DocumentStatusChanged) -> None:
        context = {
            "name": ev.owner.name,
            "document_id": ev.document_id,
            "document_type": ev.document_type,
            "filename": ev.original_name,
        }
        if ev.new_status == "APPROVED":
            self._send(DOCUMENT_APPROVED, ev.owner.email, context)
        elif ev.new_status == "REJECTED":
            self._send(DOCUMENT_REJECTED, ev.owner.email, {**context, "reason": ev.reason})

    def on_documents_fully_approved(self, ev: ClientDocumentsFullyApproved) -> None:
        self._send(
            ALL_DOCUMENTS_APPROVED,
            ev.owner.email,
            {"name": ev.owner.name, "document_count": ev.document_count},
        )

    def on_application_status_changed(self, ev: ApplicationStatusChanged) -> None:
        template_id = self._APPLICATION_TEMPLATES.get(ev.new_status)
        if not template_id:
            return
        context = {
            "name": ev.owner.name,
            "application_id": ev.application_id,
            "business_name": ev.business_name,
            "status": ev.new_status,
        }
        if ev.reason:
            context["reason"] = ev.reason
        self._send(template_id, ev.owner.email, context)
        if ev.new_status == "SUBMITTED":
            self._send(APPLICATION_SUBMITTED_ADMIN, self.admin_email, {**context, "client_email": ev.owner.email})
