from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="CLIENT")
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    client: Mapped["Client | None"] = relationship("Client", back_populates="user", uselist=False, lazy="selectin")

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email


class Client(Base):
    """
    The business behind a CLIENT user. Owns documents and merchant applications.
    """

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    # Latched when every document is APPROVED; cleared when that stops being true.
    documents_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="client", lazy="selectin")


class AuditLogEntry(Base):
    """
    Append-only audit trail entry.
    Rows are never updated or deleted; see the mapper listeners below.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_actor", "actor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # No FK: the trail must outlive the actor row.
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "DOCUMENT_REJECT"
    resource_type: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "document"
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditLogImmutable(RuntimeError):
    pass


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):  # type: ignore[no-redef]
    raise AuditLogImmutable(f"audit_log entry {target.id} cannot be updated")


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):  # type: ignore[no-redef]
    raise AuditLogImmutable(f"audit_log entry {target.id} cannot be deleted")


class LoginAttempt(Base):
    """Persisted login attempts, used for per-IP rate limiting across workers."""

    __tablename__ = "login_attempts"
    __table_args__ = (Index("idx_login_attempts_ip_time", "ip_address", "attempted_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.intake.modules.documents.models import Document  # noqa: E402,F401
from app.intake.modules.merchant_applications.models import MerchantApplication  # noqa: E402,F401
