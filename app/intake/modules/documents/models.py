from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.intake.models import Base, Client


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_client", "client_id"),
        Index("idx_documents_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    merchant_application_id: Mapped[int | None] = mapped_column(
        ForeignKey("merchant_applications.id", ondelete="SET NULL"),
        nullable=True,
    )

    document_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "BANK_STATEMENTS"
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    # PENDING -> APPROVED | REJECTED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Local copy is always written; the remote key is set only when the remote put succeeded.
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    remote_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    client: Mapped[Client] = relationship("Client", lazy="selectin")
