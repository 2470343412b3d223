from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.intake.models import Base, Client

APPLICATION_STATUSES = ("DRAFT", "SUBMITTED", "UNDER_REVIEW", "APPROVED", "REJECTED")
TERMINAL_STATUSES = frozenset({"APPROVED", "REJECTED"})


class MerchantApplication(Base):
    __tablename__ = "merchant_applications"
    __table_args__ = (
        Index("idx_merchant_applications_client", "client_id"),
        Index("idx_merchant_applications_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)

    # DRAFT -> SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")

    # Business information
    legal_business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dba_business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(16), nullable=True)
    business_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    business_fax_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_service_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    federal_tax_id_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    website_address: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Business description
    processing_categories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    ownership_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    principal_officers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # Settlement / banking
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    aba_routing_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dda_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fee_schedule_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    supporting_information: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    equipment_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    beneficial_owners: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # MPA and sales
    mpa_signed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    sales_rep_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # DBA details
    product_or_service_sold: Mapped[str | None] = mapped_column(Text, nullable=True)
    dba_website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    multiple_locations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Corporate information
    legal_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    legal_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    legal_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    incorporation_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Transactions and volume (amounts kept as text to preserve decimal input)
    average_ticket: Mapped[str | None] = mapped_column(String(32), nullable=True)
    high_ticket: Mapped[str | None] = mapped_column(String(32), nullable=True)
    monthly_sales_volume: Mapped[str | None] = mapped_column(String(32), nullable=True)
    monthly_transactions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    annual_volume: Mapped[str | None] = mapped_column(String(32), nullable=True)
    annual_transactions: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Bank account owner
    account_owner_first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    account_owner_last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    name_on_bank_account: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_officer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_officer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    bank_officer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Primary owner
    owner_full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_officer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_ownership_percentage: Mapped[str | None] = mapped_column(String(16), nullable=True)
    owner_mobile_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    owner_ssn: Mapped[str | None] = mapped_column(String(64), nullable=True)
    owner_birthday: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    owner_state_issued_id_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    owner_id_exp_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    owner_issuing_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    owner_id_date_issued: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    owner_legal_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    owner_zip: Mapped[str | None] = mapped_column(String(16), nullable=True)
    owner_country: Mapped[str | None] = mapped_column(String(64), nullable=True, default="US")
    financial_representative: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Operations
    business_type: Mapped[str | None] = mapped_column(String(64), nullable=True, default="Retail")
    refund_guarantee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refund_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pos_system: Mapped[str | None] = mapped_column(String(128), nullable=True)
    authorized_contacts: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    processed_cards_past: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    previously_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    automatic_billing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cardholder_data_3rd_party: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Corporate resolution and certification
    corporate_resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    merchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    merchant_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    merchant_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    agreement_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    partner_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    partner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    partner_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    partner_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    current_step: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Review (server-owned)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    client: Mapped[Client] = relationship("Client", lazy="selectin")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def business_name(self) -> str:
        return self.legal_business_name or self.dba_business_name or f"Application {self.id}"
