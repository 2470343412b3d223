"""create intake tables

Revision ID: 4e7a2c91d0b3
Revises:
Create Date: 2026-02-09 10:12:47.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a2c91d0b3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, clients, merchant_applications, documents, audit_log and login_attempts."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="CLIENT"),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("documents_approved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "merchant_applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("legal_business_name", sa.String(255), nullable=True),
        sa.Column("dba_business_name", sa.String(255), nullable=True),
        sa.Column("billing_address", sa.Text(), nullable=True),
        sa.Column("location_address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("state", sa.String(64), nullable=True),
        sa.Column("zip", sa.String(16), nullable=True),
        sa.Column("business_phone", sa.String(32), nullable=True),
        sa.Column("business_fax_number", sa.String(32), nullable=True),
        sa.Column("customer_service_phone", sa.String(32), nullable=True),
        sa.Column("federal_tax_id_number", sa.String(32), nullable=True),
        sa.Column("contact_name", sa.String(255), nullable=True),
        sa.Column("contact_phone_number", sa.String(32), nullable=True),
        sa.Column("contact_email", sa.String(320), nullable=True),
        sa.Column("website_address", sa.String(512), nullable=True),
        sa.Column("processing_categories", sa.JSON(), nullable=True),
        sa.Column("ownership_type", sa.String(64), nullable=True),
        sa.Column("principal_officers", sa.JSON(), nullable=True),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("aba_routing_number", sa.String(32), nullable=True),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("dda_number", sa.String(64), nullable=True),
        sa.Column("fee_schedule_data", sa.JSON(), nullable=True),
        sa.Column("supporting_information", sa.JSON(), nullable=True),
        sa.Column("equipment_data", sa.JSON(), nullable=True),
        sa.Column("beneficial_owners", sa.JSON(), nullable=True),
        sa.Column("mpa_signed_date", sa.DateTime(), nullable=True),
        sa.Column("sales_rep_name", sa.String(255), nullable=True),
        sa.Column("product_or_service_sold", sa.Text(), nullable=True),
        sa.Column("dba_website", sa.String(512), nullable=True),
        sa.Column("multiple_locations", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("legal_contact_name", sa.String(255), nullable=True),
        sa.Column("legal_phone", sa.String(32), nullable=True),
        sa.Column("legal_email", sa.String(320), nullable=True),
        sa.Column("incorporation_state", sa.String(64), nullable=True),
        sa.Column("entity_start_date", sa.DateTime(), nullable=True),
        sa.Column("average_ticket", sa.String(32), nullable=True),
        sa.Column("high_ticket", sa.String(32), nullable=True),
        sa.Column("monthly_sales_volume", sa.String(32), nullable=True),
        sa.Column("monthly_transactions", sa.Integer(), nullable=True),
        sa.Column("annual_volume", sa.String(32), nullable=True),
        sa.Column("annual_transactions", sa.Integer(), nullable=True),
        sa.Column("account_owner_first_name", sa.String(128), nullable=True),
        sa.Column("account_owner_last_name", sa.String(128), nullable=True),
        sa.Column("name_on_bank_account", sa.String(255), nullable=True),
        sa.Column("bank_officer_name", sa.String(255), nullable=True),
        sa.Column("bank_officer_phone", sa.String(32), nullable=True),
        sa.Column("bank_officer_email", sa.String(320), nullable=True),
        sa.Column("owner_full_name", sa.String(255), nullable=True),
        sa.Column("owner_first_name", sa.String(128), nullable=True),
        sa.Column("owner_last_name", sa.String(128), nullable=True),
        sa.Column("owner_officer", sa.String(128), nullable=True),
        sa.Column("owner_title", sa.String(128), nullable=True),
        sa.Column("owner_ownership_percentage", sa.String(16), nullable=True),
        sa.Column("owner_mobile_phone", sa.String(32), nullable=True),
        sa.Column("owner_email", sa.String(320), nullable=True),
        sa.Column("owner_ssn", sa.String(64), nullable=True),
        sa.Column("owner_birthday", sa.DateTime(), nullable=True),
        sa.Column("owner_state_issued_id_number", sa.String(64), nullable=True),
        sa.Column("owner_id_exp_date", sa.DateTime(), nullable=True),
        sa.Column("owner_issuing_state", sa.String(64), nullable=True),
        sa.Column("owner_id_date_issued", sa.DateTime(), nullable=True),
        sa.Column("owner_legal_address", sa.Text(), nullable=True),
        sa.Column("owner_city", sa.String(128), nullable=True),
        sa.Column("owner_state", sa.String(64), nullable=True),
        sa.Column("owner_zip", sa.String(16), nullable=True),
        sa.Column("owner_country", sa.String(64), nullable=True, server_default="US"),
        sa.Column("financial_representative", sa.JSON(), nullable=True),
        sa.Column("business_type", sa.String(64), nullable=True, server_default="Retail"),
        sa.Column("refund_guarantee", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refund_days", sa.Integer(), nullable=True),
        sa.Column("pos_system", sa.String(128), nullable=True),
        sa.Column("authorized_contacts", sa.JSON(), nullable=True),
        sa.Column("processed_cards_past", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("previously_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("automatic_billing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cardholder_data_3rd_party", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("corporate_resolution", sa.Text(), nullable=True),
        sa.Column("merchant_signature", sa.String(255), nullable=True),
        sa.Column("merchant_name", sa.String(255), nullable=True),
        sa.Column("merchant_title", sa.String(128), nullable=True),
        sa.Column("merchant_date", sa.DateTime(), nullable=True),
        sa.Column("agreement_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("partner_signature", sa.String(255), nullable=True),
        sa.Column("partner_name", sa.String(255), nullable=True),
        sa.Column("partner_title", sa.String(128), nullable=True),
        sa.Column("partner_date", sa.DateTime(), nullable=True),
        sa.Column("current_step", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_saved_at", sa.DateTime(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_merchant_applications_client", "merchant_applications", ["client_id"])
    op.create_index("idx_merchant_applications_status", "merchant_applications", ["status"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "merchant_application_id",
            sa.Integer(),
            sa.ForeignKey("merchant_applications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("document_type", sa.String(64), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("file_path", sa.String(512), nullable=False),
        sa.Column("remote_key", sa.String(512), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_documents_client", "documents", ["client_id"])
    op.create_index("idx_documents_status", "documents", ["status"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_resource", "audit_log", ["resource_type", "resource_id"])
    op.create_index("idx_audit_actor", "audit_log", ["actor_id"])

    op.create_table(
        "login_attempts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("attempted_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_login_attempts_ip_time", "login_attempts", ["ip_address", "attempted_at"])


def downgrade() -> None:
    """Drop all intake tables."""
    op.drop_index("idx_login_attempts_ip_time", table_name="login_attempts")
    op.drop_table("login_attempts")
    op.drop_index("idx_audit_actor", table_name="audit_log")
    op.drop_index("idx_audit_resource", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("idx_documents_status", table_name="documents")
    op.drop_index("idx_documents_client", table_name="documents")
    op.drop_table("documents")
    op.drop_index("idx_merchant_applications_status", table_name="merchant_applications")
    op.drop_index("idx_merchant_applications_client", table_name="merchant_applications")
    op.drop_table("merchant_applications")
    op.drop_table("clients")
    op.drop_table("users")
