"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    plans = op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        # Bytes; 0 means unlimited.
        sa.Column("storage_limit", sa.BigInteger(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("features_json", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True, unique=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("pin_hash", sa.String(), nullable=True),
        sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscription_plans.id"), nullable=True),
        sa.Column("storage_used", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_phone_number", "users", ["phone_number"])

    op.create_table(
        "documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("file_path", sa.String(), nullable=False),
        sa.Column("file_id", sa.String(), nullable=True),
        sa.Column("content_sha1", sa.String(), nullable=True),
        sa.Column("metadata_json", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_documents_user_id", "documents", ["user_id"])
    op.create_index("ix_documents_user_created", "documents", ["user_id", "created_at"])

    op.create_table(
        "qr_codes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("access_code", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_qr_codes_code", "qr_codes", ["code"], unique=True)
    op.create_index("ix_qr_codes_user_id", "qr_codes", ["user_id"])
    op.create_index("ix_qr_codes_user_active", "qr_codes", ["user_id", "is_active"])

    op.create_table(
        "access_requests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "qr_code_id",
            sa.String(),
            sa.ForeignKey("qr_codes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("requester_name", sa.String(), nullable=False),
        sa.Column("requester_mobile", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("permission_level", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        # Closed enumerations enforced in the database as well as at the API boundary.
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'denied')",
            name="ck_access_requests_status",
        ),
        sa.CheckConstraint(
            "permission_level IS NULL OR permission_level IN ('view_only', 'view_and_download')",
            name="ck_access_requests_permission_level",
        ),
    )
    op.create_index("ix_access_requests_qr_code_id", "access_requests", ["qr_code_id"])
    op.create_index("ix_access_requests_status", "access_requests", ["status"])
    op.create_index("ix_access_requests_qr_status", "access_requests", ["qr_code_id", "status"])

    op.create_table(
        "requested_documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "access_request_id",
            sa.String(),
            sa.ForeignKey("access_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "document_id",
            sa.String(),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("access_request_id", "document_id", name="uq_requested_documents_pair"),
    )
    op.create_index("ix_requested_documents_access_request_id", "requested_documents", ["access_request_id"])
    op.create_index("ix_requested_documents_document_id", "requested_documents", ["document_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", _JSON, nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
    )
    op.create_index("ix_audit_events_owner_occurred", "audit_events", ["owner_id", "occurred_at"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])

    # Plan catalogue; 0 storage_limit is the unlimited sentinel.
    op.bulk_insert(
        plans,
        [
            {"name": "Free", "storage_limit": 5 * 1024 * 1024, "price": 0, "features_json": {"max_documents": None}},
            {"name": "Pro", "storage_limit": 15 * 1024 * 1024, "price": 9.99, "features_json": {"priority_support": True}},
            {"name": "Enterprise", "storage_limit": 0, "price": 29.99, "features_json": {"priority_support": True}},
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_owner_occurred", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_requested_documents_document_id", table_name="requested_documents")
    op.drop_index("ix_requested_documents_access_request_id", table_name="requested_documents")
    op.drop_table("requested_documents")
    op.drop_index("ix_access_requests_qr_status", table_name="access_requests")
    op.drop_index("ix_access_requests_status", table_name="access_requests")
    op.drop_index("ix_access_requests_qr_code_id", table_name="access_requests")
    op.drop_table("access_requests")
    op.drop_index("ix_qr_codes_user_active", table_name="qr_codes")
    op.drop_index("ix_qr_codes_user_id", table_name="qr_codes")
    op.drop_index("ix_qr_codes_code", table_name="qr_codes")
    op.drop_table("qr_codes")
    op.drop_index("ix_documents_user_created", table_name="documents")
    op.drop_index("ix_documents_user_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_users_phone_number", table_name="users")
    op.drop_table("users")
    op.drop_table("subscription_plans")
