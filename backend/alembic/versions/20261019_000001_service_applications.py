"""Create service_applications, service_application_attachments, service_invoices.

Revision ID: 0001_service_applications
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "0001_service_applications"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "service_applications",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("user_id", UUID(), nullable=False),
        sa.Column("service_slug", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="draft", nullable=False),
        sa.Column("locale", sa.Text(), server_default="en", nullable=False),
        sa.Column("order_number", sa.Text(), nullable=True, unique=True),
        sa.Column("payload", JSONB(), server_default="{}", nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('draft','submitted','pending_payment','paid','cancelled')",
            name="service_applications_status_check",
        ),
    )
    op.create_index("idx_service_applications_user", "service_applications", ["user_id"])

    op.create_table(
        "service_application_attachments",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "application_id",
            UUID(),
            sa.ForeignKey("service_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("field_name", sa.Text(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("uploaded_by", UUID(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_service_attachments_app",
        "service_application_attachments",
        ["application_id"],
    )

    op.create_table(
        "service_invoices",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "application_id",
            UUID(),
            sa.ForeignKey("service_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_number", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text(), server_default="ILS", nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','paid','cancelled')",
            name="service_invoices_status_check",
        ),
    )
    op.create_index("idx_service_invoices_app", "service_invoices", ["application_id"])


def downgrade() -> None:
    op.drop_index("idx_service_invoices_app", table_name="service_invoices")
    op.drop_table("service_invoices")
    op.drop_index("idx_service_attachments_app", table_name="service_application_attachments")
    op.drop_table("service_application_attachments")
    op.drop_index("idx_service_applications_user", table_name="service_applications")
    op.drop_table("service_applications")
