"""init documents schema

Revision ID: 20261001_000001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "documents",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True)),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer()),
        sa.Column("mime_type", sa.String(length=100)),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("document_type", sa.String(length=32)),
        sa.Column("extracted_data", postgresql.JSONB()),
        sa.Column("extraction_confidence", sa.Float()),
        sa.Column("ai_model", sa.String(length=128)),
        sa.Column("error_message", sa.Text()),
        sa.Column("run_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="chk_documents_status",
        ),
        sa.CheckConstraint(
            "document_type IS NULL OR document_type IN ('bank_statement', 'invoice', 'receipt', 'unknown')",
            name="chk_documents_type",
        ),
        sa.CheckConstraint(
            "(extracted_data IS NOT NULL) = (status = 'completed' AND document_type IS NOT NULL "
            "AND document_type <> 'unknown')",
            name="chk_documents_extracted_data_state",
        ),
        sa.CheckConstraint(
            "(error_message IS NOT NULL) = (status = 'failed')",
            name="chk_documents_error_state",
        ),
        sa.CheckConstraint(
            "extraction_confidence IS NULL OR (extraction_confidence >= 0 AND extraction_confidence <= 1)",
            name="chk_documents_confidence_range",
        ),
    )
    op.create_index("idx_documents_org_created", "documents", ["organization_id", "created_at"])
    op.create_index("idx_documents_org_status", "documents", ["organization_id", "status"])

    op.create_table(
        "audit_logs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("new_value", postgresql.JSONB()),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_logs_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_index("idx_audit_logs_timestamp", table_name="audit_logs")
    op.drop_index("idx_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_documents_org_status", table_name="documents")
    op.drop_index("idx_documents_org_created", table_name="documents")
    op.drop_table("documents")
