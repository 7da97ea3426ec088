import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()

DOCUMENT_STATUSES = ("pending", "processing", "completed", "failed")
DOCUMENT_TYPES = ("bank_statement", "invoice", "receipt", "unknown")


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(_in_list("status", DOCUMENT_STATUSES), name="chk_documents_status"),
        CheckConstraint(
            "document_type IS NULL OR " + _in_list("document_type", DOCUMENT_TYPES),
            name="chk_documents_type",
        ),
        CheckConstraint(
            "(extracted_data IS NOT NULL) = (status = 'completed' AND document_type IS NOT NULL "
            "AND document_type <> 'unknown')",
            name="chk_documents_extracted_data_state",
        ),
        CheckConstraint(
            "(error_message IS NOT NULL) = (status = 'failed')",
            name="chk_documents_error_state",
        ),
        CheckConstraint(
            "extraction_confidence IS NULL OR (extraction_confidence >= 0 AND extraction_confidence <= 1)",
            name="chk_documents_confidence_range",
        ),
        Index("idx_documents_org_created", "organization_id", "created_at"),
        Index("idx_documents_org_status", "organization_id", "status"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    organization_id = Column(UUID_TYPE, nullable=False)
    uploaded_by = Column(UUID_TYPE)
    file_name = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String(100))
    status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))
    document_type = Column(String(32))
    extracted_data = Column(JSON_TYPE)
    extraction_confidence = Column(Float)
    ai_model = Column(String(128))
    error_message = Column(Text)
    run_id = Column(String(128))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    processed_at = Column(DateTime(timezone=True))


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(UUID_TYPE)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
