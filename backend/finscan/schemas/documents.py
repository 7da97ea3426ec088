from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class DocumentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# --- Documents ---


class DocumentUploadOut(BaseModel):
    document_id: str
    run_id: str
    status: DocumentStatus


class DocumentOut(BaseModel):
    id: str
    file_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    status: DocumentStatus
    document_type: Optional[str] = None
    extraction_confidence: Optional[float] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class DocumentListResponse(BaseModel):
    items: list[DocumentOut]


class DocumentDetailOut(DocumentOut):
    extracted_data: Optional[dict[str, Any]] = None
    ai_model: Optional[str] = None
    updated_at: Optional[datetime] = None
    file_url: Optional[str] = None


class ReprocessOut(BaseModel):
    success: bool
    run_id: Optional[str] = None
    error: Optional[str] = None


class DeleteOut(BaseModel):
    success: bool


# --- Assistant search ---


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)


class DocumentSearchResult(BaseModel):
    id: str
    file_name: Optional[str] = None
    document_type: Optional[str] = None
    extracted_data: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None


class SearchResponse(BaseModel):
    success: bool
    found: Optional[int] = None
    explanation: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    documents: list[DocumentSearchResult] = Field(default_factory=list)
