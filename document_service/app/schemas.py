from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"
    # Only ever reported, never stored
    UNKNOWN = "unknown"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentRecord(CamelModel):
    document_id: str
    owner_id: str
    blob_path: str
    extracted_text: str = ""
    status: DocumentStatus
    processing_note: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_consistency(self):
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        if self.error_detail and self.status != DocumentStatus.ERROR:
            raise ValueError("error_detail is only allowed on records with status=error")
        return self

    def public_dict(self) -> dict:
        data = self.model_dump(by_alias=True, mode="json")
        # errorDetail only appears on records in error
        if data.get("errorDetail") is None:
            data.pop("errorDetail", None)
        return data


class CacheEntry(CamelModel):
    """Snapshot written at ingest time; never updated afterwards."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    document_id: str
    owner_id: str
    blob_path: str
    extracted_text: str = ""
    created_at: datetime


class UploadRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    content: bytes
    mime_type: str = "application/octet-stream"
    filename: str = Field(..., min_length=1)


class IngestResult(CamelModel):
    document_id: str
    blob_path: str
    extracted_text: str = ""
    status: DocumentStatus
    processing_note: Optional[str] = None
    persistence_warning: Optional[str] = None

    @property
    def message(self) -> str:
        if self.processing_note:
            return self.processing_note
        if self.status == DocumentStatus.PENDING:
            return "Processing started"
        return "Uploaded and processed successfully"


class AnalysisPayload(CamelModel):
    id: str
    text: str
    processing_note: Optional[str] = None


class UploadResponse(CamelModel):
    document_id: str
    blob_path: str
    analysis: AnalysisPayload
    status: DocumentStatus
    message: str
    warning: Optional[str] = None


class BackgroundUploadResponse(CamelModel):
    document_id: str
    status: DocumentStatus
    message: str
    warning: Optional[str] = None


class UnknownStatusResponse(CamelModel):
    document_id: str
    status: DocumentStatus = DocumentStatus.UNKNOWN


class DocumentListResponse(BaseModel):
    documents: List[dict]
    source: str
