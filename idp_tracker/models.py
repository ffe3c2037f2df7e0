from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DocumentStatusName = Literal["uploading", "processing", "completed", "failed"]
TERMINAL_STATUSES = frozenset({"completed", "failed"})


def normalize_confidence(value: float) -> int:
    """Round half-up and clamp to the 0-100 range."""
    return max(0, min(100, int(math.floor(value + 0.5))))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ExtractedField(CamelModel):
    name: str
    value: Any = ""
    confidence: float = Field(ge=0.0, le=100.0)
    category: Optional[str] = None


class ExtractedTable(CamelModel):
    name: str
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class ExtractionResult(CamelModel):
    document_type: str
    overall_confidence: float = Field(ge=0.0, le=100.0)
    fields: List[ExtractedField] = Field(default_factory=list)
    tables: List[ExtractedTable] = Field(default_factory=list)


class DocumentSummary(CamelModel):
    id: str
    status: DocumentStatusName
    document_type: Optional[str] = None
    confidence: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    uploaded_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DocumentRecord(DocumentSummary):
    external_doc_id: Optional[str] = None
    content_type: str = "image/jpeg"
    extracted_fields: Optional[List[ExtractedField]] = None
    extracted_tables: Optional[List[ExtractedTable]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class UploadRequest(CamelModel):
    image_data: Optional[str] = None
    # older clients post the same value as imageBase64
    image_base64: Optional[str] = None


class UploadResponse(CamelModel):
    doc_id: str
    status: DocumentStatusName


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float

    def is_valid(self, now: float, safety_margin: float) -> bool:
        return now + safety_margin < self.expires_at


# Provider webhook payload (subset the reconciler reads)


class ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProviderField(ProviderModel):
    name: str = ""
    value: Any = None
    extractionConfidence: Optional[float] = None


class ProviderCell(ProviderModel):
    recordName: str
    value: Any = None


class ProviderRecord(ProviderModel):
    records: Optional[List[ProviderCell]] = None


class ProviderTable(ProviderModel):
    name: str = ""
    records: Optional[List[ProviderRecord]] = None


class ProviderDocument(ProviderModel):
    className: Optional[str] = None
    classificationConfidence: Optional[float] = None
    fields: Optional[List[ProviderField]] = None
    tables: Optional[List[ProviderTable]] = None
