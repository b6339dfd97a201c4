from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Largest value an SQLite INTEGER column can hold.
SQLITE_MAX_INTEGER = 2**63 - 1


class AuditStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def advance_to(self, target: "AuditStatus") -> "AuditStatus":
        """Return ``target`` unless it would move the lifecycle backwards."""
        return target if target.rank > self.rank else self


_STATUS_ORDER = [AuditStatus.PENDING, AuditStatus.IN_PROGRESS, AuditStatus.COMPLETE]


class PresignOperation(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


# Request bodies

class CreateAuditRequest(BaseModel):
    document_id: str = Field(min_length=1)
    filename: str = Field(min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0, le=SQLITE_MAX_INTEGER)
    file_type: Optional[str] = None


class FindingInput(BaseModel):
    wcag_id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    severity: str = Field(min_length=1)
    notes: Optional[str] = None


class UpdateAuditRequest(BaseModel):
    audit_id: Optional[int] = None
    document_id: Optional[str] = None
    findings: List[FindingInput]
    final: bool = True

    @model_validator(mode="after")
    def _require_reference(self) -> "UpdateAuditRequest":
        if self.audit_id is None and not self.document_id:
            raise ValueError("Missing audit_id or document_id")
        return self


class LegacyResultItem(FindingInput):
    """One element of the bare-array body accepted by /update-audit-results."""

    document_id: str = Field(min_length=1)


class PresignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(min_length=1)
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")


class PutObjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(min_length=1)
    body: str = Field(min_length=1)
    content_type: Optional[str] = Field(default=None, alias="contentType")


# Component values

@dataclass(frozen=True)
class AuditRef:
    """Addresses an audit by numeric id or by external document id."""

    audit_id: Optional[int] = None
    document_id: Optional[str] = None

    def describe(self) -> str:
        if self.audit_id is not None:
            return f"audit {self.audit_id}"
        return f"document {self.document_id}"


class AuditRecord(BaseModel):
    id: int
    document_id: str
    filename: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    status: AuditStatus
    total_issues: int = 0
    critical_issues: int = 0
    created_at: datetime
    completed_at: Optional[datetime] = None


class FindingRecord(BaseModel):
    wcag_id: str
    status: str
    severity: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuditWithFindings(BaseModel):
    audit: AuditRecord
    findings: List[FindingRecord]


class FindingsSummary(BaseModel):
    audit_id: int
    document_id: str
    updated: int
    findings_count: int
    status: AuditStatus
    total_issues: int
    critical_issues: int
    completed_at: Optional[datetime] = None


class StoredObject(BaseModel):
    key: str
    size: int
    etag: str
    content_type: Optional[str] = None
    uploaded_at: datetime
    body: Optional[bytes] = None


class PresignedURL(BaseModel):
    url: str
    key: str
    operation: PresignOperation
    expires_in: int
    issued_at: datetime
    expires_at: datetime


Envelope = Dict[str, Any]
