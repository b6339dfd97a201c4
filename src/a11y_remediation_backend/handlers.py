"""
Request handlers, one per API operation.

Each handler receives an already-validated request value, makes one call into
the audit repository or the object store gateway, and returns the HTTP status
together with the JSON envelope: ``{"success": True, ...}`` on success or
``{"success": False, "error": ..., "timestamp": ...}`` on failure. Only the
error message reaches the client.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from .database import AuditRepository
from .errors import ServiceError, ValidationError
from .models import (
    AuditRef,
    CreateAuditRequest,
    Envelope,
    PresignOperation,
    PresignRequest,
    PutObjectRequest,
    UpdateAuditRequest,
)
from .storage import ObjectStoreGateway
from .utils import Clock, decode_base64, encode_base64, isoformat, utc_now

HandlerResponse = Tuple[int, Envelope]

ENDPOINTS: List[str] = [
    "GET / - API index",
    "GET /health - Service health",
    "POST /put - Upload to object storage (base64 body)",
    "PUT /put - Upload to object storage (base64 body)",
    "GET /get?key=X - Download from object storage",
    "POST /presigned-put - Generate upload URL",
    "POST /presigned-get - Generate download URL",
    "POST /create-audit - Create audit record",
    "POST /update-audit - Store audit findings",
    "POST /update-audit-results - Store audit results (legacy array body)",
    "GET /audit/{id} - Audit with findings",
    "GET /audits - List audits",
]


def error_response(error: ServiceError, clock: Clock = utc_now) -> HandlerResponse:
    return error.status_code, {
        "success": False,
        "error": error.message,
        "timestamp": isoformat(clock()),
    }


def create_audit(request: CreateAuditRequest, repository: AuditRepository) -> HandlerResponse:
    result = repository.create_audit(
        document_id=request.document_id,
        filename=request.filename,
        file_size=request.file_size,
        file_type=request.file_type,
    )
    if not result.ok:
        return error_response(result.error)
    audit = result.value
    return 200, {
        "success": True,
        "audit_id": audit.id,
        "document_id": audit.document_id,
        "status": audit.status.value,
        "created_at": isoformat(audit.created_at),
    }


def update_audit(request: UpdateAuditRequest, repository: AuditRepository) -> HandlerResponse:
    ref = AuditRef(audit_id=request.audit_id, document_id=request.document_id)
    result = repository.record_findings(ref, request.findings, final=request.final)
    if not result.ok:
        return error_response(result.error)
    summary = result.value
    return 200, {
        "success": True,
        "audit_id": summary.audit_id,
        "document_id": summary.document_id,
        "updated": summary.updated,
        "findings_count": summary.findings_count,
        "status": summary.status.value,
        "total_issues": summary.total_issues,
        "critical_issues": summary.critical_issues,
        "completed_at": isoformat(summary.completed_at),
    }


def get_audit(audit_id: int, repository: AuditRepository) -> HandlerResponse:
    result = repository.get_audit_with_findings(AuditRef(audit_id=audit_id))
    if not result.ok:
        return error_response(result.error)
    data = result.value.model_dump(mode="json")
    return 200, {"success": True, **data}


def list_audits(document_id: Optional[str], limit: int, repository: AuditRepository) -> HandlerResponse:
    result = repository.list_audits(document_id=document_id, limit=limit)
    if not result.ok:
        return error_response(result.error)
    return 200, {
        "success": True,
        "audits": [audit.model_dump(mode="json") for audit in result.value],
    }


def presign(
    request: PresignRequest,
    operation: PresignOperation,
    gateway: ObjectStoreGateway,
    default_expires_in: int,
) -> HandlerResponse:
    expires_in = default_expires_in if request.expires_in is None else request.expires_in
    result = gateway.issue_presigned_url(request.key, operation, expires_in)
    if not result.ok:
        return error_response(result.error)
    presigned = result.value
    return 200, {
        "success": True,
        "presignedUrl": presigned.url,
        "key": presigned.key,
        "expiresIn": presigned.expires_in,
        "expiresAt": isoformat(presigned.expires_at),
    }


def put_object(request: PutObjectRequest, gateway: ObjectStoreGateway) -> HandlerResponse:
    try:
        data = decode_base64(request.body)
    except ValidationError as exc:
        return error_response(exc)
    result = gateway.put(request.key, data, content_type=request.content_type)
    if not result.ok:
        return error_response(result.error)
    stored = result.value
    return 200, {
        "success": True,
        "key": stored.key,
        "etag": stored.etag,
        "size": stored.size,
        "uploadedAt": isoformat(stored.uploaded_at),
    }


def get_object(key: Optional[str], gateway: ObjectStoreGateway) -> HandlerResponse:
    if not key:
        return error_response(ValidationError("Missing key parameter"))
    result = gateway.get(key)
    if not result.ok:
        return error_response(result.error)
    stored = result.value
    return 200, {
        "success": True,
        "key": stored.key,
        "size": stored.size,
        "etag": stored.etag,
        "contentType": stored.content_type,
        "body": encode_base64(stored.body or b""),
        "uploadedAt": isoformat(stored.uploaded_at),
    }


def health(clock: Clock = utc_now) -> HandlerResponse:
    return 200, {
        "success": True,
        "status": "healthy",
        "timestamp": isoformat(clock()),
        "endpoints": ENDPOINTS,
    }
