from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Type, TypeVar

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import handlers
from .configuration import AppConfig, load_config
from .database import AuditRepository
from .errors import ServiceError, ValidationError
from .middleware import CORSEnvelopeMiddleware
from .models import (
    SQLITE_MAX_INTEGER,
    CreateAuditRequest,
    FindingInput,
    LegacyResultItem,
    PresignOperation,
    PresignRequest,
    PutObjectRequest,
    UpdateAuditRequest,
)
from .storage import ObjectStoreGateway
from .utils import isoformat, utc_now

ModelT = TypeVar("ModelT", bound=BaseModel)

settings = load_config()
logging.basicConfig(level=settings.log_level.upper())

app = FastAPI(title=settings.title, version=settings.version)
app.add_middleware(CORSEnvelopeMiddleware)

audit_repository = AuditRepository(Path(settings.database.path))
object_store = ObjectStoreGateway.from_config(settings.storage)


def get_settings() -> AppConfig:
    return settings


def get_repository() -> AuditRepository:
    return audit_repository


def get_gateway() -> ObjectStoreGateway:
    return object_store


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "timestamp": isoformat(utc_now())},
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return _envelope(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _envelope(400, _describe_validation_errors(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail))


def _describe_validation_errors(errors: Any) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON payload") from exc


def _validate(model: Type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_validation_errors(exc.errors())) from exc


def _parse_update_payload(payload: Any) -> UpdateAuditRequest:
    # The auditor process posts a bare array of results, each tagged with its
    # document id; newer clients post an object with a findings list.
    if not isinstance(payload, list):
        return _validate(UpdateAuditRequest, payload)
    if not payload:
        raise ValidationError("Missing results array")

    items = [_validate(LegacyResultItem, item) for item in payload]
    document_ids = {item.document_id for item in items}
    if len(document_ids) != 1:
        raise ValidationError("All results must share one document_id")
    return UpdateAuditRequest(
        document_id=document_ids.pop(),
        findings=[FindingInput.model_validate(item.model_dump(exclude={"document_id"})) for item in items],
    )


def _respond(response: handlers.HandlerResponse) -> JSONResponse:
    status_code, payload = response
    return JSONResponse(status_code=status_code, content=payload)


@app.get("/")
def index() -> JSONResponse:
    return JSONResponse(content={
        "success": True,
        "message": settings.title,
        "version": settings.version,
        "endpoints": handlers.ENDPOINTS,
    })


@app.get("/health")
def health() -> JSONResponse:
    return _respond(handlers.health())


@app.post("/create-audit")
async def create_audit(request: Request, repository: AuditRepository = Depends(get_repository)) -> JSONResponse:
    body = _validate(CreateAuditRequest, await _read_json(request))
    return _respond(await run_in_threadpool(handlers.create_audit, body, repository))


@app.post("/update-audit")
@app.post("/update-audit-results")
async def update_audit(request: Request, repository: AuditRepository = Depends(get_repository)) -> JSONResponse:
    body = _parse_update_payload(await _read_json(request))
    return _respond(await run_in_threadpool(handlers.update_audit, body, repository))


@app.get("/audit/{audit_id}")
def get_audit(audit_id: int, repository: AuditRepository = Depends(get_repository)) -> JSONResponse:
    return _respond(handlers.get_audit(audit_id, repository))


@app.get("/audits")
def list_audits(
    document_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=SQLITE_MAX_INTEGER),
    repository: AuditRepository = Depends(get_repository),
) -> JSONResponse:
    return _respond(handlers.list_audits(document_id, limit, repository))


@app.post("/presigned-put")
async def presigned_put(
    request: Request,
    gateway: ObjectStoreGateway = Depends(get_gateway),
    config: AppConfig = Depends(get_settings),
) -> JSONResponse:
    body = _validate(PresignRequest, await _read_json(request))
    return _respond(await run_in_threadpool(
        handlers.presign, body, PresignOperation.UPLOAD, gateway, config.storage.default_expires_in
    ))


@app.post("/presigned-get")
async def presigned_get(
    request: Request,
    gateway: ObjectStoreGateway = Depends(get_gateway),
    config: AppConfig = Depends(get_settings),
) -> JSONResponse:
    body = _validate(PresignRequest, await _read_json(request))
    return _respond(await run_in_threadpool(
        handlers.presign, body, PresignOperation.DOWNLOAD, gateway, config.storage.default_expires_in
    ))


@app.api_route("/put", methods=["POST", "PUT"])
async def put_object(request: Request, gateway: ObjectStoreGateway = Depends(get_gateway)) -> JSONResponse:
    body = _validate(PutObjectRequest, await _read_json(request))
    return _respond(await run_in_threadpool(handlers.put_object, body, gateway))


@app.get("/get")
def get_object(key: Optional[str] = None, gateway: ObjectStoreGateway = Depends(get_gateway)) -> JSONResponse:
    return _respond(handlers.get_object(key, gateway))
