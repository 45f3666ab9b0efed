"""Access endpoints: download, visibility toggle, signed URLs, listings.

  GET  /access/{file_id}              -> stream the file if the verdict grants
  PUT  /access/{file_id}/public       -> owner sets {"isPublic": bool}
  POST /access/{file_id}/signed-url   -> owner mints a signed URL
  GET  /public                        -> list public files, newest first
  GET  /files                         -> list the caller's own files

Verdict -> status mapping for downloads:
  - Grant(*)                           -> 200, attachment
  - Deny(NOT_FOUND)                    -> 404
  - Deny(AUTH_REQUIRED)                -> 401 + WWW-Authenticate
  - Deny(FORBIDDEN)                    -> 403
  - Deny(INTROSPECTION_UNAVAILABLE)    -> 503 + Retry-After

Error body: ``{"success": false, "error": ..., "code": ..., "request_id": ...}``.

This module provides:
  ``create_access_router`` -- FastAPI router factory with injected deps.
  ``error_response`` -- shared JSON error renderer.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, StrictBool, StrictInt, ValidationError
from structlog.contextvars import bound_contextvars

from content_store.app.errors import (
    DEFAULT_MESSAGES,
    AccessError,
    ErrorCode,
    ObjectNotFound,
    StorageUnavailable,
)
from content_store.app.observability.middleware import get_request_id, record_verdict
from content_store.app.security.capability import TOKEN_PARAMS
from content_store.app.security.token_verify import extract_credential
from content_store.app.storage.blob import BlobStore
from content_store.app.storage.locator import ObjectLocator

from .decision import Deny, GrantReason
from .engine import AccessDecisionEngine
from .links import SignedLinkService
from .visibility import VisibilityService

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = '5'
CAPABILITY_CACHE_CONTROL = 'private, max-age=300'
DEFAULT_CACHE_CONTROL = 'private, no-cache'


# ── Request schemas ──────────────────────────────────────────────────


class VisibilityRequest(BaseModel):
    """Request body for the visibility toggle."""

    is_public: StrictBool = Field(..., alias='isPublic')


class SignedUrlRequest(BaseModel):
    """Request body for signed-URL issuance."""

    expires_in_seconds: StrictInt | None = Field(
        default=None, alias='expiresInSeconds', ge=1,
    )


# ── Response helpers ─────────────────────────────────────────────────


def error_response(
    request: Request,
    code: ErrorCode,
    detail: str = '',
    *,
    status_code: int | None = None,
) -> JSONResponse:
    """Render an error with the status and headers its code implies."""
    status_code = status_code or code.http_status
    headers: dict[str, str] = {}
    if status_code == 401:
        headers['WWW-Authenticate'] = 'Bearer'
    if code.retryable:
        headers['Retry-After'] = RETRY_AFTER_SECONDS
    return JSONResponse(
        status_code=status_code,
        content={
            'success': False,
            'error': detail or DEFAULT_MESSAGES[code],
            'code': code.value,
            'request_id': get_request_id(request),
        },
        headers=headers,
    )


def access_error_response(request: Request, exc: AccessError) -> JSONResponse:
    return error_response(request, exc.code, exc.detail, status_code=exc.http_status)


def content_disposition(filename: str) -> str:
    """``attachment`` disposition with an ASCII fallback and RFC 5987 name."""
    fallback = ''.join(
        ch if 32 <= ord(ch) < 127 and ch not in '"\\' else '_'
        for ch in filename
    ) or 'download'
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quote(filename)}'


async def _read_json_body(request: Request) -> object:
    """Return the decoded JSON body, or None for an empty body."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise AccessError(ErrorCode.INVALID_REQUEST, 'Request body must be valid JSON')


def _newest_first(entries: list[dict]) -> list[dict]:
    return sorted(entries, key=lambda e: e.get('uploadedAt') or '', reverse=True)


# ── Route factory ────────────────────────────────────────────────────


def create_access_router(
    engine: AccessDecisionEngine,
    visibility: VisibilityService,
    links: SignedLinkService,
    store: BlobStore,
    locator: ObjectLocator,
    *,
    public_base_url: str,
) -> APIRouter:
    """Create the access router with injected dependencies.

    Args:
        engine: Access decision engine.
        visibility: Owner-only visibility toggle.
        links: Owner-only signed URL issuance.
        store: Blob store used to stream granted objects.
        locator: Object locator used for listings.
        public_base_url: Base URL for links in listing responses.

    Returns:
        FastAPI router with the access routes.
    """
    router = APIRouter(tags=['access'])
    base_url = public_base_url.rstrip('/')

    @router.get('/access/{file_id}')
    async def access_file(file_id: str, request: Request):
        """Download a file if the access verdict grants it."""
        token_params = {
            name: request.query_params[name]
            for name in TOKEN_PARAMS
            if name in request.query_params
        }
        with bound_contextvars(file_id=file_id):
            result = await engine.evaluate(
                file_id,
                credential=extract_credential(request),
                token_params=token_params,
            )
        verdict = result.verdict
        record_verdict(request, verdict.label, verdict.reason.value)

        if isinstance(verdict, Deny):
            detail = DEFAULT_MESSAGES[verdict.cause] if verdict.cause else ''
            return error_response(request, verdict.error_code, detail)

        descriptor = result.descriptor
        try:
            obj = await store.get(descriptor.storage_key)
        except AccessError:
            raise
        except Exception as exc:
            raise StorageUnavailable(f'read {descriptor.storage_key!r} failed: {exc}') from exc
        if obj is None:
            raise ObjectNotFound(file_id)

        cache_control = (
            CAPABILITY_CACHE_CONTROL
            if verdict.reason is GrantReason.CAPABILITY
            else DEFAULT_CACHE_CONTROL
        )
        return StreamingResponse(
            obj.iter_chunks(),
            media_type=descriptor.content_type,
            headers={
                'Content-Disposition': content_disposition(descriptor.original_name),
                'Cache-Control': cache_control,
                'Content-Length': str(obj.head.size),
                'X-Access-Reason': verdict.reason.value,
            },
        )

    @router.put('/access/{file_id}/public')
    async def set_file_visibility(file_id: str, request: Request):
        """Owner-only: make a file public or private."""
        principal = await engine.authenticate(extract_credential(request))

        payload = await _read_json_body(request)
        try:
            body = VisibilityRequest.model_validate(payload)
        except ValidationError:
            return error_response(
                request, ErrorCode.INVALID_REQUEST, 'isPublic must be a boolean value',
            )

        descriptor = await visibility.set_visibility(file_id, principal, body.is_public)
        return {
            'success': True,
            'fileId': descriptor.file_id,
            'isPublic': descriptor.is_public,
            'message': f'File {"made public" if descriptor.is_public else "made private"} successfully',
        }

    @router.post('/access/{file_id}/signed-url', status_code=201)
    async def create_signed_url(file_id: str, request: Request):
        """Owner-only: mint a time-boxed signed URL for a file."""
        principal = await engine.authenticate(extract_credential(request))

        payload = await _read_json_body(request)
        try:
            body = SignedUrlRequest.model_validate(payload if payload is not None else {})
        except ValidationError:
            return error_response(
                request,
                ErrorCode.INVALID_REQUEST,
                'expiresInSeconds must be a positive integer',
            )

        try:
            link = await links.issue(file_id, principal, body.expires_in_seconds)
        except ValueError as exc:
            return error_response(request, ErrorCode.INVALID_REQUEST, str(exc))
        return {'success': True, 'access': link.to_dict()}

    @router.get('/public')
    async def list_public_files():
        """List every public file, newest first."""
        entries = []
        async for descriptor in locator.iter_descriptors():
            if descriptor.is_public:
                entry = descriptor.to_dict()
                entry['url'] = f'{base_url}/access/{quote(descriptor.file_id, safe="")}'
                entries.append(entry)
        entries = _newest_first(entries)
        return {'success': True, 'publicFiles': entries, 'count': len(entries)}

    @router.get('/files')
    async def list_own_files(request: Request):
        """List the authenticated caller's files, newest first."""
        principal = await engine.authenticate(extract_credential(request))
        entries = [
            descriptor.to_dict()
            async for descriptor in locator.iter_descriptors()
            if descriptor.owner_id == principal.subject_id
        ]
        entries = _newest_first(entries)
        return {'success': True, 'files': entries, 'count': len(entries)}

    return router
