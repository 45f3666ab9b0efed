"""Content-store access layer FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, access log,
CORS), the access routes, and injects the blob store, object index and
credential verifier via dependency injection.

Usage:
    # Local development (in-memory blob store, local HS256 credentials)
    from content_store.app import create_app, ContentStoreSettings
    app = create_app(ContentStoreSettings())

    # Non-local (a real blob store must be injected)
    settings = ContentStoreSettings.from_env()
    app = create_app(settings, blob_store=store)

    # Testing (full DI control)
    app = create_app(settings, blob_store=store, credential_verifier=verifier)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .access.engine import AccessDecisionEngine
from .access.links import SignedLinkService
from .access.routes import access_error_response, create_access_router
from .access.visibility import VisibilityService
from .errors import AccessError
from .observability import metrics_text
from .observability.middleware import (
    AccessLogMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from .security.capability import CapabilitySigner
from .security.token_verify import CredentialVerifier, create_credential_verifier
from .settings import ContentStoreSettings
from .storage.blob import BlobStore, InMemoryBlobStore
from .storage.index import InMemoryObjectKeyIndex, ObjectKeyIndex
from .storage.locator import IndexedLocator, ObjectLocator, PrefixScanLocator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for the collaborators wired into the application.

    Stored on ``app.state.deps`` so tests and route handlers can reach them.
    """

    blob_store: BlobStore
    locator: ObjectLocator
    credential_verifier: CredentialVerifier
    signer: CapabilitySigner
    engine: AccessDecisionEngine
    visibility: VisibilityService
    links: SignedLinkService


def _build_locator(
    settings: ContentStoreSettings,
    store: BlobStore,
    object_index: ObjectKeyIndex | None,
) -> ObjectLocator:
    if settings.locator_mode == "index":
        return IndexedLocator(
            store,
            object_index if object_index is not None else InMemoryObjectKeyIndex(),
            prefix=settings.storage_prefix,
            page_size=settings.list_page_size,
        )
    return PrefixScanLocator(
        store,
        prefix=settings.storage_prefix,
        page_size=settings.list_page_size,
    )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: ContentStoreSettings | None = None,
    *,
    blob_store: BlobStore | None = None,
    credential_verifier: CredentialVerifier | None = None,
    object_index: ObjectKeyIndex | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create a configured content-store FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        blob_store: Storage backend. Local mode defaults to an in-memory
            store; non-local mode requires one.
        credential_verifier: Override for the verifier selected by
            ``settings.auth_mode``.
        object_index: id->key index used when ``locator_mode=index``.
        http_client: Shared client for introspection calls.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails.
        ValueError: If a non-local environment has no blob store.
    """
    if settings is None:
        settings = ContentStoreSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Content store settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if blob_store is None:
        if not settings.is_local:
            raise ValueError(
                f"Non-local environment ({settings.environment}) requires "
                "blob_store to be explicitly provided"
            )
        blob_store = InMemoryBlobStore()

    if credential_verifier is None:
        credential_verifier = create_credential_verifier(settings, http_client=http_client)

    locator = _build_locator(settings, blob_store, object_index)
    signer = CapabilitySigner(
        settings.capability_secret,
        max_ttl_seconds=settings.signed_url_max_ttl_seconds,
    )
    engine = AccessDecisionEngine(locator, credential_verifier, signer)
    deps = AppDependencies(
        blob_store=blob_store,
        locator=locator,
        credential_verifier=credential_verifier,
        signer=signer,
        engine=engine,
        visibility=VisibilityService(locator, blob_store),
        links=SignedLinkService(
            locator,
            signer,
            base_url=settings.public_base_url,
            default_ttl_seconds=settings.signed_url_ttl_seconds,
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Content store startup (environment=%s, auth_mode=%s, locator_mode=%s)",
            settings.environment,
            settings.auth_mode,
            settings.locator_mode,
        )
        if isinstance(locator, IndexedLocator):
            await locator.rebuild_index()
        yield
        logger.info("Content store shutdown")

    app = FastAPI(
        title="Content Store Access Layer",
        description="Access control for stored files: public, owner and signed-URL reads",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> Metrics -> AccessLog -> CORS -> route

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(AccessError)
    async def handle_access_error(request: Request, exc: AccessError):
        if exc.retryable:
            logger.warning("Request failed (%s): %s", exc.code.value, exc.detail)
        return access_error_response(request, exc)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "auth_mode": settings.auth_mode,
            "locator_mode": settings.locator_mode,
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(
        create_access_router(
            deps.engine,
            deps.visibility,
            deps.links,
            deps.blob_store,
            deps.locator,
            public_base_url=settings.public_base_url,
        )
    )

    return app


# For uvicorn, use --factory flag:
#   uvicorn content_store.app.main:create_app --factory
# This avoids executing create_app() at import time.
