"""Delegated credential verification via the identity service.

Forwards the raw credential to ``POST {auth_service_url}/auth/introspect``
and interprets the RFC 7662-style answer::

    {"active": true, "sub": "...", "email": "...", "exp": 1700000000}

Failure classification:
  - ``active: false`` or a 4xx answer       -> CREDENTIAL_REJECTED
  - transport error, timeout, 5xx, bad JSON -> INTROSPECTION_UNAVAILABLE
  - ``exp`` already passed                  -> CREDENTIAL_EXPIRED
  - no subject                              -> MALFORMED_CREDENTIAL

The unavailable class is retryable, the others are not. This module never
retries; the caller decides.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from content_store.app.errors import AuthError, ErrorCode, IntrospectionUnavailable
from content_store.app.observability.metrics import COLLABORATOR_FAILURES_TOTAL

from .token_verify import (
    SOURCE_INTROSPECTION,
    Principal,
    scopes_from_claims,
    subject_from_claims,
)

logger = logging.getLogger(__name__)

INTROSPECT_PATH = '/auth/introspect'
DEFAULT_TIMEOUT_SECONDS = 5.0


# ── Module-level shared client ───────────────────────────────────

_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _reset_shared_async_client_for_tests() -> None:
    global _shared_async_client
    _shared_async_client = None


# ── Verifier ─────────────────────────────────────────────────────


class IntrospectionCredentialVerifier:
    """Verifies credentials by asking the identity service.

    Args:
        auth_service_url: Identity service base URL.
        timeout_seconds: Per-call timeout.
        http_client: Optional injected client (tests use MockTransport).
        clock: Returns the current epoch time; injectable for tests.
    """

    def __init__(
        self,
        auth_service_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        clock=time.time,
    ) -> None:
        if not auth_service_url:
            raise ValueError('auth_service_url is required')
        self._url = f'{auth_service_url.rstrip("/")}{INTROSPECT_PATH}'
        self._timeout = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()
        self._clock = clock

    async def verify(self, raw_credential: str | None) -> Principal:
        if not raw_credential or not raw_credential.strip():
            raise AuthError(ErrorCode.MISSING_CREDENTIAL)

        payload = await self._introspect(raw_credential.strip())

        if not payload.get('active'):
            raise AuthError(
                ErrorCode.CREDENTIAL_REJECTED,
                str(payload.get('error') or 'Invalid token'),
            )

        subject_id = subject_from_claims(payload)
        if not subject_id:
            raise AuthError(ErrorCode.MALFORMED_CREDENTIAL, 'introspection returned no subject')

        exp = payload.get('exp')
        expires_at: int | None = None
        if exp is not None:
            try:
                expires_at = int(exp)
            except (TypeError, ValueError, OverflowError):
                raise AuthError(ErrorCode.MALFORMED_CREDENTIAL, f'invalid exp: {exp!r}')
            if expires_at <= self._clock():
                raise AuthError(ErrorCode.CREDENTIAL_EXPIRED)

        email = payload.get('email') or ''
        return Principal(
            subject_id=subject_id,
            email=email.lower() if isinstance(email, str) else '',
            scopes=scopes_from_claims(payload),
            expires_at=expires_at,
            source=SOURCE_INTROSPECTION,
            raw_claims=payload,
        )

    async def _introspect(self, token: str) -> dict[str, Any]:
        try:
            resp = await self._client.post(
                self._url,
                json={'token': token},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='introspection').inc()
            logger.warning('Token introspection timed out: %s', exc)
            raise IntrospectionUnavailable('Token validation service timed out') from exc
        except httpx.TransportError as exc:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='introspection').inc()
            logger.warning('Token introspection unreachable: %s', exc)
            raise IntrospectionUnavailable() from exc

        if resp.status_code >= 500:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='introspection').inc()
            logger.error('Token introspection failed: HTTP %d', resp.status_code)
            raise IntrospectionUnavailable(f'identity service returned {resp.status_code}')

        if resp.status_code >= 400:
            logger.info('Token introspection rejected: HTTP %d', resp.status_code)
            raise AuthError(ErrorCode.CREDENTIAL_REJECTED, 'Token validation failed')

        try:
            payload = resp.json()
        except ValueError as exc:
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='introspection').inc()
            raise IntrospectionUnavailable('identity service returned invalid JSON') from exc

        if not isinstance(payload, dict):
            COLLABORATOR_FAILURES_TOTAL.labels(collaborator='introspection').inc()
            raise IntrospectionUnavailable('identity service returned a non-object body')
        return payload
