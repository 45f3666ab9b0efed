"""Error taxonomy for the content-store access layer.

Every failure this core can produce is classified by an ``ErrorCode``.
Codes carry two pieces of routing information for callers:

  - ``http_status``: the status the HTTP surface answers with.
  - ``retryable``: whether the failure came from an unavailable
    collaborator (storage, identity service) rather than from a
    deterministic local check. This core never retries; it only
    classifies so handlers can choose retry vs. hard-fail.

Local classification failures (bad signature, expired token, malformed
structure) are deterministic and must never be retried.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Stable, client-visible error codes."""

    AUTH_REQUIRED = 'AUTH_REQUIRED'
    FORBIDDEN = 'FORBIDDEN'
    NOT_FOUND = 'NOT_FOUND'
    TOKEN_EXPIRED = 'TOKEN_EXPIRED'
    SIGNATURE_INVALID = 'SIGNATURE_INVALID'
    MALFORMED_TOKEN = 'MALFORMED_TOKEN'
    MISSING_CREDENTIAL = 'MISSING_CREDENTIAL'
    MALFORMED_CREDENTIAL = 'MALFORMED_CREDENTIAL'
    CREDENTIAL_EXPIRED = 'CREDENTIAL_EXPIRED'
    CREDENTIAL_REJECTED = 'CREDENTIAL_REJECTED'
    STORAGE_UNAVAILABLE = 'STORAGE_UNAVAILABLE'
    INTROSPECTION_UNAVAILABLE = 'INTROSPECTION_UNAVAILABLE'
    INVALID_REQUEST = 'INVALID_REQUEST'

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.TOKEN_EXPIRED: 403,
    ErrorCode.SIGNATURE_INVALID: 403,
    ErrorCode.MALFORMED_TOKEN: 400,
    ErrorCode.MISSING_CREDENTIAL: 401,
    ErrorCode.MALFORMED_CREDENTIAL: 401,
    ErrorCode.CREDENTIAL_EXPIRED: 401,
    ErrorCode.CREDENTIAL_REJECTED: 401,
    ErrorCode.STORAGE_UNAVAILABLE: 503,
    ErrorCode.INTROSPECTION_UNAVAILABLE: 503,
    ErrorCode.INVALID_REQUEST: 400,
}

_RETRYABLE = frozenset({
    ErrorCode.STORAGE_UNAVAILABLE,
    ErrorCode.INTROSPECTION_UNAVAILABLE,
})

# Default human-readable messages, used when no detail is supplied.
DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.AUTH_REQUIRED: 'Authentication required for private files',
    ErrorCode.FORBIDDEN: 'You can only access your own files or public files',
    ErrorCode.NOT_FOUND: 'File not found',
    ErrorCode.TOKEN_EXPIRED: 'URL has expired',
    ErrorCode.SIGNATURE_INVALID: 'Invalid signature',
    ErrorCode.MALFORMED_TOKEN: 'Missing required parameters',
    ErrorCode.MISSING_CREDENTIAL: 'No credential provided',
    ErrorCode.MALFORMED_CREDENTIAL: 'Credential is malformed',
    ErrorCode.CREDENTIAL_EXPIRED: 'Credential has expired',
    ErrorCode.CREDENTIAL_REJECTED: 'Credential was rejected',
    ErrorCode.STORAGE_UNAVAILABLE: 'Storage is temporarily unavailable',
    ErrorCode.INTROSPECTION_UNAVAILABLE: 'Token validation service unavailable',
    ErrorCode.INVALID_REQUEST: 'Invalid request',
}


# ── Exception hierarchy ──────────────────────────────────────────────


class AccessError(Exception):
    """Base class for every classified failure in this core."""

    def __init__(self, code: ErrorCode, detail: str = '') -> None:
        self.code = code
        self.detail = detail or DEFAULT_MESSAGES[code]
        super().__init__(f'{code.value}: {self.detail}')

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    @property
    def http_status(self) -> int:
        return self.code.http_status

    def to_body(self) -> dict:
        return {
            'success': False,
            'error': self.detail,
            'code': self.code.value,
        }


class AuthError(AccessError):
    """Credential verification failed.

    Every non-retryable credential failure answers 401, including a bad
    JWT signature, so clients know to re-authenticate.
    """

    @property
    def http_status(self) -> int:
        return self.code.http_status if self.retryable else 401


class IntrospectionUnavailable(AuthError):
    """The identity collaborator could not be reached or answered garbage."""

    def __init__(self, detail: str = '') -> None:
        super().__init__(ErrorCode.INTROSPECTION_UNAVAILABLE, detail)


class TokenError(AccessError):
    """Capability token verification failed."""


class ObjectNotFound(AccessError):
    """No object exists for the requested file id."""

    def __init__(self, file_id: str) -> None:
        self.file_id = file_id
        super().__init__(ErrorCode.NOT_FOUND)


class AccessDenied(AccessError):
    """The requester may not perform the operation."""


class StorageUnavailable(AccessError):
    """The blob store failed while serving a request."""

    def __init__(self, detail: str = '') -> None:
        super().__init__(ErrorCode.STORAGE_UNAVAILABLE, detail)
