"""Bearer credential verification.

Validates the credential presented with a request and turns it into a
``Principal``. Two interchangeable strategies exist; exactly one is built
by ``create_credential_verifier`` from configuration:

  1. ``LocalCredentialVerifier``: the credential is an HS256 JWT. The MAC
     over header+payload is recomputed with the shared secret, then the
     payload is decoded for subject and expiry. Pure local computation.
  2. ``IntrospectionCredentialVerifier`` (see ``introspection.py``): the
     raw credential is forwarded to the identity service.

The two are never chained silently; ``Principal.source`` records which
path resolved an identity.

Credential transports, in priority order:
  - Bearer: ``Authorization: Bearer <jwt>``
  - Cookie: ``session_token``, ``jwt_token`` or ``token``
  - Query: ``?token=<jwt>`` (webhooks and other header-less callers)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt
from starlette.requests import Request

from content_store.app.errors import AuthError, ErrorCode

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────

LOCAL_ALGORITHM = 'HS256'
BEARER_PREFIX = 'Bearer '
CREDENTIAL_COOKIES = ('session_token', 'jwt_token', 'token')
CREDENTIAL_QUERY_PARAM = 'token'

SOURCE_LOCAL = 'jwt-local'
SOURCE_INTROSPECTION = 'introspection'


# ── Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Principal:
    """Verified identity derived from a credential.

    Attributes:
        subject_id: Stable user identifier (``sub`` claim).
        email: Normalized email address, if the credential carries one.
        scopes: Permissions granted to the credential.
        expires_at: Credential expiry in epoch seconds, if time-boxed.
        source: Which verification path produced this principal.
    """

    subject_id: str
    email: str = ''
    scopes: frozenset[str] = frozenset()
    expires_at: int | None = None
    source: str = SOURCE_LOCAL
    raw_claims: dict[str, Any] = field(default_factory=dict, compare=False)


class CredentialVerifier(Protocol):
    """Verifies a raw credential string.

    Implementations raise ``AuthError`` on any failure; there is no
    partial or ambiguous success.
    """

    async def verify(self, raw_credential: str | None) -> Principal:
        ...


# ── Claim helpers ─────────────────────────────────────────────────────


def subject_from_claims(claims: dict[str, Any]) -> str | None:
    """Return the subject id: ``sub``, then ``userId``, then ``user.id``."""
    subject = claims.get('sub') or claims.get('userId')
    if not subject:
        user = claims.get('user')
        if isinstance(user, dict):
            subject = user.get('id')
    if subject is None:
        return None
    return str(subject)


def scopes_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    """Collect scopes from a ``permissions`` list or a ``scope`` string."""
    permissions = claims.get('permissions')
    if isinstance(permissions, (list, tuple)):
        return frozenset(str(p) for p in permissions)
    scope = claims.get('scope')
    if isinstance(scope, str):
        return frozenset(scope.split())
    return frozenset()


# ── Local verification ───────────────────────────────────────────────


class LocalCredentialVerifier:
    """Verifies HS256 JWTs against a shared secret.

    Args:
        secret: The shared HMAC secret.
        audience: Expected ``aud`` claim. When None the audience is not
            checked.
    """

    def __init__(self, secret: str, audience: str | None = None) -> None:
        if not secret:
            raise ValueError('secret is required for local verification')
        self._secret = secret
        self._audience = audience

    async def verify(self, raw_credential: str | None) -> Principal:
        return self.verify_sync(raw_credential)

    def verify_sync(self, raw_credential: str | None) -> Principal:
        """Verify a JWT and return the authenticated principal.

        Raises:
            AuthError: MISSING_CREDENTIAL, MALFORMED_CREDENTIAL,
                SIGNATURE_INVALID or CREDENTIAL_EXPIRED.
        """
        if not raw_credential or not raw_credential.strip():
            raise AuthError(ErrorCode.MISSING_CREDENTIAL)

        try:
            claims = jwt.decode(
                raw_credential.strip(),
                self._secret,
                algorithms=[LOCAL_ALGORITHM],
                audience=self._audience,
                options={
                    'verify_signature': True,
                    'verify_exp': True,
                    'verify_aud': self._audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            raise AuthError(ErrorCode.CREDENTIAL_EXPIRED, 'JWT token has expired')
        # InvalidSignatureError subclasses DecodeError; order matters.
        except jwt.InvalidSignatureError:
            raise AuthError(ErrorCode.SIGNATURE_INVALID, 'JWT signature mismatch')
        except jwt.InvalidAlgorithmError:
            raise AuthError(
                ErrorCode.SIGNATURE_INVALID,
                f'JWT must be signed with {LOCAL_ALGORITHM}',
            )
        except jwt.DecodeError as exc:
            raise AuthError(ErrorCode.MALFORMED_CREDENTIAL, str(exc))
        except jwt.InvalidTokenError as exc:
            raise AuthError(ErrorCode.MALFORMED_CREDENTIAL, str(exc))

        subject_id = subject_from_claims(claims)
        if not subject_id:
            raise AuthError(ErrorCode.MALFORMED_CREDENTIAL, 'missing subject claim')

        email = claims.get('email') or ''
        exp = claims.get('exp')

        return Principal(
            subject_id=subject_id,
            email=email.lower() if isinstance(email, str) else '',
            scopes=scopes_from_claims(claims),
            expires_at=int(exp) if exp is not None else None,
            source=SOURCE_LOCAL,
            raw_claims=claims,
        )


# ── Request helpers ──────────────────────────────────────────────────


def extract_bearer_token(request: Request) -> str | None:
    """Extract a Bearer token from the Authorization header.

    Returns None if no Authorization header or non-Bearer scheme.
    """
    auth_header = request.headers.get('authorization', '')
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip() or None
    return None


def extract_credential(request: Request) -> str | None:
    """Extract the raw credential using the header > cookie > query order."""
    token = extract_bearer_token(request)
    if token:
        return token

    for name in CREDENTIAL_COOKIES:
        value = request.cookies.get(name)
        if value:
            return value

    return request.query_params.get(CREDENTIAL_QUERY_PARAM) or None


# ── Factory ──────────────────────────────────────────────────────────


def create_credential_verifier(settings, *, http_client=None) -> CredentialVerifier:
    """Build the credential verifier selected by ``settings.auth_mode``.

    Args:
        settings: ContentStoreSettings.
        http_client: Optional httpx.AsyncClient for introspection calls.

    Raises:
        ValueError: If the mode is unknown or its configuration is missing.
    """
    if settings.auth_mode == 'local':
        logger.info('Credential verification: local %s', LOCAL_ALGORITHM)
        return LocalCredentialVerifier(settings.jwt_secret)

    if settings.auth_mode == 'introspection':
        from .introspection import IntrospectionCredentialVerifier

        logger.info(
            'Credential verification: introspection via %s',
            settings.auth_service_url,
        )
        return IntrospectionCredentialVerifier(
            settings.auth_service_url,
            timeout_seconds=settings.introspection_timeout_seconds,
            http_client=http_client,
        )

    raise ValueError(f'Unknown auth_mode: {settings.auth_mode!r}')
