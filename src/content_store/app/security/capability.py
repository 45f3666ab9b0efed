"""Capability tokens: time-boxed signed URLs for a single file.

A capability token lets its bearer read one file without presenting a
credential. It is self-certifying: validity is recomputed on every request
from the token's own fields plus a shared secret, nothing is stored.

Wire format (query parameters on ``/access/{file_id}``)::

    ?signature=<b64url HMAC-SHA256>&expires=<epoch seconds>&user=<subject id>

Signed fields, in canonical JSON array form::

    ["<file_id>", "<subject_id>", <expires_at>]

The JSON encoding keeps field boundaries unambiguous, so no choice of
file or subject id can collide with another triple.

Limitations:
  - Tokens cannot be revoked before expiry; expiry is the only
    invalidation path. Rotating the secret invalidates every token.
  - Tokens are reusable until expiry (not single-use).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import quote, urlencode

from content_store.app.errors import ErrorCode, TokenError
from content_store.app.observability.logging import redact_token

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────

PARAM_SIGNATURE = 'signature'
PARAM_EXPIRES = 'expires'
PARAM_USER = 'user'
TOKEN_PARAMS = (PARAM_SIGNATURE, PARAM_EXPIRES, PARAM_USER)

MIN_TTL_SECONDS = 1
DEFAULT_MAX_TTL_SECONDS = 7 * 24 * 3600


# ── Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CapabilityToken:
    """A signed grant for ``subject_id`` to read ``file_id``.

    Attributes:
        file_id: The file the grant is bound to.
        subject_id: The subject the grant was issued for.
        expires_at: Epoch seconds after which the token is dead.
        signature: URL-safe base64 HMAC over the signed fields.
        issued_at: Epoch seconds at issuance. Not signed and not sent on
            the wire; only known to the issuer.
    """

    file_id: str
    subject_id: str
    expires_at: int
    signature: str
    issued_at: int | None = None

    def to_query_params(self) -> dict[str, str]:
        return {
            PARAM_SIGNATURE: self.signature,
            PARAM_EXPIRES: str(self.expires_at),
            PARAM_USER: self.subject_id,
        }

    @classmethod
    def from_query_params(
        cls,
        file_id: str,
        params: Mapping[str, str],
    ) -> CapabilityToken | None:
        """Parse token query parameters for ``file_id``.

        Returns None when no token parameter is present at all.

        Raises:
            TokenError: MALFORMED_TOKEN when only some parameters are
                present or ``expires`` is not an integer.
        """
        present = {name: params.get(name) for name in TOKEN_PARAMS}
        if not any(present.values()):
            return None
        if not all(present.values()):
            missing = sorted(name for name, value in present.items() if not value)
            raise TokenError(
                ErrorCode.MALFORMED_TOKEN,
                f'Missing required parameters: {", ".join(missing)}',
            )
        try:
            expires_at = int(present[PARAM_EXPIRES])
        except ValueError:
            raise TokenError(ErrorCode.MALFORMED_TOKEN, 'expires must be an integer')

        return cls(
            file_id=file_id,
            subject_id=present[PARAM_USER],
            expires_at=expires_at,
            signature=present[PARAM_SIGNATURE],
        )


@dataclass(frozen=True, slots=True)
class CapabilityGrant:
    """Result of a successful verification."""

    file_id: str
    subject_id: str
    expires_at: int


# ── Signing ──────────────────────────────────────────────────────────


def canonical_payload(file_id: str, subject_id: str, expires_at: int) -> bytes:
    """Canonical byte encoding of the signed fields."""
    return json.dumps(
        [file_id, subject_id, int(expires_at)],
        separators=(',', ':'),
        ensure_ascii=False,
    ).encode('utf-8')


class CapabilitySigner:
    """Issues and verifies capability tokens with HMAC-SHA256.

    Args:
        secret: Shared signing secret.
        max_ttl_seconds: Upper bound on requested lifetimes.
        clock: Returns the current epoch time; injectable for tests.
    """

    def __init__(
        self,
        secret: str,
        *,
        max_ttl_seconds: int = DEFAULT_MAX_TTL_SECONDS,
        clock=time.time,
    ) -> None:
        if not secret:
            raise ValueError('secret is required for capability tokens')
        self._key = secret.encode('utf-8')
        self._max_ttl = max_ttl_seconds
        self._clock = clock

    @property
    def max_ttl_seconds(self) -> int:
        return self._max_ttl

    def _now(self, now: int | None) -> int:
        return int(self._clock()) if now is None else int(now)

    def sign(self, file_id: str, subject_id: str, expires_at: int) -> str:
        digest = hmac.new(
            self._key,
            canonical_payload(file_id, subject_id, expires_at),
            hashlib.sha256,
        ).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b'=').decode('ascii')

    def issue(
        self,
        file_id: str,
        subject_id: str,
        ttl_seconds: int,
        *,
        now: int | None = None,
    ) -> CapabilityToken:
        """Issue a token valid for ``ttl_seconds`` from ``now``.

        Raises:
            ValueError: Empty ids or a ttl outside [1, max_ttl_seconds].
        """
        if not file_id or not subject_id:
            raise ValueError('file_id and subject_id are required')
        if not MIN_TTL_SECONDS <= ttl_seconds <= self._max_ttl:
            raise ValueError(
                f'ttl_seconds must be {MIN_TTL_SECONDS}-{self._max_ttl}, got {ttl_seconds}'
            )

        issued_at = self._now(now)
        expires_at = issued_at + int(ttl_seconds)
        token = CapabilityToken(
            file_id=file_id,
            subject_id=subject_id,
            expires_at=expires_at,
            signature=self.sign(file_id, subject_id, expires_at),
            issued_at=issued_at,
        )
        logger.info(
            'Capability token issued: file=%s subject=%s ttl=%ds sig=%s',
            file_id,
            subject_id,
            ttl_seconds,
            redact_token(token.signature),
        )
        return token

    def verify(self, token: CapabilityToken, *, now: int | None = None) -> CapabilityGrant:
        """Verify a token's signature, then its expiry.

        The signature check runs first so that TOKEN_EXPIRED is only ever
        reported for authentic tokens; a forged token is SIGNATURE_INVALID
        whatever its expiry. Either way the token is refused.

        Raises:
            TokenError: SIGNATURE_INVALID or TOKEN_EXPIRED.
        """
        expected = self.sign(token.file_id, token.subject_id, token.expires_at)
        if not hmac.compare_digest(
            expected.encode('ascii'),
            token.signature.encode('utf-8'),
        ):
            logger.info(
                'Capability signature mismatch: file=%s sig=%s',
                token.file_id,
                redact_token(token.signature),
            )
            raise TokenError(ErrorCode.SIGNATURE_INVALID)

        if token.expires_at <= self._now(now):
            raise TokenError(ErrorCode.TOKEN_EXPIRED)

        return CapabilityGrant(
            file_id=token.file_id,
            subject_id=token.subject_id,
            expires_at=token.expires_at,
        )


def build_signed_url(base_url: str, token: CapabilityToken) -> str:
    """Return the absolute signed access URL for ``token``."""
    path = f'/access/{quote(token.file_id, safe="")}'
    return f'{base_url.rstrip("/")}{path}?{urlencode(token.to_query_params())}'
