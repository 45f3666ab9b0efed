"""Owner-issued signed URLs.

The owner of a file can mint a capability token for it and hand the
resulting URL to anyone. The URL grants read access to that one file
until it expires; it cannot be revoked earlier.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from content_store.app.observability.metrics import CAPABILITY_TOKENS_ISSUED
from content_store.app.security.capability import (
    CapabilitySigner,
    CapabilityToken,
    build_signed_url,
)
from content_store.app.security.token_verify import Principal
from content_store.app.storage.locator import ObjectLocator

from .visibility import require_owner


@dataclass(frozen=True, slots=True)
class SignedLink:
    url: str
    token: CapabilityToken
    ttl_seconds: int

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'fileId': self.token.file_id,
            'expiresAt': datetime.fromtimestamp(self.token.expires_at, tz=timezone.utc).isoformat(),
            'expiresIn': self.ttl_seconds,
            'params': self.token.to_query_params(),
        }


class SignedLinkService:
    """Issue signed access URLs for files the requester owns."""

    def __init__(
        self,
        locator: ObjectLocator,
        signer: CapabilitySigner,
        *,
        base_url: str,
        default_ttl_seconds: int,
    ) -> None:
        self._locator = locator
        self._signer = signer
        self._base_url = base_url
        self._default_ttl = default_ttl_seconds

    async def issue(
        self,
        file_id: str,
        requester: Principal,
        ttl_seconds: int | None = None,
        *,
        now: int | None = None,
    ) -> SignedLink:
        """Raises ObjectNotFound, AccessDenied, or ValueError for a bad ttl."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        descriptor = await self._locator.resolve(file_id)
        require_owner(descriptor, requester, 'share')

        token = self._signer.issue(descriptor.file_id, requester.subject_id, ttl, now=now)
        CAPABILITY_TOKENS_ISSUED.inc()
        return SignedLink(
            url=build_signed_url(self._base_url, token),
            token=token,
            ttl_seconds=ttl,
        )
