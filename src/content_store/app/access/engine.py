"""Access Decision Engine: gather inputs for one request and decide.

``AccessDecisionEngine.evaluate`` resolves the object, verifies the
capability token and the credential, then hands everything to
``decision.decide``. Inputs are gathered lazily in precedence order:

  - a missing or public object is decided without touching either
    verifier (no identity-service round trip for public downloads);
  - a capability bound to the object is decided without verifying the
    credential.

This never changes the verdict the full rule table would produce.

The engine is stateless. Nothing is cached between requests, and
cancellation of the surrounding task propagates out of any pending
storage or introspection call.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Mapping

from content_store.app.errors import AuthError, ErrorCode, ObjectNotFound, TokenError
from content_store.app.observability.logging import get_logger
from content_store.app.observability.metrics import ACCESS_VERDICTS_TOTAL
from content_store.app.security.capability import (
    CapabilityGrant,
    CapabilitySigner,
    CapabilityToken,
)
from content_store.app.security.token_verify import CredentialVerifier, Principal
from content_store.app.storage.locator import FileObjectDescriptor, ObjectLocator

from .decision import AccessInputs, Verdict, decide

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AccessResult:
    """The verdict plus the inputs that produced it."""

    verdict: Verdict
    descriptor: FileObjectDescriptor | None = None
    principal: Principal | None = None
    capability: CapabilityGrant | None = None


class AccessDecisionEngine:
    """Combines locator, credential verifier and capability signer.

    Args:
        locator: Resolves file ids to descriptors.
        credential_verifier: Local or introspection strategy.
        signer: Capability token signer/verifier.
        clock: Returns the current epoch time; injectable for tests.
    """

    def __init__(
        self,
        locator: ObjectLocator,
        credential_verifier: CredentialVerifier,
        signer: CapabilitySigner,
        *,
        clock=time.time,
    ) -> None:
        self._locator = locator
        self._verifier = credential_verifier
        self._signer = signer
        self._clock = clock

    @property
    def locator(self) -> ObjectLocator:
        return self._locator

    @property
    def signer(self) -> CapabilitySigner:
        return self._signer

    async def authenticate(self, credential: str | None) -> Principal:
        """Verify a credential for operations that require one.

        Raises:
            AuthError: MISSING_CREDENTIAL or any verification failure.
        """
        if not credential:
            raise AuthError(ErrorCode.MISSING_CREDENTIAL)
        return await self._verifier.verify(credential)

    async def evaluate(
        self,
        file_id: str,
        *,
        credential: str | None = None,
        token_params: Mapping[str, str] | None = None,
        now: int | None = None,
    ) -> AccessResult:
        """Decide whether this request may read ``file_id``.

        Raises:
            StorageUnavailable: The blob store failed while resolving.
        """
        now = int(self._clock()) if now is None else int(now)

        try:
            descriptor = await self._locator.resolve(file_id)
        except ObjectNotFound:
            descriptor = None

        if descriptor is None or descriptor.is_public:
            return self._finish(file_id, AccessInputs(descriptor=descriptor))

        capability, token_error = self._verify_capability(file_id, token_params, now)
        if capability is not None and capability.file_id == descriptor.file_id:
            return self._finish(
                file_id,
                AccessInputs(descriptor=descriptor, capability=capability),
            )

        principal: Principal | None = None
        credential_error: ErrorCode | None = None
        if credential:
            try:
                principal = await self._verifier.verify(credential)
            except AuthError as exc:
                credential_error = exc.code
                logger.info(
                    'credential_rejected',
                    file_id=file_id,
                    code=exc.code.value,
                    retryable=exc.retryable,
                )

        return self._finish(
            file_id,
            AccessInputs(
                descriptor=descriptor,
                principal=principal,
                capability=capability,
                credential_error=credential_error,
                token_error=token_error,
            ),
        )

    def _verify_capability(
        self,
        file_id: str,
        token_params: Mapping[str, str] | None,
        now: int,
    ) -> tuple[CapabilityGrant | None, ErrorCode | None]:
        if not token_params:
            return None, None
        try:
            token = CapabilityToken.from_query_params(file_id, token_params)
            if token is None:
                return None, None
            return self._signer.verify(token, now=now), None
        except TokenError as exc:
            logger.info('capability_refused', file_id=file_id, code=exc.code.value)
            return None, exc.code

    def _finish(self, file_id: str, inputs: AccessInputs) -> AccessResult:
        verdict = decide(inputs)
        ACCESS_VERDICTS_TOTAL.labels(
            verdict=verdict.label, reason=verdict.reason.value,
        ).inc()
        logger.info(
            'access_verdict',
            file_id=file_id,
            verdict=verdict.label,
            reason=verdict.reason.value,
            subject=inputs.principal.subject_id if inputs.principal else None,
        )
        return AccessResult(
            verdict=verdict,
            descriptor=inputs.descriptor,
            principal=inputs.principal,
            capability=inputs.capability,
        )
