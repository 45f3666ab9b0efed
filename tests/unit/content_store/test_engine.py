"""Tests for AccessDecisionEngine: input gathering and verdicts end to end."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from prometheus_client import REGISTRY
from structlog.testing import capture_logs

from access_fixtures import OTHER_ID, OWNER_ID, make_jwt, seed_object
from content_store.app.access.decision import Deny, DenyReason, Grant, GrantReason
from content_store.app.access.engine import AccessDecisionEngine
from content_store.app.errors import (
    AuthError,
    ErrorCode,
    IntrospectionUnavailable,
    StorageUnavailable,
)
from content_store.app.security.capability import PARAM_EXPIRES
from content_store.app.security.introspection import IntrospectionCredentialVerifier
from content_store.app.security.token_verify import Principal
from content_store.app.storage.blob import InMemoryBlobStore
from content_store.app.storage.locator import PrefixScanLocator

NOW = 1_700_000_000


class RecordingVerifier:
    """Credential verifier double that records every call."""

    def __init__(self, *, subject: str | None = OWNER_ID, error: AuthError | None = None):
        self.calls: list[str] = []
        self._subject = subject
        self._error = error

    async def verify(self, raw_credential):
        self.calls.append(raw_credential)
        if self._error is not None:
            raise self._error
        return Principal(subject_id=self._subject)


class BrokenStore(InMemoryBlobStore):
    async def list_page(self, prefix, *, cursor=None, limit=1000):
        raise OSError('disk on fire')


class BlockingListStore(InMemoryBlobStore):
    """Listing waits until the test releases it."""

    def __init__(self):
        super().__init__()
        self.listing_started = asyncio.Event()
        self.release = asyncio.Event()

    async def list_page(self, prefix, *, cursor=None, limit=1000):
        self.listing_started.set()
        await self.release.wait()
        return await super().list_page(prefix, cursor=cursor, limit=limit)


def _verdict_total() -> float:
    return sum(
        sample.value
        for metric in REGISTRY.collect()
        if metric.name == 'content_store_access_verdicts'
        for sample in metric.samples
        if sample.name == 'content_store_access_verdicts_total'
    )


@pytest.fixture
def engine(locator, verifier, signer):
    return AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_missing_object_not_found(self, engine):
        result = await engine.evaluate('nope', credential=make_jwt(OWNER_ID))
        assert result.verdict == Deny(DenyReason.NOT_FOUND)
        assert result.descriptor is None

    @pytest.mark.asyncio
    async def test_public_object_granted_anonymously(self, store, engine):
        await seed_object(store, 'pub', public=True)
        result = await engine.evaluate('pub')
        assert result.verdict == Grant(GrantReason.PUBLIC)
        assert result.descriptor.file_id == 'pub'

    @pytest.mark.asyncio
    async def test_owner_granted(self, store, engine):
        await seed_object(store, 'priv')
        result = await engine.evaluate('priv', credential=make_jwt(OWNER_ID))
        assert result.verdict == Grant(GrantReason.OWNER)
        assert result.principal.subject_id == OWNER_ID

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, store, engine):
        await seed_object(store, 'priv')
        result = await engine.evaluate('priv', credential=make_jwt(OTHER_ID))
        assert result.verdict == Deny(DenyReason.FORBIDDEN)

    @pytest.mark.asyncio
    async def test_anonymous_auth_required(self, store, engine):
        await seed_object(store, 'priv')
        result = await engine.evaluate('priv')
        assert result.verdict == Deny(DenyReason.AUTH_REQUIRED)

    @pytest.mark.asyncio
    async def test_invalid_credential_treated_as_anonymous(self, store, engine):
        await seed_object(store, 'priv')
        result = await engine.evaluate('priv', credential='garbage')
        assert result.verdict == Deny(
            DenyReason.AUTH_REQUIRED, cause=ErrorCode.MALFORMED_CREDENTIAL,
        )

    @pytest.mark.asyncio
    async def test_valid_capability_granted_without_credential(self, store, engine, signer):
        await seed_object(store, 'priv')
        token = signer.issue('priv', OWNER_ID, 60, now=NOW)
        result = await engine.evaluate('priv', token_params=token.to_query_params())
        assert result.verdict == Grant(GrantReason.CAPABILITY)
        assert result.capability.subject_id == OWNER_ID

    @pytest.mark.asyncio
    async def test_capability_for_other_file_not_accepted(self, store, engine, signer):
        await seed_object(store, 'priv')
        await seed_object(store, 'other')
        token = signer.issue('other', OWNER_ID, 60, now=NOW)
        result = await engine.evaluate('priv', token_params=token.to_query_params())
        assert result.verdict == Deny(
            DenyReason.AUTH_REQUIRED, cause=ErrorCode.SIGNATURE_INVALID,
        )

    @pytest.mark.asyncio
    async def test_expired_capability_denied(self, store, engine, signer):
        await seed_object(store, 'priv')
        token = signer.issue('priv', OWNER_ID, 60, now=NOW - 61)
        result = await engine.evaluate('priv', token_params=token.to_query_params())
        assert result.verdict == Deny(DenyReason.AUTH_REQUIRED, cause=ErrorCode.TOKEN_EXPIRED)

    @pytest.mark.asyncio
    async def test_bad_capability_falls_back_to_owner_credential(self, store, engine, signer):
        await seed_object(store, 'priv')
        params = dict(signer.issue('priv', OWNER_ID, 60, now=NOW).to_query_params())
        params[PARAM_EXPIRES] = str(NOW + 9999)
        result = await engine.evaluate(
            'priv', credential=make_jwt(OWNER_ID), token_params=params,
        )
        assert result.verdict == Grant(GrantReason.OWNER)

    @pytest.mark.asyncio
    async def test_bad_capability_with_non_owner_forbidden(self, store, engine):
        await seed_object(store, 'priv')
        result = await engine.evaluate(
            'priv',
            credential=make_jwt(OTHER_ID),
            token_params={'signature': 'zzz'},
        )
        assert result.verdict == Deny(DenyReason.FORBIDDEN, cause=ErrorCode.MALFORMED_TOKEN)

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, store, engine, signer):
        await seed_object(store, 'priv')
        token = signer.issue('priv', OWNER_ID, 60, now=NOW)
        later = await engine.evaluate(
            'priv', token_params=token.to_query_params(), now=NOW + 61,
        )
        assert not later.verdict.granted

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, verifier, signer):
        engine = AccessDecisionEngine(PrefixScanLocator(BrokenStore()), verifier, signer)
        with pytest.raises(StorageUnavailable):
            await engine.evaluate('anything')


class TestLazyInputs:
    @pytest.mark.asyncio
    async def test_public_object_skips_credential_check(self, store, locator, signer):
        verifier = RecordingVerifier()
        engine = AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)
        await seed_object(store, 'pub', public=True)

        result = await engine.evaluate('pub', credential='anything')

        assert result.verdict.granted
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_missing_object_skips_credential_check(self, locator, signer):
        verifier = RecordingVerifier()
        engine = AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)

        await engine.evaluate('nope', credential='anything')

        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_valid_capability_skips_credential_check(self, store, locator, signer):
        verifier = RecordingVerifier()
        engine = AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)
        await seed_object(store, 'priv')
        token = signer.issue('priv', OWNER_ID, 60, now=NOW)

        result = await engine.evaluate(
            'priv', credential='anything', token_params=token.to_query_params(),
        )

        assert result.verdict == Grant(GrantReason.CAPABILITY)
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_introspection_outage_surfaces(self, store, locator, signer):
        verifier = RecordingVerifier(error=IntrospectionUnavailable())
        engine = AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)
        await seed_object(store, 'priv')

        result = await engine.evaluate('priv', credential='anything')

        assert result.verdict.reason is DenyReason.INTROSPECTION_UNAVAILABLE
        assert verifier.calls == ['anything']


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_listing(self, signer):
        store = BlockingListStore()
        await seed_object(store, 'priv')
        verifier = RecordingVerifier()
        engine = AccessDecisionEngine(
            PrefixScanLocator(store), verifier, signer, clock=lambda: NOW,
        )
        before = _verdict_total()

        with capture_logs() as captured:
            task = asyncio.create_task(engine.evaluate('priv', credential='cred'))
            await store.listing_started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert verifier.calls == []
        assert _verdict_total() == before
        assert not [e for e in captured if e['event'] == 'access_verdict']

        store.release.set()
        result = await engine.evaluate('priv', credential='cred')
        assert result.verdict == Grant(GrantReason.OWNER)

    @pytest.mark.asyncio
    async def test_cancel_while_introspecting(self, store, locator, signer):
        await seed_object(store, 'priv')
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await release.wait()
            return httpx.Response(200, json={'active': True, 'sub': OWNER_ID})

        verifier = IntrospectionCredentialVerifier(
            'https://auth.example.com',
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=lambda: NOW,
        )
        engine = AccessDecisionEngine(locator, verifier, signer, clock=lambda: NOW)
        before = _verdict_total()

        task = asyncio.create_task(engine.evaluate('priv', credential='cred'))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert _verdict_total() == before

        release.set()
        result = await engine.evaluate('priv', credential='cred')
        assert result.verdict == Grant(GrantReason.OWNER)
        assert _verdict_total() == before + 1


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_missing_credential(self, engine):
        with pytest.raises(AuthError) as exc_info:
            await engine.authenticate(None)
        assert exc_info.value.code is ErrorCode.MISSING_CREDENTIAL

    @pytest.mark.asyncio
    async def test_valid_credential(self, engine):
        principal = await engine.authenticate(make_jwt(OTHER_ID))
        assert principal.subject_id == OTHER_ID


class TestPrivateObjectScenario:
    """Private object O owned by U1, read by U2, anonymous, and a 60s token."""

    @pytest.mark.asyncio
    async def test_scenario(self, store, engine, signer):
        await seed_object(store, 'O', owner='U1')

        as_u2 = await engine.evaluate('O', credential=make_jwt('U2'))
        assert as_u2.verdict.error_code is ErrorCode.FORBIDDEN

        anonymous = await engine.evaluate('O')
        assert anonymous.verdict.error_code is ErrorCode.AUTH_REQUIRED

        token = signer.issue('O', 'U1', 60, now=NOW)
        params = token.to_query_params()
        within = await engine.evaluate('O', token_params=params, now=NOW)
        assert within.verdict == Grant(GrantReason.CAPABILITY)

        after = await engine.evaluate('O', token_params=params, now=NOW + 61)
        assert not after.verdict.granted
