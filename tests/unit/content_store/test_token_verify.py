"""Tests for local HS256 credential verification and credential extraction."""

from __future__ import annotations

import time

import jwt
import pytest
from starlette.requests import Request

from access_fixtures import JWT_SECRET, make_jwt
from content_store.app.errors import AuthError, ErrorCode
from content_store.app.security.introspection import IntrospectionCredentialVerifier
from content_store.app.security.token_verify import (
    SOURCE_LOCAL,
    LocalCredentialVerifier,
    create_credential_verifier,
    extract_credential,
    scopes_from_claims,
    subject_from_claims,
)
from content_store.app.settings import ContentStoreSettings


def _request(
    *,
    headers: dict[str, str] | None = None,
    query: str = '',
) -> Request:
    raw_headers = [
        (k.lower().encode('latin-1'), v.encode('latin-1'))
        for k, v in (headers or {}).items()
    ]
    scope = {
        'type': 'http',
        'method': 'GET',
        'path': '/access/abc',
        'headers': raw_headers,
        'query_string': query.encode('latin-1'),
    }
    return Request(scope)


# ── Local verification ───────────────────────────────────────────────


class TestLocalVerifier:
    @pytest.mark.asyncio
    async def test_valid_token(self, verifier):
        token = make_jwt('user-1', email='User@Example.COM', permissions=['files:read'])
        principal = await verifier.verify(token)
        assert principal.subject_id == 'user-1'
        assert principal.email == 'user@example.com'
        assert principal.scopes == frozenset({'files:read'})
        assert principal.source == SOURCE_LOCAL
        assert principal.expires_at is not None

    @pytest.mark.asyncio
    async def test_missing_credential(self, verifier):
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(None)
        assert exc_info.value.code is ErrorCode.MISSING_CREDENTIAL

    @pytest.mark.asyncio
    async def test_blank_credential(self, verifier):
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify('   ')
        assert exc_info.value.code is ErrorCode.MISSING_CREDENTIAL

    @pytest.mark.asyncio
    async def test_expired_token(self, verifier):
        token = make_jwt('user-1', expires_in=-60)
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(token)
        assert exc_info.value.code is ErrorCode.CREDENTIAL_EXPIRED
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_wrong_secret(self, verifier):
        token = make_jwt('user-1', secret='another-secret-0123456789abcdef0123')
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(token)
        assert exc_info.value.code is ErrorCode.SIGNATURE_INVALID

    @pytest.mark.asyncio
    async def test_tampered_payload(self, verifier):
        token = make_jwt('user-1')
        header, _, signature = token.split('.')
        forged_payload = make_jwt('user-owner').split('.')[1]
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(f'{header}.{forged_payload}.{signature}')
        assert exc_info.value.code is ErrorCode.SIGNATURE_INVALID

    @pytest.mark.asyncio
    async def test_other_algorithm_rejected(self, verifier):
        token = jwt.encode(
            {'sub': 'user-1', 'exp': int(time.time()) + 60},
            JWT_SECRET,
            algorithm='HS512',
        )
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(token)
        assert exc_info.value.code is ErrorCode.SIGNATURE_INVALID

    @pytest.mark.asyncio
    async def test_garbage_is_malformed(self, verifier):
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify('not-a-jwt')
        assert exc_info.value.code is ErrorCode.MALFORMED_CREDENTIAL

    @pytest.mark.asyncio
    async def test_missing_subject_is_malformed(self, verifier):
        token = jwt.encode({'exp': int(time.time()) + 60}, JWT_SECRET, algorithm='HS256')
        with pytest.raises(AuthError) as exc_info:
            await verifier.verify(token)
        assert exc_info.value.code is ErrorCode.MALFORMED_CREDENTIAL

    @pytest.mark.asyncio
    async def test_user_id_claim_accepted(self, verifier):
        token = jwt.encode(
            {'userId': 'user-7', 'exp': int(time.time()) + 60},
            JWT_SECRET,
            algorithm='HS256',
        )
        principal = await verifier.verify(token)
        assert principal.subject_id == 'user-7'

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            LocalCredentialVerifier('')


class TestClaimHelpers:
    def test_subject_precedence(self):
        assert subject_from_claims({'sub': 'a', 'userId': 'b'}) == 'a'
        assert subject_from_claims({'userId': 'b'}) == 'b'
        assert subject_from_claims({'user': {'id': 42}}) == '42'
        assert subject_from_claims({}) is None

    def test_scope_string(self):
        assert scopes_from_claims({'scope': 'read write'}) == frozenset({'read', 'write'})

    def test_no_scopes(self):
        assert scopes_from_claims({}) == frozenset()


# ── Credential extraction ────────────────────────────────────────────


class TestExtractCredential:
    def test_bearer_header(self):
        request = _request(headers={'Authorization': 'Bearer abc.def.ghi'})
        assert extract_credential(request) == 'abc.def.ghi'

    def test_cookie(self):
        request = _request(headers={'Cookie': 'session_token=from-cookie'})
        assert extract_credential(request) == 'from-cookie'

    def test_query_param(self):
        request = _request(query='token=from-query')
        assert extract_credential(request) == 'from-query'

    def test_header_wins_over_cookie_and_query(self):
        request = _request(
            headers={
                'Authorization': 'Bearer from-header',
                'Cookie': 'jwt_token=from-cookie',
            },
            query='token=from-query',
        )
        assert extract_credential(request) == 'from-header'

    def test_cookie_wins_over_query(self):
        request = _request(headers={'Cookie': 'token=from-cookie'}, query='token=from-query')
        assert extract_credential(request) == 'from-cookie'

    def test_non_bearer_scheme_ignored(self):
        request = _request(headers={'Authorization': 'Basic dXNlcjpwYXNz'})
        assert extract_credential(request) is None

    def test_nothing_presented(self):
        assert extract_credential(_request()) is None


class TestFactory:
    def test_local_mode(self):
        verifier = create_credential_verifier(ContentStoreSettings())
        assert isinstance(verifier, LocalCredentialVerifier)

    def test_introspection_mode(self):
        settings = ContentStoreSettings(
            auth_mode='introspection',
            auth_service_url='https://auth.example.com',
        )
        verifier = create_credential_verifier(settings)
        assert isinstance(verifier, IntrospectionCredentialVerifier)

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            create_credential_verifier(ContentStoreSettings(auth_mode='magic'))
