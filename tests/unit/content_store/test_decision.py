"""Tests for the access rule table.

Pure function tests: every combination of object state, principal and
capability maps to exactly one verdict, in precedence order.
"""

from __future__ import annotations

import itertools

import pytest

from content_store.app.access.decision import (
    ACCESS_RULES,
    AccessInputs,
    Deny,
    DenyReason,
    Grant,
    GrantReason,
    decide,
)
from content_store.app.errors import ErrorCode
from content_store.app.security.capability import CapabilityGrant
from content_store.app.security.token_verify import Principal
from content_store.app.storage.locator import FileObjectDescriptor

OWNER = Principal(subject_id='user-owner')
STRANGER = Principal(subject_id='user-other')


def _descriptor(*, public: bool = False, owner: str = 'user-owner') -> FileObjectDescriptor:
    return FileObjectDescriptor(
        file_id='f-1',
        storage_key='uploads/2024/3/f-1.pdf',
        owner_id=owner,
        is_public=public,
    )


def _capability(file_id: str = 'f-1') -> CapabilityGrant:
    return CapabilityGrant(file_id=file_id, subject_id='user-owner', expires_at=2_000_000_000)


class TestPrecedence:
    def test_rule_order(self):
        names = [rule.__name__ for rule in ACCESS_RULES]
        assert names == [
            'rule_not_found',
            'rule_public',
            'rule_capability',
            'rule_owner',
            'rule_anonymous',
            'rule_forbidden',
        ]

    def test_missing_object_beats_everything(self):
        verdict = decide(AccessInputs(descriptor=None, principal=OWNER, capability=_capability()))
        assert verdict == Deny(DenyReason.NOT_FOUND)
        assert verdict.error_code is ErrorCode.NOT_FOUND

    def test_missing_object_anonymous(self):
        assert decide(AccessInputs(descriptor=None)) == Deny(DenyReason.NOT_FOUND)


class TestPublic:
    @pytest.mark.parametrize(
        'principal, capability, credential_error, token_error',
        list(itertools.product(
            [None, OWNER, STRANGER],
            [None, _capability()],
            [None, ErrorCode.CREDENTIAL_EXPIRED, ErrorCode.INTROSPECTION_UNAVAILABLE],
            [None, ErrorCode.SIGNATURE_INVALID],
        )),
    )
    def test_public_always_granted(self, principal, capability, credential_error, token_error):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(public=True),
            principal=principal,
            capability=capability,
            credential_error=credential_error,
            token_error=token_error,
        ))
        assert verdict == Grant(GrantReason.PUBLIC)


class TestCapability:
    def test_bound_capability_grants_without_principal(self):
        verdict = decide(AccessInputs(descriptor=_descriptor(), capability=_capability()))
        assert verdict == Grant(GrantReason.CAPABILITY)

    def test_capability_beats_non_owner_principal(self):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(), principal=STRANGER, capability=_capability(),
        ))
        assert verdict == Grant(GrantReason.CAPABILITY)

    def test_capability_for_other_file_ignored(self):
        verdict = decide(AccessInputs(descriptor=_descriptor(), capability=_capability('f-2')))
        assert verdict == Deny(DenyReason.AUTH_REQUIRED)


class TestOwnership:
    def test_owner_granted(self):
        assert decide(AccessInputs(descriptor=_descriptor(), principal=OWNER)) == Grant(
            GrantReason.OWNER,
        )

    def test_non_owner_forbidden(self):
        verdict = decide(AccessInputs(descriptor=_descriptor(), principal=STRANGER))
        assert verdict == Deny(DenyReason.FORBIDDEN)
        assert verdict.error_code is ErrorCode.FORBIDDEN

    def test_object_without_owner_is_never_owned(self):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(owner=''), principal=Principal(subject_id=''),
        ))
        assert not verdict.granted

    def test_anonymous_requires_auth(self):
        verdict = decide(AccessInputs(descriptor=_descriptor()))
        assert verdict == Deny(DenyReason.AUTH_REQUIRED)
        assert verdict.error_code is ErrorCode.AUTH_REQUIRED

    def test_rejected_credential_is_anonymous(self):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(), credential_error=ErrorCode.CREDENTIAL_EXPIRED,
        ))
        assert verdict == Deny(DenyReason.AUTH_REQUIRED, cause=ErrorCode.CREDENTIAL_EXPIRED)

    def test_failed_token_recorded_as_cause(self):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(), token_error=ErrorCode.TOKEN_EXPIRED,
        ))
        assert verdict.reason is DenyReason.AUTH_REQUIRED
        assert verdict.cause is ErrorCode.TOKEN_EXPIRED

    def test_introspection_outage_is_distinct(self):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(),
            credential_error=ErrorCode.INTROSPECTION_UNAVAILABLE,
        ))
        assert verdict.reason is DenyReason.INTROSPECTION_UNAVAILABLE
        assert verdict.error_code is ErrorCode.INTROSPECTION_UNAVAILABLE
        assert verdict.error_code.retryable


class TestVerdictShape:
    def test_labels(self):
        assert Grant(GrantReason.OWNER).label == 'grant'
        assert Deny(DenyReason.FORBIDDEN).label == 'deny'

    @pytest.mark.parametrize(
        'principal, capability, credential_error, token_error',
        list(itertools.product(
            [None, STRANGER],
            [None, _capability('f-2')],
            [None, ErrorCode.SIGNATURE_INVALID, ErrorCode.INTROSPECTION_UNAVAILABLE],
            [None, ErrorCode.TOKEN_EXPIRED, ErrorCode.MALFORMED_TOKEN],
        )),
    )
    def test_no_error_path_grants_private_object(
        self, principal, capability, credential_error, token_error,
    ):
        verdict = decide(AccessInputs(
            descriptor=_descriptor(),
            principal=principal,
            capability=capability,
            credential_error=credential_error,
            token_error=token_error,
        ))
        assert isinstance(verdict, Deny)
