"""Access decision: (object, principal, capability) -> verdict.

The decision is an ordered rule table. Each rule inspects the inputs and
either returns a verdict or passes (``None``) to the next rule. The first
verdict wins:

  1. object missing                          -> Deny(NOT_FOUND)
  2. object public                           -> Grant(PUBLIC)
  3. verified capability bound to the object -> Grant(CAPABILITY)
  4. principal is the owner                  -> Grant(OWNER)
  5. no principal                            -> Deny(AUTH_REQUIRED)
     (Deny(INTROSPECTION_UNAVAILABLE) when the identity service was down)
  6. anything else                           -> Deny(FORBIDDEN)

Rule 1 runs before any auth rule, so existence of an id is observable
without credentials. Rule 5 differs from rule 6 on purpose: an anonymous
caller could still succeed by authenticating as the owner, an
authenticated non-owner cannot.

Nothing here performs I/O; ``engine.AccessDecisionEngine`` gathers the
inputs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Union

from content_store.app.errors import ErrorCode
from content_store.app.security.capability import CapabilityGrant
from content_store.app.security.token_verify import Principal
from content_store.app.storage.locator import FileObjectDescriptor


class GrantReason(str, enum.Enum):
    PUBLIC = 'public'
    CAPABILITY = 'capability'
    OWNER = 'owner'


class DenyReason(str, enum.Enum):
    NOT_FOUND = 'not_found'
    AUTH_REQUIRED = 'auth_required'
    FORBIDDEN = 'forbidden'
    INTROSPECTION_UNAVAILABLE = 'introspection_unavailable'


_DENY_CODES = {
    DenyReason.NOT_FOUND: ErrorCode.NOT_FOUND,
    DenyReason.AUTH_REQUIRED: ErrorCode.AUTH_REQUIRED,
    DenyReason.FORBIDDEN: ErrorCode.FORBIDDEN,
    DenyReason.INTROSPECTION_UNAVAILABLE: ErrorCode.INTROSPECTION_UNAVAILABLE,
}


@dataclass(frozen=True, slots=True)
class Grant:
    reason: GrantReason

    @property
    def granted(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return 'grant'


@dataclass(frozen=True, slots=True)
class Deny:
    """A refusal. ``cause`` records which verification failure, if any,
    left the request without a usable credential or capability."""

    reason: DenyReason
    cause: ErrorCode | None = None

    @property
    def granted(self) -> bool:
        return False

    @property
    def label(self) -> str:
        return 'deny'

    @property
    def error_code(self) -> ErrorCode:
        return _DENY_CODES[self.reason]


Verdict = Union[Grant, Deny]


@dataclass(frozen=True, slots=True)
class AccessInputs:
    """Everything the decision looks at.

    Attributes:
        descriptor: The resolved object, or None if it does not exist.
        principal: Verified identity, or None for anonymous requests.
        capability: Verified capability grant, or None.
        credential_error: Why a presented credential failed, if it did.
        token_error: Why a presented capability token failed, if it did.
    """

    descriptor: FileObjectDescriptor | None
    principal: Principal | None = None
    capability: CapabilityGrant | None = None
    credential_error: ErrorCode | None = None
    token_error: ErrorCode | None = None


Rule = Callable[[AccessInputs], Union[Verdict, None]]


# ── Rules ────────────────────────────────────────────────────────────


def rule_not_found(inputs: AccessInputs) -> Verdict | None:
    if inputs.descriptor is None:
        return Deny(DenyReason.NOT_FOUND)
    return None


def rule_public(inputs: AccessInputs) -> Verdict | None:
    if inputs.descriptor is not None and inputs.descriptor.is_public:
        return Grant(GrantReason.PUBLIC)
    return None


def rule_capability(inputs: AccessInputs) -> Verdict | None:
    grant = inputs.capability
    if (
        grant is not None
        and inputs.descriptor is not None
        and grant.file_id == inputs.descriptor.file_id
    ):
        return Grant(GrantReason.CAPABILITY)
    return None


def rule_owner(inputs: AccessInputs) -> Verdict | None:
    principal = inputs.principal
    if (
        principal is not None
        and inputs.descriptor is not None
        and inputs.descriptor.owner_id
        and principal.subject_id == inputs.descriptor.owner_id
    ):
        return Grant(GrantReason.OWNER)
    return None


def rule_anonymous(inputs: AccessInputs) -> Verdict | None:
    if inputs.principal is not None:
        return None
    if inputs.credential_error is ErrorCode.INTROSPECTION_UNAVAILABLE:
        return Deny(DenyReason.INTROSPECTION_UNAVAILABLE, cause=inputs.credential_error)
    return Deny(
        DenyReason.AUTH_REQUIRED,
        cause=inputs.credential_error or inputs.token_error,
    )


def rule_forbidden(inputs: AccessInputs) -> Verdict | None:
    return Deny(DenyReason.FORBIDDEN, cause=inputs.token_error)


ACCESS_RULES: tuple[Rule, ...] = (
    rule_not_found,
    rule_public,
    rule_capability,
    rule_owner,
    rule_anonymous,
    rule_forbidden,
)


def decide(inputs: AccessInputs) -> Verdict:
    """Apply ``ACCESS_RULES`` in order and return the first verdict."""
    for rule in ACCESS_RULES:
        verdict = rule(inputs)
        if verdict is not None:
            return verdict
    return Deny(DenyReason.FORBIDDEN)
