"""Access decisions and the owner-only operations built on them."""

from .decision import AccessInputs, Deny, DenyReason, Grant, GrantReason, decide
from .engine import AccessDecisionEngine, AccessResult

__all__ = [
    "AccessDecisionEngine",
    "AccessInputs",
    "AccessResult",
    "Deny",
    "DenyReason",
    "Grant",
    "GrantReason",
    "decide",
]
