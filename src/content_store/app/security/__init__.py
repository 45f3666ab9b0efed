"""Credential verification and capability tokens for the access layer."""

from .capability import (
    CapabilityGrant,
    CapabilitySigner,
    CapabilityToken,
    build_signed_url,
)
from .introspection import IntrospectionCredentialVerifier
from .token_verify import (
    CredentialVerifier,
    LocalCredentialVerifier,
    Principal,
    create_credential_verifier,
    extract_credential,
)

__all__ = [
    "CapabilityGrant",
    "CapabilitySigner",
    "CapabilityToken",
    "CredentialVerifier",
    "IntrospectionCredentialVerifier",
    "LocalCredentialVerifier",
    "Principal",
    "build_signed_url",
    "create_credential_verifier",
    "extract_credential",
]
