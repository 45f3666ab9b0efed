"""Shared fixtures for content-store access tests."""

from __future__ import annotations

import pytest

from access_fixtures import JWT_SECRET, SIGNING_SECRET
from content_store.app.security.capability import CapabilitySigner
from content_store.app.security.token_verify import LocalCredentialVerifier
from content_store.app.storage.blob import InMemoryBlobStore
from content_store.app.storage.locator import PrefixScanLocator


@pytest.fixture
def store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def locator(store) -> PrefixScanLocator:
    return PrefixScanLocator(store)


@pytest.fixture
def verifier() -> LocalCredentialVerifier:
    return LocalCredentialVerifier(JWT_SECRET)


@pytest.fixture
def signer() -> CapabilitySigner:
    return CapabilitySigner(SIGNING_SECRET)
