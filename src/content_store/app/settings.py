"""Content-store access layer configuration settings.

ContentStoreSettings is the single configuration object accepted by
create_app(). It is intentionally a plain dataclass (not env-coupled) so tests
can inject config without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

AUTH_MODES = ("local", "introspection")
LOCATOR_MODES = ("scan", "index")
MIN_SECRET_LENGTH = 32

DEFAULT_JWT_SECRET = "local-development-jwt-secret-not-for-prod"
DEFAULT_INTROSPECTION_TIMEOUT_SECONDS = 5.0
DEFAULT_SIGNED_URL_TTL_SECONDS = 3600
DEFAULT_SIGNED_URL_MAX_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_STORAGE_PREFIX = "uploads/"
DEFAULT_LIST_PAGE_SIZE = 1000
DEFAULT_PUBLIC_BASE_URL = "http://localhost:8787"
DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class ContentStoreSettings:
    """Configuration for the content-store FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply real secrets and, in introspection
    mode, the identity service URL.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Credential verification ────────────────────────────────────
    auth_mode: str = "local"
    """Which credential strategy to build: local or introspection."""

    jwt_secret: str = DEFAULT_JWT_SECRET
    """Shared HS256 secret for local credential verification. Never log this.

    The built-in default only exists for local development; validate()
    refuses it in every other environment.
    """

    auth_service_url: str = ""
    """Identity service base URL; introspection posts to {url}/auth/introspect."""

    introspection_timeout_seconds: float = DEFAULT_INTROSPECTION_TIMEOUT_SECONDS

    # ── Capability tokens ──────────────────────────────────────────
    signed_url_secret: str = ""
    """HMAC secret for signed URLs. Falls back to jwt_secret when empty."""

    signed_url_ttl_seconds: int = DEFAULT_SIGNED_URL_TTL_SECONDS
    signed_url_max_ttl_seconds: int = DEFAULT_SIGNED_URL_MAX_TTL_SECONDS

    # ── Storage ────────────────────────────────────────────────────
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    locator_mode: str = "scan"
    """scan walks the blob namespace; index consults an id->key index."""

    list_page_size: int = DEFAULT_LIST_PAGE_SIZE

    # ── HTTP ───────────────────────────────────────────────────────
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    """Externally reachable base URL used when building signed URLs."""

    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def capability_secret(self) -> str:
        return self.signed_url_secret or self.jwt_secret

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.auth_mode not in AUTH_MODES:
            errors.append(f"auth_mode must be one of {AUTH_MODES}, got {self.auth_mode!r}")
        if self.locator_mode not in LOCATOR_MODES:
            errors.append(
                f"locator_mode must be one of {LOCATOR_MODES}, got {self.locator_mode!r}"
            )
        if self.auth_mode == "introspection" and not self.auth_service_url:
            errors.append("auth_service_url is required when auth_mode=introspection")
        if self.auth_mode == "local" and not self.jwt_secret:
            errors.append("jwt_secret is required when auth_mode=local")
        if not self.capability_secret:
            errors.append("signed_url_secret (or jwt_secret) is required")
        if self.signed_url_ttl_seconds < 1:
            errors.append("signed_url_ttl_seconds must be >= 1")
        if self.signed_url_ttl_seconds > self.signed_url_max_ttl_seconds:
            errors.append("signed_url_ttl_seconds must not exceed signed_url_max_ttl_seconds")
        if self.list_page_size < 1:
            errors.append("list_page_size must be >= 1")
        if not self.is_local:
            if self.capability_secret == DEFAULT_JWT_SECRET:
                errors.append(
                    f"{self.environment}: signed_url_secret (or jwt_secret) must be set; "
                    "the built-in development secret is public"
                )
            if self.auth_mode == "local" and self.jwt_secret == DEFAULT_JWT_SECRET:
                errors.append(
                    f"{self.environment}: jwt_secret must be set; "
                    "the built-in development secret is public"
                )
            if len(self.capability_secret) < MIN_SECRET_LENGTH:
                errors.append(
                    f"{self.environment}: signed_url_secret must be >= {MIN_SECRET_LENGTH} characters"
                )
            if self.auth_mode == "local" and len(self.jwt_secret) < MIN_SECRET_LENGTH:
                errors.append(
                    f"{self.environment}: jwt_secret must be >= {MIN_SECRET_LENGTH} characters"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> ContentStoreSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct ContentStoreSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = tuple(o.strip() for o in cors_raw.split(",") if o.strip()) if cors_raw else DEFAULT_CORS_ORIGINS

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            auth_mode=env.get("AUTH_MODE", "local"),
            jwt_secret=env.get("AUTH_JWT_SECRET", DEFAULT_JWT_SECRET),
            auth_service_url=env.get("AUTH_SERVICE_URL", ""),
            introspection_timeout_seconds=float(
                env.get("INTROSPECTION_TIMEOUT_SECONDS", DEFAULT_INTROSPECTION_TIMEOUT_SECONDS)
            ),
            signed_url_secret=env.get("SIGNED_URL_SECRET", ""),
            signed_url_ttl_seconds=int(env.get("SIGNED_URL_TTL_SECONDS", DEFAULT_SIGNED_URL_TTL_SECONDS)),
            signed_url_max_ttl_seconds=int(
                env.get("SIGNED_URL_MAX_TTL_SECONDS", DEFAULT_SIGNED_URL_MAX_TTL_SECONDS)
            ),
            storage_prefix=env.get("STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX),
            locator_mode=env.get("LOCATOR_MODE", "scan"),
            list_page_size=int(env.get("LIST_PAGE_SIZE", DEFAULT_LIST_PAGE_SIZE)),
            public_base_url=env.get("CONTENT_SERVICE_URL", DEFAULT_PUBLIC_BASE_URL),
            cors_origins=cors,
        )
