"""Content-store access layer FastAPI application."""

from .main import create_app
from .settings import ContentStoreSettings

__all__ = ["create_app", "ContentStoreSettings"]
