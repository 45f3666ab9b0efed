"""Run the access layer with uvicorn: ``python -m content_store.app``."""

from __future__ import annotations

import os

import uvicorn

from .main import create_app
from .observability import configure_logging
from .settings import ContentStoreSettings


def main() -> None:
    configure_logging()
    settings = ContentStoreSettings.from_env()
    uvicorn.run(
        create_app(settings),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8787")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
