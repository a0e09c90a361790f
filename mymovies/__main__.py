"""Module executed when running ``python -m mymovies``."""

from __future__ import annotations

import logging
import sys

import uvicorn
from pydantic import ValidationError

from app.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Start the uvicorn server using the configured settings."""

    logging.basicConfig(level=logging.INFO)
    try:
        settings = get_settings()
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
