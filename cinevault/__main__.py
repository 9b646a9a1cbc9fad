"""Module executed when running ``python -m cinevault``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger("cinevault")


def main() -> None:
    """Serve the API with uvicorn using the configured host and port."""

    logging.basicConfig(level=logging.INFO)
    logger.info(
        "Starting %s on %s:%s (%s credential nodes)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        len(settings.omdb_api_keys),
    )
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
