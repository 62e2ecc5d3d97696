"""Run the bridge HTTP service: ``python -m mediabridge`` or ``mediabridge``."""

from __future__ import annotations

import logging

import uvicorn

from bridge.config import settings

logger = logging.getLogger("mediabridge")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    logger.info(
        "Serving %s for %s with managed root %s",
        settings.app_name,
        settings.jellyfin_url,
        settings.library_directory,
    )
    uvicorn.run(
        "bridge.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
