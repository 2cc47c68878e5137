"""Executable entry point for running the Bridge eSign backend."""

import logging
import os
from typing import Final

import uvicorn

from server import app

logger = logging.getLogger("esign.backend")

DEFAULT_HOST: Final[str] = "127.0.0.1"
DEFAULT_PORT: Final[int] = 8000


def main() -> None:
    host = os.getenv("ESIGN_BACKEND_HOST", DEFAULT_HOST)
    port = int(os.getenv("ESIGN_BACKEND_PORT", DEFAULT_PORT))

    logger.info(f"Starting Bridge eSign backend on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=os.getenv("ESIGN_BACKEND_LOG_LEVEL", "info"),
    )


if __name__ == "__main__":
    main()
