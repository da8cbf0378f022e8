"""Entry point for running OXRooms via ``python -m oxrooms``."""

from __future__ import annotations

import uvicorn

from . import config
from .logging_config import setup_logging


def main() -> None:
    """Start the FastAPI-powered OXRooms server."""

    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    uvicorn.run(
        "oxrooms.server:app",
        host=config.HOST,
        port=config.PORT,
        reload=False,
        ws_ping_interval=config.WS_PING_INTERVAL,
        ws_ping_timeout=config.WS_PING_TIMEOUT,
    )


if __name__ == "__main__":
    main()
