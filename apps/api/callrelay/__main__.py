"""Run the signaling relay with uvicorn."""
from __future__ import annotations

import uvicorn

from .core.config import settings
from .core.logging import setup_logging


def main() -> None:
    setup_logging(settings.log_level)
    uvicorn.run(
        "callrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
