"""FastAPI application hosting the signaling relay."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from . import __version__
from .core.config import settings
from .core.logging import setup_logging
from .routers import presence, rtc, signaling

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Call Relay Signaling API", version=__version__)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

app.include_router(signaling.router, tags=["signaling"])
app.include_router(rtc.router, prefix="/api/rtc", tags=["rtc"])
app.include_router(presence.router, prefix="/api", tags=["presence"])


@app.get("/", response_class=PlainTextResponse, tags=["meta"])
async def index() -> str:
    return "Hello from the backend server!"


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Return a simple health payload."""

    return {"status": "ok"}


logger.info("Signaling relay initialised (env=%s)", settings.app_env)
