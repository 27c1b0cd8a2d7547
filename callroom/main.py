"""FastAPI application for the call room signaling server."""
from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from .core.config import settings
from .db.session import create_schema
from .routers import auth as auth_router
from .routers import rtc as rtc_router
from .routers import uploads as uploads_router
from .services.media_store import UPLOAD_URL_PREFIX

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logging.getLogger("callroom").setLevel(settings.log_level.upper())
    if settings.database_auto_create:
        await create_schema()
    logger.info("Call room server ready (%s)", settings.app_env)
    yield


app = FastAPI(title="Call Room Signaling API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

if settings.session_secret == "fallback-secret" and settings.app_env != "development":
    logger.warning("SESSION_SECRET is not set; using the insecure fallback secret")
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

app.include_router(auth_router.router, prefix="/auth", tags=["auth"])
app.include_router(uploads_router.router, tags=["media"])
app.include_router(rtc_router.router, prefix="/api/rtc", tags=["rtc"])

app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    """Serve a minimal robots.txt to avoid 404 noise."""

    return PlainTextResponse("User-agent: *\nDisallow:")


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    """Return a tiny placeholder favicon."""

    return Response(content=FAVICON_BYTES, media_type="image/png")
