"""Local disk storage for shared media uploads.

The call room core only ever handles the returned references; this module is
the boundary that turns an uploaded blob into a URL path.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any

from ..core.config import settings
from ..schemas.signaling import SUPPORTED_MEDIA_PREFIXES

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
UPLOAD_CHUNK_BYTES = 1024 * 1024


class UnsupportedMediaError(ValueError):
    """Raised for blobs that are neither video nor image."""


class MediaTooLargeError(ValueError):
    """Raised when a blob exceeds the configured upload limit."""


def is_supported_media(content_type: str | None) -> bool:
    return bool(content_type) and content_type.startswith(SUPPORTED_MEDIA_PREFIXES)


async def read_capped(upload: Any, max_bytes: int, chunk_size: int = UPLOAD_CHUNK_BYTES) -> bytes:
    """Read an upload chunk by chunk, giving up as soon as it exceeds ``max_bytes``."""

    buffer = bytearray()
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            return bytes(buffer)
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise MediaTooLargeError(f"Upload exceeds {max_bytes} bytes")


def safe_filename(name: str | None) -> str:
    """Strip directories and unusual characters from a client-supplied name."""

    base = Path(name or "").name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "upload"


class LocalMediaStore:
    """Store blobs under ``root`` as ``<epoch-ms>-<name>``."""

    def __init__(self, root: str | Path, max_bytes: int) -> None:
        self._root = Path(root)
        self._max_bytes = max_bytes

    @property
    def root(self) -> Path:
        return self._root

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    async def store(self, data: bytes, *, filename: str | None, content_type: str | None) -> str:
        """Persist ``data`` and return its public URL path."""

        if not is_supported_media(content_type):
            raise UnsupportedMediaError(f"Unsupported media type: {content_type or 'unknown'}")
        if len(data) > self._max_bytes:
            raise MediaTooLargeError(f"Upload exceeds {self._max_bytes} bytes")

        stored_name = f"{int(time.time() * 1000)}-{safe_filename(filename)}"
        target = self._root / stored_name
        await asyncio.to_thread(self._write, target, data)
        logger.info("Stored %s (%s, %d bytes)", stored_name, content_type, len(data))
        return f"{UPLOAD_URL_PREFIX}/{stored_name}"

    def _write(self, target: Path, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


media_store = LocalMediaStore(settings.upload_dir, settings.upload_max_bytes)
