"""Media upload endpoint."""
from __future__ import annotations

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from ..schemas.uploads import UploadResponse
from ..services import media_store as media_service

router = APIRouter()


@router.post("/upload", response_model=UploadResponse)
async def upload_media(video: UploadFile | None = File(default=None)) -> UploadResponse:
    """Store an uploaded video or image and return the path peers can load."""

    if video is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    if not media_service.is_supported_media(video.content_type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported media type: {video.content_type or 'unknown'}",
        )

    store = media_service.media_store
    try:
        data = await media_service.read_capped(video, store.max_bytes)
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
        path = await store.store(data, filename=video.filename, content_type=video.content_type)
    except media_service.UnsupportedMediaError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except media_service.MediaTooLargeError as exc:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(exc)) from exc

    return UploadResponse(path=path)
