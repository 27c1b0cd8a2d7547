"""Data contracts for media uploads."""
from __future__ import annotations

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    success: bool = True
    path: str = Field(..., description="URL path the uploaded media is served from")
