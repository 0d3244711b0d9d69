"""Request and response models for the tools API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..pipeline.acceptor import choice, source_url

REMOTE_FORMATS = ("mp3", "mp4", "wav")


class DownloadRequest(BaseModel):
    url: str = Field("", description="youtube.com or youtu.be link")
    format: str = Field("mp3", description="mp3, mp4 or wav")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DownloadRequest":
        """Validate with the acceptor helpers so failures map to pipeline errors."""

        url = source_url(payload.get("url"))
        fmt = choice(payload.get("format"), REMOTE_FORMATS, field="format", default="mp3")
        return cls(url=url, format=fmt)


class RecipeDescriptor(BaseModel):
    kind: str
    target: str
    tool: str
    slug: str
    media_type: str
    fetch_tool: Optional[str] = None


class FormatsResponse(BaseModel):
    recipes: List[RecipeDescriptor]
    image_targets: List[str]
    image_fit_modes: List[str]
    pdf_compress_presets: List[str]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "down"] = "ok"
    timestamp: datetime
    dependencies: dict[str, str] = Field(default_factory=dict)
