"""Recipes transcoding uploads to video containers via FFmpeg."""

from __future__ import annotations

from typing import Any, List, Mapping

from ..base import ArgumentRecipe
from ..registry import REGISTRY


class _BaseVideoRecipe(ArgumentRecipe):
    kind = "video"
    tool = "ffmpeg"
    codec: List[str] = []

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        return ["-hide_banner", "-y", "-i", input_ref, *self.codec, output_ref]


class Mp4Recipe(_BaseVideoRecipe):
    target = "mp4"
    media_type = "video/mp4"
    codec = [
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "22",
        "-c:a",
        "aac",
        "-b:a",
        "192k",
        "-movflags",
        "+faststart",
    ]


class WebmRecipe(_BaseVideoRecipe):
    target = "webm"
    media_type = "video/webm"
    codec = [
        "-c:v",
        "libvpx-vp9",
        "-b:v",
        "0",
        "-crf",
        "34",
        "-c:a",
        "libopus",
        "-b:a",
        "160k",
    ]


for recipe_cls in (Mp4Recipe, WebmRecipe):
    REGISTRY.register(recipe_cls)
