"""Recipes streaming remote media through yt-dlp into FFmpeg."""

from __future__ import annotations

from typing import Any, List, Mapping

from ..base import RemoteRecipe
from ..registry import REGISTRY

PIPE_IN = "pipe:0"
PIPE_OUT = "pipe:1"


class _BaseRemoteRecipe(RemoteRecipe):
    kind = "remote"
    tool = "ffmpeg"
    source_format = "bestaudio/best"

    def fetch_args(self, url: str) -> List[str]:
        return [
            "--no-playlist",
            "--restrict-filenames",
            "--no-warnings",
            "--no-part",
            "-f",
            self.source_format,
            "-o",
            "-",
            "--",
            url,
        ]

    def output_args(self) -> List[str]:
        raise NotImplementedError

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        return ["-hide_banner", "-loglevel", "error", "-i", input_ref, *self.output_args(), output_ref]


class RemoteMp3Recipe(_BaseRemoteRecipe):
    target = "mp3"
    media_type = "audio/mpeg"

    def output_args(self) -> List[str]:
        return ["-vn", "-c:a", "libmp3lame", "-b:a", "320k", "-f", "mp3"]


class RemoteWavRecipe(_BaseRemoteRecipe):
    target = "wav"
    media_type = "audio/wav"

    def output_args(self) -> List[str]:
        return ["-vn", "-f", "wav"]


class RemoteMp4Recipe(_BaseRemoteRecipe):
    target = "mp4"
    media_type = "video/mp4"
    source_format = "best"

    def output_args(self) -> List[str]:
        # Fragmented mp4 so playback can start before the download ends.
        return ["-c", "copy", "-movflags", "+frag_keyframe+empty_moov", "-f", "mp4"]


for recipe_cls in (RemoteMp3Recipe, RemoteWavRecipe, RemoteMp4Recipe):
    REGISTRY.register(recipe_cls)
