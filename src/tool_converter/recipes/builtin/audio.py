"""Recipes transcoding uploads to audio formats via FFmpeg."""

from __future__ import annotations

from typing import Any, List, Mapping

from ..base import ArgumentRecipe
from ..registry import REGISTRY

LOUDNORM_FILTER = "loudnorm=I=-14:TP=-1.5:LRA=11"
DEFAULT_BITRATE_KBPS = 192
BITRATES_KBPS = ("64", "96", "128", "160", "192", "256", "320")
SAMPLE_RATES = ("8000", "11025", "16000", "22050", "32000", "44100", "48000", "96000")


def _seconds(value: float) -> str:
    return f"{value:g}"


class _BaseAudioRecipe(ArgumentRecipe):
    kind = "audio"
    tool = "ffmpeg"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        raise NotImplementedError

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        args = ["-hide_banner", "-y", "-i", input_ref, "-vn"]

        start = options.get("start")
        end = options.get("end")
        if start:
            args += ["-ss", _seconds(start)]
        if end:
            args += ["-to", _seconds(end)]
        if options.get("samplerate"):
            args += ["-ar", str(options["samplerate"])]
        if options.get("normalize"):
            args += ["-af", LOUDNORM_FILTER]

        args += self.codec_args(options)
        args.append(output_ref)
        return args


class Mp3Recipe(_BaseAudioRecipe):
    target = "mp3"
    media_type = "audio/mpeg"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        bitrate = options.get("bitrate") or DEFAULT_BITRATE_KBPS
        return ["-c:a", "libmp3lame", "-b:a", f"{bitrate}k"]


class AacRecipe(_BaseAudioRecipe):
    target = "aac"
    extension = "m4a"
    media_type = "audio/mp4"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        bitrate = options.get("bitrate") or DEFAULT_BITRATE_KBPS
        return ["-c:a", "aac", "-b:a", f"{bitrate}k"]


class OggRecipe(_BaseAudioRecipe):
    target = "ogg"
    media_type = "audio/ogg"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        return ["-c:a", "libvorbis", "-q:a", "5"]


class FlacRecipe(_BaseAudioRecipe):
    target = "flac"
    media_type = "audio/flac"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        return ["-c:a", "flac"]


class WavRecipe(_BaseAudioRecipe):
    target = "wav"
    media_type = "audio/wav"

    def codec_args(self, options: Mapping[str, Any]) -> List[str]:
        return ["-c:a", "pcm_s16le"]


for recipe_cls in (Mp3Recipe, AacRecipe, OggRecipe, FlacRecipe, WavRecipe):
    REGISTRY.register(recipe_cls)
