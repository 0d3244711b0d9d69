"""In-process image conversion and resizing with Pillow."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageOps

from ..errors import InputRejected, UnsupportedOperation

logger = logging.getLogger(__name__)

FIT_MODES = ("cover", "contain", "inside", "outside", "fill")
OUTPUT_FORMATS = ("auto", "png", "jpg", "webp")
DEFAULT_QUALITY = 85
CONVERT_QUALITY = 90


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    extension: str
    media_type: str


@dataclass(frozen=True)
class ImageEncoder:
    extension: str
    pil_format: str
    media_type: str


ENCODERS: Dict[str, ImageEncoder] = {
    "png": ImageEncoder("png", "PNG", "image/png"),
    "jpg": ImageEncoder("jpg", "JPEG", "image/jpeg"),
    "webp": ImageEncoder("webp", "WEBP", "image/webp"),
}
# Accepted spellings for /convert targets.
IMAGE_TARGETS: Dict[str, str] = {"png": "png", "jpg": "jpg", "jpeg": "jpg", "webp": "webp"}


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as exc:
        raise InputRejected(f"Unreadable image: {exc}") from exc
    return img


def _flatten(img: Image.Image, background: Tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """JPEG has no alpha: composite transparent pixels onto a solid background."""

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        base = Image.new("RGB", rgba.size, background)
        base.paste(rgba, mask=rgba.getchannel("A"))
        return base
    if img.mode not in ("RGB", "L"):
        return img.convert("RGB")
    return img


def _encode(img: Image.Image, encoder: ImageEncoder, **save_kw: Any) -> bytes:
    if encoder.pil_format == "JPEG":
        img = _flatten(img)
    elif img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        img = img.convert("RGBA")
    buffer = io.BytesIO()
    img.save(buffer, format=encoder.pil_format, **save_kw)
    return buffer.getvalue()


def convert_image(data: bytes, target: str) -> EncodedImage:
    """Re-encode an image for ``/convert``: png at max compression, jpg/webp at quality 90."""

    extension = IMAGE_TARGETS.get(target.lower())
    if extension is None:
        raise UnsupportedOperation(f"Unsupported image target: {target}")
    encoder = ENCODERS[extension]

    with _open(data) as img:
        if extension == "png":
            output = _encode(img, encoder, compress_level=9, optimize=True)
        else:
            output = _encode(img, encoder, quality=CONVERT_QUALITY)
    logger.info("Converted image to %s (%d bytes)", extension, len(output))
    return EncodedImage(output, encoder.extension, encoder.media_type)


def _scaled(size: Tuple[int, int], scale: float) -> Tuple[int, int]:
    return max(1, round(size[0] * scale)), max(1, round(size[1] * scale))


def resize_image(img: Image.Image, width: Optional[int], height: Optional[int], fit: str) -> Image.Image:
    """Resize following sharp's fit semantics.

    With a single dimension every mode scales proportionally to it. With both:
    ``fill`` stretches, ``inside`` fits within the box, ``outside`` covers it
    without cropping, ``cover`` covers then centre-crops and ``contain`` fits
    then pads with transparency.
    """

    if fit not in FIT_MODES:
        raise UnsupportedOperation(f"Unsupported fit: {fit}")
    if not width and not height:
        return img

    w, h = img.size
    if not width or not height:
        scale = width / w if width else height / h
        return img.resize(_scaled(img.size, scale), Image.Resampling.LANCZOS)

    if fit == "fill":
        return img.resize((width, height), Image.Resampling.LANCZOS)
    if fit == "inside":
        return img.resize(_scaled(img.size, min(width / w, height / h)), Image.Resampling.LANCZOS)
    if fit == "outside":
        return img.resize(_scaled(img.size, max(width / w, height / h)), Image.Resampling.LANCZOS)
    if fit == "cover":
        return ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS)

    fitted = ImageOps.contain(img.convert("RGBA"), (width, height), Image.Resampling.LANCZOS)
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    canvas.paste(fitted, ((width - fitted.width) // 2, (height - fitted.height) // 2))
    return canvas


def _auto_extension(img: Image.Image, content_type: Optional[str]) -> str:
    detected = (img.format or "").upper()
    if detected == "PNG" or (not detected and content_type and "png" in content_type):
        return "png"
    if detected == "WEBP" or (not detected and content_type and "webp" in content_type):
        return "webp"
    return "jpg"


def process_image(
    data: bytes,
    *,
    width: Optional[int] = None,
    height: Optional[int] = None,
    fit: str = "inside",
    fmt: str = "auto",
    quality: int = DEFAULT_QUALITY,
    strip: bool = True,
    source_content_type: Optional[str] = None,
) -> EncodedImage:
    if fmt not in OUTPUT_FORMATS:
        raise UnsupportedOperation(f"Unsupported format: {fmt}")
    quality = max(0, min(100, quality))

    with _open(data) as source:
        extension = fmt if fmt != "auto" else _auto_extension(source, source_content_type)
        metadata = {key: source.info[key] for key in ("exif", "icc_profile") if source.info.get(key)}
        img = resize_image(source.copy(), width, height, fit)

        if strip:
            img.info = {}
        encoder = ENCODERS[extension]
        save_kw: Dict[str, Any] = {} if strip else dict(metadata)
        if extension == "png":
            save_kw["compress_level"] = round(quality / 100 * 9)
        else:
            save_kw["quality"] = quality
        output = _encode(img, encoder, **save_kw)

    logger.info(
        "Processed image %sx%s fit=%s -> %s (%d bytes)",
        width,
        height,
        fit,
        extension,
        len(output),
    )
    return EncodedImage(output, encoder.extension, encoder.media_type)
