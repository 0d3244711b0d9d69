"""Visible text stamp plus PKCS#7 signature over it."""

from __future__ import annotations

import hashlib
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from fastapi.responses import Response
from pyhanko import stamp
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.sign import fields, signers
from pyhanko.sign.general import SigningError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas
from starlette.concurrency import run_in_threadpool

from ..config import Settings, SigningSettings
from ..errors import InputRejected, ProcessFailed
from ..pipeline.models import SourceFile
from ..pipeline.runner import JobWorkspace
from ..pipeline.streamer import bytes_response
from .pdf_ops import PDF_MEDIA_TYPE, open_document

logger = logging.getLogger(__name__)

DEFAULT_FONT = "Helvetica"
MAX_FONT_SIZE = 48
MIN_FONT_SIZE = 6


@dataclass(frozen=True)
class StampPlacement:
    page: int  # 1-based, clamped by the caller's document
    x: float
    y: float
    width_pct: float


def register_font(ttf_path: Optional[Path]) -> str:
    """Register an uploaded TTF once per distinct file; reportlab keeps fonts process-wide."""

    if ttf_path is None:
        return DEFAULT_FONT
    try:
        name = f"SignatureFont-{hashlib.sha256(ttf_path.read_bytes()).hexdigest()[:16]}"
        if name in pdfmetrics.getRegisteredFontNames():
            return name
        pdfmetrics.registerFont(TTFont(name, str(ttf_path)))
    except (TTFError, OSError) as exc:
        raise InputRejected(f"Unreadable font: {exc}") from exc
    return name


def fit_font_size(text: str, font_name: str, target_width: float) -> int:
    size = MAX_FONT_SIZE
    while size > MIN_FONT_SIZE and pdfmetrics.stringWidth(text, font_name, size) > target_width:
        size -= 1
    return size


def _stamp_page(text: str, font_name: str, size: int, page_size: Tuple[float, float], x: float, y: float) -> PdfReader:
    buffer = io.BytesIO()
    overlay = canvas.Canvas(buffer, pagesize=page_size)
    overlay.setFillColorRGB(0, 0, 0)
    overlay.setFont(font_name, size)
    overlay.drawString(x, y, text)
    overlay.showPage()
    overlay.save()
    buffer.seek(0)
    return PdfReader(buffer)


def stamp_document(reader: PdfReader, text: str, placement: StampPlacement, font_name: str) -> Tuple[bytes, int, Tuple[int, int, int, int]]:
    """Draw ``text`` on the chosen page; returns the PDF, page index and signature box."""

    index = min(max(placement.page, 1), len(reader.pages)) - 1
    writer = PdfWriter(clone_from=reader)
    page = writer.pages[index]
    page_width = float(page.mediabox.width)
    page_height = float(page.mediabox.height)

    size = fit_font_size(text, font_name, placement.width_pct / 100 * page_width)
    text_width = pdfmetrics.stringWidth(text, font_name, size)
    ascent, descent = pdfmetrics.getAscentDescent(font_name, size)

    overlay = _stamp_page(text, font_name, size, (page_width, page_height), placement.x, placement.y)
    page.merge_page(overlay.pages[0])

    x0 = int(placement.x)
    y0 = int(placement.y) - 2
    box = (x0, y0, x0 + math.ceil(text_width) + 4, y0 + math.ceil(ascent - descent) + 6)

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue(), index, box


def sign_document(
    pdf_path: Path,
    certificate_path: Path,
    *,
    passphrase: str,
    text: str,
    placement: StampPlacement,
    ttf_path: Optional[Path] = None,
    settings: SigningSettings,
    name: str = "document.pdf",
) -> bytes:
    reader = open_document(pdf_path, name)
    signer = signers.SimpleSigner.load_pkcs12(
        pfx_file=str(certificate_path),
        passphrase=passphrase.encode("utf-8") if passphrase else None,
    )
    if signer is None:
        raise InputRejected("Could not open the PKCS#12 certificate; check the password")

    font_name = register_font(ttf_path)
    try:
        stamped, page_index, box = stamp_document(reader, text, placement, font_name)
    except PyPdfError as exc:
        raise InputRejected(f"{name}: {exc}") from exc

    metadata = signers.PdfSignatureMetadata(
        field_name=settings.field_name,
        reason=settings.reason,
        location=settings.location,
    )
    pdf_signer = signers.PdfSigner(
        metadata,
        signer=signer,
        # The reportlab stamp is the visible appearance; keep pyHanko's blank.
        stamp_style=stamp.TextStampStyle(stamp_text=" ", border_width=0),
        new_field_spec=fields.SigFieldSpec(settings.field_name, on_page=page_index, box=box),
    )
    try:
        output = pdf_signer.sign_pdf(IncrementalPdfFileWriter(io.BytesIO(stamped)))
    except SigningError as exc:
        raise ProcessFailed("pyhanko", None, message=f"Signing failed: {exc}") from exc
    logger.info("Signed %s on page %d", name, page_index + 1)
    return output.getvalue()


async def sign(
    source: SourceFile,
    certificate: SourceFile,
    *,
    passphrase: str,
    text: str,
    placement: StampPlacement,
    font: Optional[SourceFile],
    settings: Settings,
) -> Response:
    with JobWorkspace(settings.work_path, "sign") as workspace:
        pdf_path = workspace.file("in.pdf")
        certificate_path = workspace.file("certificate.p12")
        await source.save_to(pdf_path)
        await certificate.save_to(certificate_path)
        ttf_path = None
        if font is not None:
            ttf_path = workspace.file("font.ttf")
            await font.save_to(ttf_path)

        data = await run_in_threadpool(
            sign_document,
            pdf_path,
            certificate_path,
            passphrase=passphrase,
            text=text,
            placement=placement,
            ttf_path=ttf_path,
            settings=settings.signing,
            name=source.filename,
        )

    return bytes_response(data, media_type=PDF_MEDIA_TYPE, filename="signed.pdf")
