"""PDF recipes keyed by (pdf-<operation>, <tool>).

The target of a PDF recipe is the tool that runs it, so every candidate in
an operation's fallback chain has its own fixed argument table.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from ..base import ArgumentRecipe
from ..registry import REGISTRY

COMPRESS_PRESETS = ("screen", "ebook", "printer", "prepress")


class _BasePdfRecipe(ArgumentRecipe):
    extension = "pdf"
    media_type = "application/pdf"

    def __init__(self) -> None:
        super().__init__()
        self.tool = self.target


class PdfuniteMergeRecipe(_BasePdfRecipe):
    """``options["inputs"]`` lists every document in merge order."""

    kind = "pdf-merge"
    target = "pdfunite"

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        return [*options["inputs"], output_ref]


class GhostscriptMergeRecipe(_BasePdfRecipe):
    kind = "pdf-merge"
    target = "gs"

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        return [
            "-dBATCH",
            "-dNOPAUSE",
            "-dQUIET",
            "-sDEVICE=pdfwrite",
            f"-sOutputFile={output_ref}",
            *options["inputs"],
        ]


class QpdfSplitRecipe(_BasePdfRecipe):
    kind = "pdf-split"
    target = "qpdf"

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        args: List[str] = []
        if options.get("password_file"):
            args.append(f"--password-file={options['password_file']}")
        args += [input_ref, "--pages", ".", options["ranges"], "--", output_ref]
        return args


class GhostscriptCompressRecipe(_BasePdfRecipe):
    kind = "pdf-compress"
    target = "gs"

    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        preset = options.get("preset") or "ebook"
        if preset not in COMPRESS_PRESETS:
            raise ValueError(f"Unknown compression preset: {preset}")
        return [
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS=/{preset}",
            "-dNOPAUSE",
            "-dQUIET",
            "-dBATCH",
            f"-sOutputFile={output_ref}",
            input_ref,
        ]


for recipe_cls in (PdfuniteMergeRecipe, GhostscriptMergeRecipe, QpdfSplitRecipe, GhostscriptCompressRecipe):
    REGISTRY.register(recipe_cls)
