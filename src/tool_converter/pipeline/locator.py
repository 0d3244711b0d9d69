"""Resolve logical tool names to executables with ordered fallback."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Sequence, Tuple

import structlog
from fastapi import Depends

from ..config import Settings, settings_dependency
from ..errors import ToolNotFound
from .models import LIBRARY, ToolBinding, is_executable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    env_var: str
    executables: Tuple[str, ...]


KNOWN_TOOLS: Dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec("ffmpeg", "FFMPEG_PATH", ("ffmpeg",)),
        ToolSpec("gs", "GS_BIN", ("gs", "gswin64c")),
        ToolSpec("qpdf", "QPDF_BIN", ("qpdf",)),
        ToolSpec("pdfunite", "PDFUNITE_BIN", ("pdfunite",)),
        ToolSpec("yt-dlp", "YTDLP_BIN", ("yt-dlp", "youtube-dl")),
    )
}

MERGE_CHAIN: Tuple[str, ...] = ("pdfunite", "gs", LIBRARY.name)
SPLIT_CHAIN: Tuple[str, ...] = ("qpdf", LIBRARY.name)
COMPRESS_CHAIN: Tuple[str, ...] = ("gs", LIBRARY.name)


class ToolLocator:
    """Looks up executables: env override, then configured path, then PATH."""

    def __init__(
        self,
        configured: Mapping[str, str] | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._configured = dict(configured or {})
        self._environ = os.environ if environ is None else environ
        self._which = which

    @staticmethod
    def spec_for(name: str) -> ToolSpec:
        return KNOWN_TOOLS.get(name) or ToolSpec(name, f"{name.upper().replace('-', '_')}_PATH", (name,))

    def _pinned(self, spec: ToolSpec) -> ToolBinding | None:
        for provenance, path in (
            ("override", self._environ.get(spec.env_var)),
            ("configured", self._configured.get(spec.name)),
        ):
            if not path:
                continue
            if is_executable(path):
                return ToolBinding(spec.name, os.path.abspath(path), provenance)
            logger.warning("tool_override_unusable", tool=spec.name, source=provenance, path=path)
        return None

    def find(self, name: str) -> ToolBinding | None:
        if name == LIBRARY.name:
            return LIBRARY
        spec = self.spec_for(name)
        binding = self._pinned(spec)
        if binding:
            return binding
        for executable in spec.executables:
            found = self._which(executable)
            if found:
                return ToolBinding(spec.name, os.path.abspath(found), "discovered")
        return None

    def locate(self, name: str) -> ToolBinding:
        binding = self.find(name)
        if binding is None:
            spec = self.spec_for(name)
            raise ToolNotFound(spec.name, spec.env_var)
        logger.debug("tool_located", tool=name, path=binding.path, provenance=binding.provenance)
        return binding

    def available(self, candidates: Sequence[str]) -> list[ToolBinding]:
        """Bindings for every candidate that resolves, in priority order."""

        bindings = []
        for name in candidates:
            binding = self.find(name)
            if binding is None:
                logger.info("tool_candidate_missing", tool=name)
                continue
            bindings.append(binding)
        return bindings


def locator_dependency(settings: Settings = Depends(settings_dependency)) -> ToolLocator:
    return ToolLocator(settings.tools.paths)
