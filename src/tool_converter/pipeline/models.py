"""Value types passed between pipeline stages."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Tuple

from starlette.datastructures import UploadFile

COPY_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class SourceFile:
    """One uploaded part, still spooled by Starlette."""

    filename: str
    content_type: str | None
    size: int | None
    upload: UploadFile = field(repr=False, compare=False)

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()

    async def read_bytes(self) -> bytes:
        await self.upload.seek(0)
        return await self.upload.read()

    async def save_to(self, path: Path) -> None:
        await self.upload.seek(0)
        with path.open("wb") as handle:
            while True:
                chunk = await self.upload.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                handle.write(chunk)


@dataclass(frozen=True)
class ConversionRequest:
    kind: str
    operation: str
    sources: Tuple[SourceFile, ...]
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def source(self) -> SourceFile:
        return self.sources[0]


@dataclass(frozen=True)
class ToolBinding:
    name: str
    path: str
    provenance: str  # "override" | "configured" | "discovered" | "library"

    @property
    def is_library(self) -> bool:
        return self.provenance == "library"


LIBRARY = ToolBinding(name="library", path="", provenance="library")


def is_executable(path: str) -> bool:
    candidate = Path(path)
    return candidate.is_file() and shutil.which(str(candidate)) is not None
