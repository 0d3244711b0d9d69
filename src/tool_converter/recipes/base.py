"""Base classes for argument recipes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping


class ArgumentRecipe(ABC):
    """Deterministic argument vector for one (kind, target) pair."""

    slug: str = ""
    kind: str = ""
    target: str = ""
    tool: str = ""
    extension: str = ""
    media_type: str = "application/octet-stream"

    def __init__(self) -> None:
        self.slug = self.slug or f"{self.kind}-to-{self.target}"
        self.extension = self.extension or self.target

    @abstractmethod
    def build_args(self, input_ref: str, output_ref: str, options: Mapping[str, Any]) -> List[str]:
        """Return the argument vector, without the executable itself."""

    def describe(self) -> Dict[str, str]:
        return {
            "slug": self.slug,
            "kind": self.kind,
            "target": self.target,
            "tool": self.tool,
            "media_type": self.media_type,
        }


class RemoteRecipe(ArgumentRecipe):
    """Two-stage recipe: a fetcher writes the source to stdout, ``tool`` transcodes it."""

    fetch_tool: str = "yt-dlp"

    @abstractmethod
    def fetch_args(self, url: str) -> List[str]:
        """Arguments for the fetch stage; its stdout feeds ``build_args``' stdin."""

    def describe(self) -> Dict[str, str]:
        data = super().describe()
        data["fetch_tool"] = self.fetch_tool
        return data
