"""Recipe registry mapping (kind, target) to argument builders."""

from __future__ import annotations

from importlib import import_module
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple, Type

import yaml

from ..errors import UnsupportedOperation
from .base import ArgumentRecipe


DEFAULT_RECIPE_MODULES: Sequence[str] = (
    "tool_converter.recipes.builtin.audio",
    "tool_converter.recipes.builtin.video",
    "tool_converter.recipes.builtin.remote",
    "tool_converter.recipes.builtin.pdf",
)


class RecipeRegistry:
    def __init__(self) -> None:
        self._registry: Dict[Tuple[str, str], Type[ArgumentRecipe]] = {}

    def register(self, recipe_cls: Type[ArgumentRecipe]) -> None:
        key = (recipe_cls.kind.lower(), recipe_cls.target.lower())
        if key in self._registry:
            raise ValueError(f"Recipe already registered for {key}")
        self._registry[key] = recipe_cls

    def get(self, kind: str, target: str) -> ArgumentRecipe:
        key = (kind.lower(), target.lower())
        if key not in self._registry:
            raise UnsupportedOperation(f"Unsupported {kind} target: {target}")
        return self._registry[key]()

    def targets(self, kind: str) -> List[str]:
        return sorted(target for recipe_kind, target in self._registry if recipe_kind == kind.lower())

    def list(self) -> Iterable[ArgumentRecipe]:
        for recipe_cls in self._registry.values():
            yield recipe_cls()


REGISTRY = RecipeRegistry()


def load_recipes(module_names: Iterable[str] | None = None) -> None:
    """Import recipe modules and trigger their registration side-effects."""

    modules = list(module_names or DEFAULT_RECIPE_MODULES)
    for module in modules:
        import_module(module)


def read_recipe_module_file(path: str | Path) -> List[str]:
    file_path = Path(path)
    if not file_path.exists():
        return []

    with file_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    modules = data.get("modules", []) if isinstance(data, dict) else []
    return [str(module) for module in modules]


def write_recipe_module_file(path: str | Path, modules: Iterable[str]) -> None:
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    payload = {"modules": list(dict.fromkeys(str(module) for module in modules if module))}
    with file_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, allow_unicode=False, sort_keys=False)


__all__ = [
    "REGISTRY",
    "DEFAULT_RECIPE_MODULES",
    "load_recipes",
    "read_recipe_module_file",
    "write_recipe_module_file",
]
