"""Recipe package exports and convenience loaders."""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from .registry import (
	DEFAULT_RECIPE_MODULES,
	REGISTRY,
	load_recipes,
	read_recipe_module_file,
)

if TYPE_CHECKING:  # pragma: no cover - import guard for type checkers
	from tool_converter.config import Settings


def _modules_from_settings(settings: "Settings" | None) -> List[str]:
	if not settings:
		return []

	explicit = [module for module in settings.recipe_modules if module]
	if settings.recipe_modules_file:
		explicit.extend(read_recipe_module_file(settings.recipe_modules_file))
	return explicit


def load_recipes_from_settings(settings: "Settings" | None = None) -> None:
	"""Load the builtin recipes plus any extra modules named in settings."""

	modules = list(DEFAULT_RECIPE_MODULES)
	modules.extend(module for module in _modules_from_settings(settings) if module not in modules)
	load_recipes(modules)


__all__ = ["REGISTRY", "load_recipes_from_settings", "load_recipes", "DEFAULT_RECIPE_MODULES"]
