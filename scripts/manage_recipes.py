#!/usr/bin/env python3
"""Command line utility for managing extra recipe modules."""

from __future__ import annotations

import argparse
from importlib import import_module
from pathlib import Path
from typing import List

from tool_converter.recipes import REGISTRY, load_recipes
from tool_converter.recipes.registry import read_recipe_module_file, write_recipe_module_file

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_RECIPE_FILE = ROOT_DIR / "config" / "recipes.yaml"


def _resolve_file(path: str | None) -> Path:
    return Path(path).resolve() if path else DEFAULT_RECIPE_FILE


def _load_modules(file_path: Path) -> List[str]:
    return read_recipe_module_file(file_path)


def handle_list(args: argparse.Namespace) -> int:
    modules = _load_modules(_resolve_file(args.file))
    if not modules:
        print("No extra recipe modules configured. Builtin recipes are always loaded.")
        return 0

    for module in modules:
        print(module)
    return 0


def handle_register(args: argparse.Namespace) -> int:
    file_path = _resolve_file(args.file)
    modules = _load_modules(file_path)
    module_name = args.module.strip()
    if not module_name:
        raise SystemExit("Module name cannot be empty.")

    if module_name in modules:
        print(f"Module '{module_name}' already registered.")
        return 0

    if not args.no_verify:
        try:
            import_module(module_name)
        except Exception as exc:  # import errors of any kind abort registration
            raise SystemExit(f"Failed to import '{module_name}': {exc}")

    modules.append(module_name)
    write_recipe_module_file(file_path, modules)
    print(f"Registered recipe module '{module_name}'.")
    return 0


def handle_unregister(args: argparse.Namespace) -> int:
    file_path = _resolve_file(args.file)
    modules = _load_modules(file_path)
    module_name = args.module.strip()
    if module_name not in modules:
        print(f"Module '{module_name}' not found.")
        return 0

    write_recipe_module_file(file_path, [module for module in modules if module != module_name])
    print(f"Removed recipe module '{module_name}'.")
    return 0


def handle_reset(args: argparse.Namespace) -> int:
    file_path = _resolve_file(args.file)
    write_recipe_module_file(file_path, [])
    print(f"Recipe module file cleared at {file_path}.")
    return 0


def handle_targets(args: argparse.Namespace) -> int:
    load_recipes()
    for recipe in sorted(REGISTRY.list(), key=lambda item: (item.kind, item.target)):
        print(f"{recipe.kind:<14} {recipe.target:<10} {recipe.tool}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage recipe module registration.")
    parser.add_argument(
        "--file",
        dest="file",
        default=str(DEFAULT_RECIPE_FILE),
        help="Path to the recipe module YAML file (default: %(default)s)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List extra recipe modules")
    list_parser.set_defaults(func=handle_list)

    register_parser = subparsers.add_parser("register", help="Register a recipe module")
    register_parser.add_argument("module", help="Python import path of the module")
    register_parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip import verification when registering",
    )
    register_parser.set_defaults(func=handle_register)

    unregister_parser = subparsers.add_parser("unregister", help="Remove a recipe module")
    unregister_parser.add_argument("module", help="Python import path of the module")
    unregister_parser.set_defaults(func=handle_unregister)

    reset_parser = subparsers.add_parser("reset", help="Remove every extra recipe module")
    reset_parser.set_defaults(func=handle_reset)

    targets_parser = subparsers.add_parser("targets", help="Print the builtin (kind, target) table")
    targets_parser.set_defaults(func=handle_targets)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
