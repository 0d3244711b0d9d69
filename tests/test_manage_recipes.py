"""Tests for the recipe module management script."""

from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

from tool_converter.recipes.registry import read_recipe_module_file

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "manage_recipes.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("manage_recipes", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_register_and_unregister(cli, tmp_path, capsys):
    file_path = tmp_path / "recipes.yaml"

    assert cli.main(["--file", str(file_path), "register", "tool_converter.recipes.builtin.audio"]) == 0
    assert cli.main(["--file", str(file_path), "register", "tool_converter.recipes.builtin.audio"]) == 0
    assert read_recipe_module_file(file_path) == ["tool_converter.recipes.builtin.audio"]

    assert cli.main(["--file", str(file_path), "unregister", "tool_converter.recipes.builtin.audio"]) == 0
    assert read_recipe_module_file(file_path) == []
    assert "already registered" in capsys.readouterr().out


def test_register_verifies_import(cli, tmp_path):
    with pytest.raises(SystemExit):
        cli.main(["--file", str(tmp_path / "recipes.yaml"), "register", "no.such.module"])

    cli.main(["--file", str(tmp_path / "recipes.yaml"), "register", "no.such.module", "--no-verify"])
    assert read_recipe_module_file(tmp_path / "recipes.yaml") == ["no.such.module"]


def test_targets_prints_registered_recipes(cli, capsys):
    cli.main(["targets"])

    lines = capsys.readouterr().out.splitlines()
    assert any(line.split() == ["audio", "mp3", "ffmpeg"] for line in lines)
    assert any(line.split() == ["pdf-split", "qpdf", "qpdf"] for line in lines)
