"""Application factory wiring."""

from __future__ import annotations

import importlib

import pytest
from fastapi.testclient import TestClient

from tool_converter.config import reload_settings


@pytest.fixture()
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TOOLS_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("TOOLS_LOGGING__LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("TOOLS_DISABLE_METRICS", "1")
    monkeypatch.delenv("TOOLS_CONFIG_FILE", raising=False)
    reload_settings()
    yield tmp_path
    reload_settings()


def test_app_module_imports_and_serves(isolated_env):
    module = importlib.import_module("tool_converter.app")
    app = module.create_app()

    paths = {route.path for route in app.routes}
    assert {"/api/pdf/split", "/api/pdf/sign", "/api/pdf/pkcs7-sign", "/api/yt", "/healthz"} <= paths
    assert (isolated_env / "work").is_dir()
    assert (isolated_env / "logs" / "tool-converter.log").exists()

    response = TestClient(app).get("/healthz")
    assert response.json() == {"status": "ok"}
