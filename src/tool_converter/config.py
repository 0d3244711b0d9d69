"""Centralized settings and configuration loading utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FileLimitSettings(BaseModel):
    default_max_size_mb: int = Field(150, ge=1)
    per_tool_max_size_mb: Dict[str, int] = Field(default_factory=dict)
    max_files_per_request: int = Field(20, ge=1)
    max_json_body_kb: int = Field(64, ge=1)
    max_text_length: int = Field(512, ge=1)


class TimeoutSettings(BaseModel):
    image_sec: int = 60
    pdf_sec: int = 120
    media_sec: int = 300
    remote_sec: int = 300
    background_sec: int = 60


class ToolPathSettings(BaseModel):
    """Absolute executable paths keyed by logical tool name, e.g. {"ffmpeg": "/opt/bin/ffmpeg"}."""

    paths: Dict[str, str] = Field(default_factory=dict)


class BackgroundRemovalSettings(BaseModel):
    backend: str = "local"
    rembg_url: str = "http://127.0.0.1:7000"
    rembg_paths: list[str] = Field(default_factory=lambda: ["/api/remove", "/remove"])
    replicate_api_token: str | None = None
    replicate_model: str = "cjwbw/rembg"
    replicate_base_url: str = "https://api.replicate.com/v1"
    poll_interval_sec: float = 1.2
    max_polls: int = 50
    request_timeout_sec: int = 30


class SigningSettings(BaseModel):
    reason: str = "Digitally signed"
    location: str = "Online"
    field_name: str = "Signature1"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: str = "./logs"
    max_log_file_size_mb: int = 100
    backup_count: int = 7


class MonitoringSettings(BaseModel):
    prometheus_port: int = 9091


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TOOLS_", env_nested_delimiter="__", extra="allow")

    service_name: str = "tool-converter"
    environment: str = "dev"
    api_version: str = "v1"
    base_url: str = "/api"
    work_dir: str = "/tmp/tool_converter"

    file_limits: FileLimitSettings = FileLimitSettings()
    timeouts: TimeoutSettings = TimeoutSettings()
    tools: ToolPathSettings = ToolPathSettings()
    background: BackgroundRemovalSettings = BackgroundRemovalSettings()
    signing: SigningSettings = SigningSettings()
    logging: LoggingSettings = LoggingSettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    recipe_modules: list[str] = Field(default_factory=list)
    recipe_modules_file: str | None = "./config/recipes.yaml"

    @property
    def work_path(self) -> Path:
        return Path(self.work_dir)

    def max_upload_bytes(self, tool: str) -> int:
        limits = self.file_limits
        size_mb = limits.per_tool_max_size_mb.get(tool, limits.default_max_size_mb)
        return size_mb * 1024 * 1024

    @staticmethod
    def load_yaml_config_file(file_path: str | Path | None) -> Dict[str, Any]:
        if not file_path:
            return {}
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        import yaml  # lazy import for optional dependency

        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError("Configuration YAML must produce a mapping")
        return data

    @classmethod
    def from_source(cls, *, config_file: str | None = None, **overrides: Any) -> "Settings":
        base_data = cls.load_yaml_config_file(config_file)
        base_data.update(overrides)
        return cls(**base_data)


@lru_cache
def get_settings() -> Settings:
    cfg_file = os.getenv("TOOLS_CONFIG_FILE")
    if cfg_file:
        return Settings.from_source(config_file=cfg_file)

    default_path = Path.cwd() / "config" / "settings.yaml"
    if default_path.exists():
        return Settings.from_source(config_file=str(default_path))

    return Settings()


def reload_settings() -> None:
    get_settings.cache_clear()


def settings_dependency() -> Settings:
    return get_settings()
