from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from starchain.logging import get_logger

logger = get_logger(__name__)

# Loop budget for nodes revisited through feedback edges
DEFAULT_MAX_LOOP = 3
ENCRYPTION_KEY_FILENAME = "encryption.key"
API_KEY_FILENAME = "api.json"


def _default_home() -> str:
    home = os.getenv("HOME") or os.getenv("USERPROFILE")
    if not home:
        # no home directory; fall back to the current folder
        return str(Path.cwd() / ".starchain")
    return str(Path(home) / ".starchain")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the flow execution kernel."""

    database_path: str = env_field(
        _default_home(),
        "DATABASE_PATH",
        description="Root folder for local state (key files, default flow config)",
    )
    secretkey_path: str | None = env_field(
        None,
        "SECRETKEY_PATH",
        description="Folder holding encryption.key; defaults to DATABASE_PATH",
    )
    secretkey_overwrite: str | None = env_field(
        None,
        "SECRETKEY_OVERWRITE",
        description="Encryption key material that takes precedence over the key file",
    )
    apikey_path: str | None = env_field(
        None,
        "APIKEY_PATH",
        description="Folder holding api.json; defaults to DATABASE_PATH",
    )
    flow_config_path: str | None = env_field(None, "FLOW_CONFIG_PATH")
    plugin_paths: List[str] = env_field(
        [],
        "PLUGIN_PATHS",
        description="Comma separated directories scanned for node and credential modules",
    )
    max_loop: int = env_field(DEFAULT_MAX_LOOP, "MAX_LOOP")
    reuse_requires_same_override: bool = env_field(
        False,
        "REUSE_REQUIRES_SAME_OVERRIDE",
        description="Only reuse a cached chatflow when the override config is unchanged",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("plugin_paths", mode="before")
    @classmethod
    def _split_plugin_paths(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return list(value)

    @field_validator("max_loop")
    @classmethod
    def _validate_max_loop(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_loop must be >= 0")
        return value

    @field_validator("secretkey_overwrite")
    @classmethod
    def _blank_overwrite_is_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    def encryption_key_path(self) -> Path:
        return Path(self.secretkey_path or self.database_path) / ENCRYPTION_KEY_FILENAME

    def api_key_path(self) -> Path:
        return Path(self.apikey_path or self.database_path) / API_KEY_FILENAME


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            database_path=_settings_cache.database_path,
            plugin_paths=_settings_cache.plugin_paths,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
