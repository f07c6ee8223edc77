"""Runtime configuration with environment, .env and TOML support."""

import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeConfig(BaseSettings):
    """Plugin runtime configuration with environment variable support."""

    # Host
    app_id: str = Field(default="plughost", alias="PLUGHOST_APP_ID")
    dev_mode: bool = Field(default=False, alias="PLUGHOST_DEV_MODE")

    # Plugins
    plugin_dir: str = Field(default="./plugins", alias="PLUGHOST_PLUGIN_DIR")
    manifest_path: str = Field(default="", alias="PLUGHOST_MANIFEST_PATH")
    registration_timeout_ms: int = Field(
        default=8000,
        ge=0,
        alias="PLUGHOST_REGISTRATION_TIMEOUT_MS"
    )

    # Settings persistence
    settings_key: str = Field(default="plugin-settings", alias="PLUGHOST_SETTINGS_KEY")
    settings_db_path: str = Field(default="", alias="PLUGHOST_SETTINGS_DB_PATH")
    settings_flush_delay: float = Field(
        default=0.05,
        ge=0,
        alias="PLUGHOST_SETTINGS_FLUSH_DELAY"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="PLUGHOST_LOG_LEVEL")
    log_file: str = Field(default="", alias="PLUGHOST_LOG_FILE")
    log_rich: bool = Field(default=False, alias="PLUGHOST_LOG_RICH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    @classmethod
    def from_toml(cls, toml_path: Path, **overrides: Any) -> "RuntimeConfig":
        """Load configuration from a TOML file.

        Nested tables are flattened, so ``[settings] flush_delay = 0.1`` and a
        top-level ``settings_flush_delay = 0.1`` are equivalent. Values from
        the file take precedence over environment variables; ``overrides``
        win over both.
        """
        values: Dict[str, Any] = {}
        if toml_path.exists():
            with open(toml_path, "rb") as f:
                _flatten_toml(tomllib.load(f), values)
        values.update(overrides)
        return cls(**values)

    def get_plugin_path(self) -> Path:
        """Get the plugin directory path."""
        return Path(self.plugin_dir).resolve()

    def get_manifest_path(self) -> Optional[Path]:
        """Get the manifest file path, if one is configured."""
        if not self.manifest_path:
            return None
        return Path(self.manifest_path).resolve()


def _flatten_toml(data: Dict[str, Any], result: Dict[str, Any], prefix: str = "") -> None:
    """Flatten nested TOML tables into snake_case field names."""
    for key, value in data.items():
        full_key = f"{prefix}_{key}" if prefix else key
        full_key = full_key.lower().replace("-", "_")
        if isinstance(value, dict):
            _flatten_toml(value, result, full_key)
        else:
            result[full_key] = value


_config_path: Optional[Path] = None


@lru_cache()
def get_config() -> RuntimeConfig:
    """Get the global configuration instance."""
    if _config_path is not None:
        return RuntimeConfig.from_toml(_config_path)
    return RuntimeConfig()


def reload_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    """Reload the global configuration, optionally from a new TOML file."""
    global _config_path
    if config_path is not None:
        _config_path = config_path
    get_config.cache_clear()
    return get_config()
