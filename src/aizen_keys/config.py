"""Configuration loading utilities for the key server."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .paths import default_store_path, runtime_config_dir

DEFAULT_ADMIN_SECRET = "admin123"

# environment variable -> (section, field)
_ENV_OVERRIDES = {
    "AIZEN_ADMIN_SECRET": ("keys", "admin_secret"),
    "AIZEN_STORE_PATH": ("store", "path"),
    "AIZEN_HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "AIZEN_PORT": ("server", "port"),
    "AIZEN_LOG_LEVEL": ("logging", "level"),
}


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1", description="Interface the HTTP server binds to")
    port: int = Field(default=3000, ge=1, le=65535)
    port_attempts: int = Field(
        default=10,
        ge=1,
        description="How many consecutive ports to try when the configured one is busy",
    )
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class StoreConfig(BaseModel):
    path: Path = Field(default_factory=default_store_path)
    strict: bool = Field(
        default=False,
        description="Raise on a corrupt store instead of treating it as empty",
    )

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return Path(value).expanduser()


class KeysConfig(BaseModel):
    admin_secret: str = Field(default=DEFAULT_ADMIN_SECRET, min_length=1)
    token_prefix: str = Field(default="AIZEN", description="Brand tag leading every token")
    default_duration_days: int = Field(default=30, ge=1)

    @field_validator("token_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value or "-" in value:
            raise ValueError("token_prefix must be non-empty and must not contain '-'")
        return value


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Logging verbosity level")

    def normalized_level(self) -> str:
        return self.level.upper()


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    keys: KeysConfig = Field(default_factory=KeysConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def uses_default_secret(self) -> bool:
        return self.keys.admin_secret == DEFAULT_ADMIN_SECRET


DEFAULT_CONFIG = AppConfig()


def config_search_paths(explicit: Optional[Path] = None) -> Iterable[Path]:
    if explicit:
        yield explicit
    yield Path.cwd() / ".aizen" / "config.yaml"
    yield runtime_config_dir() / "config.yaml"


def apply_env_overrides(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Return a copy of ``config`` with ``AIZEN_*`` (and ``PORT``) variables applied.

    ``AIZEN_PORT`` wins over ``PORT`` when both are set.
    """

    env = os.environ if environ is None else environ
    data: Dict[str, Dict[str, Any]] = config.model_dump()
    touched = False
    for name, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(name)
        if value:
            data[section][key] = value
            touched = True
    if not touched:
        return config
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in environment: {exc}") from exc


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    for candidate in config_search_paths(path):
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            try:
                config = AppConfig.model_validate(data)
            except ValidationError as exc:
                raise ValueError(f"Invalid configuration in {candidate}: {exc}") from exc
            break
    else:
        config = DEFAULT_CONFIG.model_copy(deep=True)
    return apply_env_overrides(config, environ)


def dump_default_config(target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG.model_dump(mode="json"), handle, sort_keys=False)


__all__ = [
    "AppConfig",
    "DEFAULT_ADMIN_SECRET",
    "DEFAULT_CONFIG",
    "KeysConfig",
    "LoggingConfig",
    "ServerConfig",
    "StoreConfig",
    "apply_env_overrides",
    "config_search_paths",
    "dump_default_config",
    "load_config",
]
