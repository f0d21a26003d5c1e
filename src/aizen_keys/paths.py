"""Shared filesystem path helpers for the key server."""
from __future__ import annotations

import sys
from pathlib import Path

from platformdirs import PlatformDirs

_APP_NAME = "Aizen Keys"
_LINUX_APP_NAME = "aizen-keys"
_STORE_FILENAME = "keys.json"


def _dirs() -> PlatformDirs:
    if sys.platform in ("win32", "darwin"):
        return PlatformDirs(appname=_APP_NAME, appauthor=None, roaming=True)
    return PlatformDirs(appname=_LINUX_APP_NAME, appauthor=None, roaming=False)


def runtime_config_dir() -> Path:
    """Return the per-user runtime configuration directory."""
    return Path(_dirs().user_config_path)


def runtime_data_dir() -> Path:
    """Return the per-user data directory holding the key store."""
    return Path(_dirs().user_data_path)


def default_store_path() -> Path:
    return runtime_data_dir() / _STORE_FILENAME


__all__ = ["default_store_path", "runtime_config_dir", "runtime_data_dir"]
