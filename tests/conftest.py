from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from aizen_keys.config import AppConfig, KeysConfig, StoreConfig
from aizen_keys.services.lifecycle import KeyLifecycleManager
from aizen_keys.storage import JsonKeyStore, MemoryKeyStore

ADMIN_SECRET = "test-secret"

_ENV_VARS = ("AIZEN_ADMIN_SECRET", "AIZEN_STORE_PATH", "AIZEN_HOST", "PORT", "AIZEN_PORT", "AIZEN_LOG_LEVEL")


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "keys.json"


@pytest.fixture
def json_store(store_path: Path) -> JsonKeyStore:
    return JsonKeyStore(store_path)


@pytest.fixture
def memory_store() -> MemoryKeyStore:
    store = MemoryKeyStore()
    store.initialize_if_absent()
    return store


@pytest.fixture
def manager(memory_store: MemoryKeyStore, clock: FixedClock) -> KeyLifecycleManager:
    return KeyLifecycleManager(memory_store, ADMIN_SECRET, clock=clock)


@pytest.fixture
def app_config(store_path: Path) -> AppConfig:
    return AppConfig(
        store=StoreConfig(path=store_path),
        keys=KeysConfig(admin_secret=ADMIN_SECRET),
    )


@pytest.fixture
def admin_secret() -> str:
    return ADMIN_SECRET
