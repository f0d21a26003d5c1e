from datetime import timedelta

import pytest

from aizen_keys.errors import (
    InvalidArgument,
    InvalidCredential,
    KeyDeactivated,
    KeyExpired,
    KeyNotFound,
)
from aizen_keys.models import KeyRecord
from aizen_keys.services.lifecycle import KeyLifecycleManager, coerce_duration_days
from aizen_keys.storage import MemoryKeyStore


def test_generate_appends_active_record(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    record = manager.generate(7, admin_secret)
    stored = memory_store.load()
    assert [r.token for r in stored] == [record.token]
    assert stored[0].is_active is True
    assert stored[0].last_used is None


def test_generate_defaults_to_thirty_days(manager: KeyLifecycleManager, admin_secret: str) -> None:
    record = manager.generate(credential=admin_secret)
    assert record.expires_at_dt - record.created_at_dt == timedelta(days=30)


def test_expiry_arithmetic_with_real_clock(memory_store: MemoryKeyStore, admin_secret: str) -> None:
    manager = KeyLifecycleManager(memory_store, admin_secret)
    record = manager.generate(30, admin_secret)
    assert abs((record.expires_at_dt - record.created_at_dt) - timedelta(days=30)) < timedelta(seconds=1)


def test_default_duration_is_configurable(memory_store: MemoryKeyStore, admin_secret: str, clock) -> None:
    manager = KeyLifecycleManager(memory_store, admin_secret, clock=clock, default_duration_days=90)
    record = manager.generate(credential=admin_secret)
    assert record.expires_at_dt - clock.now == timedelta(days=90)


def test_generate_uses_configured_prefix(memory_store: MemoryKeyStore, admin_secret: str) -> None:
    manager = KeyLifecycleManager(memory_store, admin_secret, token_prefix="ACME")
    assert manager.generate(1, admin_secret).token.startswith("ACME-")


def test_generated_records_keep_issuance_order(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    tokens = [manager.generate(1, admin_secret).token for _ in range(5)]
    assert [r.token for r in memory_store.load()] == tokens


@pytest.mark.parametrize("value, expected", [(None, 30), (1, 1), ("45", 45), (" 12 ", 12), (10.0, 10)])
def test_coerce_duration_days_accepts_integers(value, expected) -> None:
    assert coerce_duration_days(value) == expected


@pytest.mark.parametrize("value", ["abc", "", "30days", "1.5", 1.5, True, [], {}, 0, -3, 10**9])
def test_coerce_duration_days_rejects(value) -> None:
    with pytest.raises(InvalidArgument):
        coerce_duration_days(value)


def test_generate_with_bad_duration_does_not_write(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    with pytest.raises(InvalidArgument):
        manager.generate("thirty", admin_secret)
    assert memory_store.save_count == 0


def test_validate_success_returns_expiry(manager: KeyLifecycleManager, admin_secret: str) -> None:
    record = manager.generate(1, admin_secret)
    result = manager.validate(record.token)
    assert result.valid is True
    assert result.expires_at == record.expires_at


def test_validate_unknown_token(manager: KeyLifecycleManager) -> None:
    with pytest.raises(KeyNotFound):
        manager.validate("AIZEN-DEAD-BEEF-0000")


@pytest.mark.parametrize("token", [None, ""])
def test_validate_requires_token(manager: KeyLifecycleManager, token) -> None:
    with pytest.raises(InvalidArgument):
        manager.validate(token)


def test_validate_is_exact_match(manager: KeyLifecycleManager, admin_secret: str) -> None:
    token = manager.generate(1, admin_secret).token
    with pytest.raises(KeyNotFound):
        manager.validate(token.lower())
    with pytest.raises(KeyNotFound):
        manager.validate(token + " ")


def test_validate_expired_key(manager: KeyLifecycleManager, admin_secret: str, clock) -> None:
    token = manager.generate(1, admin_secret).token
    clock.advance(days=1)
    assert manager.validate(token).valid is True
    clock.advance(milliseconds=1)
    with pytest.raises(KeyExpired):
        manager.validate(token)


def test_deactivated_and_expired_reports_deactivated(manager: KeyLifecycleManager, admin_secret: str, clock) -> None:
    token = manager.generate(1, admin_secret).token
    manager.deactivate(token, admin_secret)
    clock.advance(days=5)
    with pytest.raises(KeyDeactivated):
        manager.validate(token)


def test_validate_updates_last_used(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str, clock) -> None:
    token = manager.generate(1, admin_secret).token
    clock.advance(minutes=1)
    manager.validate(token)
    first = memory_store.load()[0].last_used_dt
    assert first == clock.now

    clock.advance(minutes=5)
    manager.validate(token)
    second = memory_store.load()[0].last_used_dt
    assert second > first


def test_failed_validation_leaves_last_used(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str, clock) -> None:
    token = manager.generate(1, admin_secret).token
    clock.advance(days=2)
    saves = memory_store.save_count
    with pytest.raises(KeyExpired):
        manager.validate(token)
    assert memory_store.save_count == saves
    assert memory_store.load()[0].last_used is None


def test_list_returns_everything(manager: KeyLifecycleManager, admin_secret: str, clock) -> None:
    active = manager.generate(10, admin_secret).token
    revoked = manager.generate(10, admin_secret).token
    short = manager.generate(1, admin_secret).token
    manager.deactivate(revoked, admin_secret)
    clock.advance(days=2)
    assert [r.token for r in manager.list_keys(admin_secret)] == [active, revoked, short]


def test_deactivate_is_idempotent(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    token = manager.generate(1, admin_secret).token
    manager.deactivate(token, admin_secret)
    manager.deactivate(token, admin_secret)
    assert memory_store.load()[0].is_active is False


@pytest.mark.parametrize("token", ["AIZEN-0000-0000-0000", None, ""])
def test_deactivate_unknown(manager: KeyLifecycleManager, admin_secret: str, token) -> None:
    with pytest.raises(KeyNotFound):
        manager.deactivate(token, admin_secret)


@pytest.mark.parametrize("credential", ["wrong", "", None, "TEST-SECRET"])
def test_credential_gate_blocks_admin_operations(
    manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str, credential
) -> None:
    token = manager.generate(1, admin_secret).token
    saves = memory_store.save_count
    before = [r.to_dict() for r in memory_store.load()]

    with pytest.raises(InvalidCredential):
        manager.generate(1, credential)
    with pytest.raises(InvalidCredential):
        manager.list_keys(credential)
    with pytest.raises(InvalidCredential):
        manager.deactivate(token, credential)

    assert memory_store.save_count == saves
    assert [r.to_dict() for r in memory_store.load()] == before


def test_credential_checked_before_arguments(manager: KeyLifecycleManager) -> None:
    with pytest.raises(InvalidCredential):
        manager.generate("not-a-number", "wrong")


def test_get(manager: KeyLifecycleManager, admin_secret: str) -> None:
    token = manager.generate(1, admin_secret).token
    assert manager.get(token).token == token
    assert manager.get("AIZEN-0000-0000-0000") is None


def test_empty_admin_secret_rejected(memory_store: MemoryKeyStore) -> None:
    with pytest.raises(ValueError):
        KeyLifecycleManager(memory_store, "")


def test_scenario_generate_validate_deactivate(manager: KeyLifecycleManager, admin_secret: str) -> None:
    token = manager.generate(1, admin_secret).token
    assert manager.validate(token).valid is True
    manager.deactivate(token, admin_secret)
    with pytest.raises(KeyDeactivated):
        manager.validate(token)


def test_many_generated_keys_are_unique(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    for _ in range(500):
        manager.generate(1, admin_secret)
    tokens = [r.token for r in memory_store.load()]
    assert len(set(tokens)) == len(tokens) == 500


def test_last_used_strictly_increases_with_real_clock(memory_store: MemoryKeyStore, admin_secret: str) -> None:
    manager = KeyLifecycleManager(memory_store, admin_secret)
    token = manager.generate(1, admin_secret).token
    stamps = []
    for _ in range(50):
        manager.validate(token)
        stamps.append(memory_store.load()[0].last_used_dt)
    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


def test_unreadable_records_are_kept(admin_secret: str, clock) -> None:
    documents = [
        {"key": "AIZEN-AAAA-BBBB-CCCC", "createdAt": "2025-03-01T00:00:00.000Z", "expiresAt": "2099-01-01T00:00:00.000Z", "isActive": True},
        {"key": None, "createdAt": "2025-03-01T00:00:00.000Z"},
    ]
    store = MemoryKeyStore([KeyRecord.from_dict(doc) for doc in documents])
    manager = KeyLifecycleManager(store, admin_secret, clock=clock)

    new = manager.generate(1, admin_secret).token
    manager.validate("AIZEN-AAAA-BBBB-CCCC")
    with pytest.raises(KeyNotFound):
        manager.deactivate("None", admin_secret)

    tokens = [r.token for r in store.load()]
    assert tokens == ["AIZEN-AAAA-BBBB-CCCC", None, new]
    assert store.load()[1].to_dict() == {"key": None, "createdAt": "2025-03-01T00:00:00.000Z"}


def test_get_inside_held_gate(manager: KeyLifecycleManager, memory_store: MemoryKeyStore, admin_secret: str) -> None:
    token = manager.generate(1, admin_secret).token
    with memory_store.locked():
        assert manager.get(token).token == token
