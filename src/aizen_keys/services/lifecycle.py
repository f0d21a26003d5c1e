# Issue, validate, list and deactivate keys on top of a KeyStore.
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Sequence

import structlog

from ..config import AppConfig
from ..errors import (
    InvalidArgument,
    InvalidCredential,
    KeyDeactivated,
    KeyExpired,
    KeyNotFound,
    KeyServiceError,
    constant_time_compare,
)
from ..models import KeyRecord, ValidationResult, utcnow
from ..storage.keystore import JsonKeyStore, KeyStore
from .tokens import DEFAULT_PREFIX, generate_token, mask_token

logger = structlog.get_logger(__name__)

DEFAULT_DURATION_DAYS = 30
# Keeps expiry arithmetic inside datetime's range.
MAX_DURATION_DAYS = 36_500


def coerce_duration_days(value: object, default: int = DEFAULT_DURATION_DAYS) -> int:
    """Interpret a caller supplied duration as a whole number of days.

    ``None`` selects ``default``. Integers, integral floats and strings holding
    a base-10 integer are accepted; anything else raises ``InvalidArgument``.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidArgument("durationDays must be an integer")
    if isinstance(value, int):
        days = value
    elif isinstance(value, float) and value.is_integer():
        days = int(value)
    elif isinstance(value, str):
        try:
            days = int(value.strip(), 10)
        except ValueError:
            raise InvalidArgument(f"durationDays must be an integer, got {value!r}") from None
    else:
        raise InvalidArgument(f"durationDays must be an integer, got {value!r}")
    if days < 1:
        raise InvalidArgument("durationDays must be at least 1")
    if days > MAX_DURATION_DAYS:
        raise InvalidArgument(f"durationDays must be at most {MAX_DURATION_DAYS}")
    return days


def _find(records: Sequence[KeyRecord], token: str) -> Optional[KeyRecord]:
    for record in records:
        if record.token == token:
            return record
    return None


class KeyLifecycleManager:
    """Key rules over an injected store.

    Each operation loads the full record set inside the store's gate, applies
    its rule and writes the set back when it changed it. Admin operations
    check the credential before touching the store.
    """

    def __init__(
        self,
        store: KeyStore,
        admin_secret: str,
        *,
        token_prefix: str = DEFAULT_PREFIX,
        default_duration_days: int = DEFAULT_DURATION_DAYS,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[str], str] = generate_token,
    ) -> None:
        if not admin_secret:
            raise ValueError("admin_secret must not be empty")
        self.store = store
        self._admin_secret = admin_secret
        self._token_prefix = token_prefix
        self._default_duration_days = default_duration_days
        self._clock = clock
        self._token_factory = token_factory

    @classmethod
    def from_config(cls, config: AppConfig) -> "KeyLifecycleManager":
        store = JsonKeyStore(config.store.path, strict=config.store.strict)
        return cls(
            store,
            config.keys.admin_secret,
            token_prefix=config.keys.token_prefix,
            default_duration_days=config.keys.default_duration_days,
        )

    def _authorize(self, credential: Optional[str], op: str) -> None:
        if not isinstance(credential, str) or not constant_time_compare(credential, self._admin_secret):
            logger.warning("auth.rejected", op=op)
            raise InvalidCredential()

    def _rejected(self, token: str, error: KeyServiceError) -> KeyServiceError:
        logger.info("key.rejected", key=mask_token(token), reason=error.reason)
        return error

    def generate(self, duration_days: object = None, credential: Optional[str] = None) -> KeyRecord:
        self._authorize(credential, "generate")
        days = coerce_duration_days(duration_days, self._default_duration_days)
        with self.store.locked():
            records = self.store.load()
            record = KeyRecord.issue(self._token_factory(self._token_prefix), self._clock(), days)
            records.append(record)
            self.store.save(records)
        logger.info("key.generated", key=mask_token(record.token), expires_at=record.expires_at, days=days)
        return record

    def validate(self, token: Optional[str]) -> ValidationResult:
        """Check ``token`` and record the use.

        Checks run in a fixed order, first failure wins: unknown, deactivated,
        expired.
        """
        if not isinstance(token, str) or not token:
            raise InvalidArgument("Key is required")
        with self.store.locked():
            records = self.store.load()
            record = _find(records, token)
            if record is None:
                raise self._rejected(token, KeyNotFound())
            if not record.active:
                raise self._rejected(token, KeyDeactivated())
            now = self._clock()
            if record.is_expired(now):
                raise self._rejected(token, KeyExpired())
            record.mark_used(now)
            self.store.save(records)
        logger.info("key.validated", key=mask_token(token))
        return ValidationResult(valid=True, token=token, expires_at=record.expires_at)

    def list_keys(self, credential: Optional[str] = None) -> List[KeyRecord]:
        self._authorize(credential, "list")
        with self.store.locked():
            return self.store.load()

    def deactivate(self, token: Optional[str], credential: Optional[str] = None) -> None:
        self._authorize(credential, "deactivate")
        with self.store.locked():
            records = self.store.load()
            record = _find(records, token) if token else None
            if record is None:
                raise self._rejected(token or "", KeyNotFound())
            record.is_active = False
            self.store.save(records)
        logger.info("key.deactivated", key=mask_token(token))

    def get(self, token: str) -> Optional[KeyRecord]:
        with self.store.locked():
            return _find(self.store.load(), token)


__all__ = [
    "DEFAULT_DURATION_DAYS",
    "KeyLifecycleManager",
    "MAX_DURATION_DAYS",
    "coerce_duration_days",
]
