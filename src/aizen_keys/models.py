"""Domain models for issued keys."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

# Persisted field names, in the order the server writes them.
FIELD_ORDER: Tuple[str, ...] = ("key", "createdAt", "expiresAt", "isActive", "lastUsed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    value = _as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text))


@dataclass(slots=True)
class KeyRecord:
    """Stored metadata for one issued token.

    Values are kept as found in the store so that a record survives load and
    save unchanged: timestamps stay strings, ``is_active`` keeps whatever the
    document held, and a known field the document lacked is only written once
    it gains a value. ``extra`` carries fields this version does not know
    about and ``field_order`` the order they were read in.

    Entries that cannot be read as a key at all (no string ``key``, or not an
    object) load as opaque records: no token matches them and ``raw`` is
    written back untouched.
    """

    token: Optional[str]
    created_at: Optional[str]
    expires_at: Optional[str]
    is_active: Any = True
    last_used: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    field_order: Tuple[str, ...] = FIELD_ORDER
    opaque: bool = False
    raw: Any = None

    @classmethod
    def issue(cls, token: str, issued_at: datetime, duration_days: int) -> "KeyRecord":
        return cls(
            token=token,
            created_at=format_timestamp(issued_at),
            expires_at=format_timestamp(issued_at + timedelta(days=duration_days)),
        )

    @classmethod
    def passthrough(cls, raw: Any) -> "KeyRecord":
        return cls(token=None, created_at=None, expires_at=None, is_active=False, field_order=(), opaque=True, raw=raw)

    @property
    def active(self) -> bool:
        # Any truthy flag counts, a missing one does not.
        return bool(self.is_active)

    @property
    def created_at_dt(self) -> datetime:
        return parse_timestamp(self.created_at)

    @property
    def expires_at_dt(self) -> datetime:
        return parse_timestamp(self.expires_at)

    @property
    def last_used_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.last_used) if self.last_used else None

    def is_expired(self, now: datetime) -> bool:
        # An expiry we cannot read never grants access.
        try:
            expires = self.expires_at_dt
        except (AttributeError, TypeError, ValueError):
            return True
        return expires < _as_utc(now)

    def mark_used(self, now: datetime) -> None:
        """Set ``last_used`` to ``now``, always later than the previous value."""
        now = _as_utc(now)
        stamp = now.replace(microsecond=now.microsecond - now.microsecond % 1000)
        try:
            previous = self.last_used_dt
        except (AttributeError, TypeError, ValueError):
            previous = None
        if previous is not None and stamp <= previous:
            stamp = previous + timedelta(milliseconds=1)
        self.last_used = format_timestamp(stamp)

    def to_dict(self) -> Any:
        if self.opaque:
            return self.raw
        known = {
            "key": self.token,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "isActive": self.is_active,
            "lastUsed": self.last_used,
        }
        payload: Dict[str, Any] = {}
        for name in self.field_order:
            if name in known:
                payload[name] = known.pop(name)
            elif name in self.extra:
                payload[name] = self.extra[name]
        # Known fields the source lacked appear once they are set.
        payload.update({name: value for name, value in known.items() if value is not None})
        for name, value in self.extra.items():
            payload.setdefault(name, value)
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "KeyRecord":
        if not isinstance(data, dict) or not isinstance(data.get("key"), str):
            return cls.passthrough(data)
        return cls(
            token=data["key"],
            created_at=data.get("createdAt"),
            expires_at=data.get("expiresAt"),
            is_active=data.get("isActive"),
            last_used=data.get("lastUsed"),
            extra={k: v for k, v in data.items() if k not in FIELD_ORDER},
            field_order=tuple(data.keys()),
        )


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    token: str
    expires_at: str
    message: str = "Key is valid"


__all__ = [
    "FIELD_ORDER",
    "KeyRecord",
    "ValidationResult",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
]
