from __future__ import annotations

import contextlib
import json
import os
import sys
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Sequence

import structlog

from ..errors import StoreCorrupt, StoreUnavailable
from ..models import KeyRecord

if sys.platform != "win32":
    import fcntl
else:  # pragma: no cover - no advisory locks on Windows
    fcntl = None

logger = structlog.get_logger(__name__)

_DOCUMENT_FIELD = "keys"


def encode_document(records: Sequence[KeyRecord]) -> str:
    return json.dumps(
        {_DOCUMENT_FIELD: [record.to_dict() for record in records]},
        indent=2,
        ensure_ascii=False,
    )


def decode_document(raw: str) -> List[KeyRecord]:
    """Decode the persisted document, raising ``ValueError``/``TypeError`` when it is malformed.

    Individual entries never fail the document; unreadable ones load as opaque
    records and are written back unchanged.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise TypeError("Key store document must be an object")
    entries = data.get(_DOCUMENT_FIELD, [])
    if not isinstance(entries, list):
        raise TypeError(f"Key store field '{_DOCUMENT_FIELD}' must be a list")
    return [KeyRecord.from_dict(entry) for entry in entries]


class KeyStore(ABC):
    """Whole-collection persistence for key records.

    Every call goes to the backing representation; nothing is cached between
    calls. ``locked()`` is the gate callers hold around a read-modify-write.
    It is re-entrant within a thread, and only the outermost hold takes the
    backend's own lock.
    """

    def __init__(self) -> None:
        self._gate = threading.RLock()
        self._depth = 0

    @abstractmethod
    def load(self) -> List[KeyRecord]:
        """Return every record in issuance order."""

    @abstractmethod
    def save(self, records: Sequence[KeyRecord]) -> None:
        """Replace the stored set with ``records``."""

    @abstractmethod
    def initialize_if_absent(self) -> bool:
        """Create an empty store if none exists. Returns ``True`` when created."""

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        with self._gate:
            self._depth += 1
            try:
                if self._depth > 1:
                    yield
                else:
                    with self._exclusive():
                        yield
            finally:
                self._depth -= 1

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        yield


class JsonKeyStore(KeyStore):
    """Key records in a single JSON document: ``{"keys": [...]}``.

    Writes go through a temporary file that is fsync'd and renamed over the
    target. A missing, unreadable or corrupt document loads as an empty set
    unless ``strict`` is set, in which case unreadable and corrupt content
    raise ``StoreUnavailable`` and ``StoreCorrupt``.
    """

    def __init__(self, path: Path | str, *, strict: bool = False) -> None:
        super().__init__()
        self.path = Path(path)
        self.strict = strict
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self) -> List[KeyRecord]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            if self.strict:
                raise StoreUnavailable(f"Cannot read key store {self.path}: {exc}") from exc
            logger.warning("store.load_failed", path=str(self.path), error=str(exc))
            return []

        try:
            return decode_document(raw)
        except (ValueError, TypeError) as exc:
            if self.strict:
                raise StoreCorrupt(f"Key store {self.path} is corrupt: {exc}") from exc
            logger.warning("store.load_failed", path=str(self.path), error=str(exc), corrupt=True)
            return []

    def save(self, records: Sequence[KeyRecord]) -> None:
        payload = encode_document(records)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write key store {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise StoreUnavailable(f"Cannot write key store {self.path}: {exc}") from exc

    def initialize_if_absent(self) -> bool:
        with self.locked():
            if self.path.exists():
                return False
            self.save([])
        logger.info("store.initialized", path=str(self.path))
        return True

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        # Serializes processes sharing the file; threads are held by the gate.
        if fcntl is None:
            yield
            return
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a")
        except OSError as exc:
            raise StoreUnavailable(f"Cannot lock key store {self.path}: {exc}") from exc
        with handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)


__all__ = ["JsonKeyStore", "KeyStore", "decode_document", "encode_document"]
