"""In-process key store for tests and throwaway servers."""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Sequence

from ..models import KeyRecord
from .keystore import KeyStore


class MemoryKeyStore(KeyStore):
    def __init__(self, records: Optional[Sequence[KeyRecord]] = None) -> None:
        super().__init__()
        self._documents: Optional[List[Dict[str, Any]]] = None
        self.save_count = 0
        if records is not None:
            self._documents = [record.to_dict() for record in records]

    def load(self) -> List[KeyRecord]:
        # Hand out copies so callers only see their changes after save().
        return [KeyRecord.from_dict(copy.deepcopy(doc)) for doc in self._documents or []]

    def save(self, records: Sequence[KeyRecord]) -> None:
        self._documents = [record.to_dict() for record in records]
        self.save_count += 1

    def initialize_if_absent(self) -> bool:
        if self._documents is not None:
            return False
        self._documents = []
        return True

    @property
    def initialized(self) -> bool:
        return self._documents is not None


__all__ = ["MemoryKeyStore"]
