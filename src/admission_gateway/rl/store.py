"""Window store holding one fixed-window counter per identity key."""

import threading
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class WindowRecord:
    """
    Accounting state of one identity key.

    `reset_at` is an absolute epoch timestamp in milliseconds. A record is only
    meaningful while `now < reset_at`; callers must compare against their own
    `now` before trusting `count`.
    """
    count: int = 1
    reset_at: int = 0

    def is_expired(self, now: int) -> bool:
        return self.reset_at <= now


class WindowStore:
    """
    Thread-safe in-memory mapping of identity key -> WindowRecord.

    The store knows nothing about expiry except inside `sweep`. The `lock`
    is exposed so the limiter can hold it across a whole read-modify-write;
    it is re-entrant, so the store's own methods can be called while it is
    held.

    State is process-local. Running several workers or instances gives each
    one an independent quota.
    """

    def __init__(self):
        self._records: Dict[str, WindowRecord] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def get(self, key: str) -> Optional[WindowRecord]:
        with self._lock:
            return self._records.get(key)

    def put(self, key: str, record: WindowRecord) -> None:
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def sweep(self, now: int) -> int:
        """
        Remove every record whose window closed before `now`.

        Returns:
            Number of records removed
        """
        with self._lock:
            expired = [key for key, record in self._records.items() if record.reset_at < now]
            for key in expired:
                del self._records[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records
