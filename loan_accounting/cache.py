"""
Schedule Cache

Explicit, injected cache of read-path results keyed by loan id. Entries
expire after ``ttl_seconds`` and are invalidated whenever the loan mutates.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import threading
import time


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ScheduleCache:
    """TTL cache keyed by loan id"""
    
    def __init__(self, ttl_seconds: float = 60, timer: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self._entries: Dict[str, CacheEntry] = {}
        # Bumped on every invalidation; a result computed across a bump is not stored
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
    
    def get(self, loan_id: str) -> Optional[Any]:
        """Cached value, or None if absent or expired"""
        with self._lock:
            entry = self._entries.get(loan_id)
            if entry is None:
                return None
            if entry.expires_at <= self._timer():
                del self._entries[loan_id]
                return None
            return entry.value
    
    def set(self, loan_id: str, value: Any) -> None:
        with self._lock:
            self._entries[loan_id] = CacheEntry(value=value, expires_at=self._timer() + self.ttl_seconds)
    
    def get_or_compute(self, loan_id: str, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value or compute, store and return a fresh one
        
        The fresh value is only stored if the loan was not invalidated while
        it was being computed.
        """
        value = self.get(loan_id)
        if value is not None:
            return value
        with self._lock:
            generation = (self._epoch, self._generations.get(loan_id, 0))
        value = compute()
        with self._lock:
            if (self._epoch, self._generations.get(loan_id, 0)) == generation:
                self._entries[loan_id] = CacheEntry(value=value, expires_at=self._timer() + self.ttl_seconds)
        return value
    
    def invalidate(self, loan_id: str) -> None:
        with self._lock:
            self._entries.pop(loan_id, None)
            self._generations[loan_id] = self._generations.get(loan_id, 0) + 1
    
    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._epoch += 1
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
