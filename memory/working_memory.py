import asyncio
import json
import time
from collections import deque
from typing import Any, Deque, List

from core.types import MemoryEntry

DEFAULT_MAX_ENTRIES = 1000


class WorkingMemory:
    """Bounded recency log of engine events (strict FIFO eviction)."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: Deque[MemoryEntry] = deque()
        self._lock = asyncio.Lock()

    async def add(self, event: str, data: Any = None, importance: float = 0.5) -> MemoryEntry:
        entry = MemoryEntry(timestamp=time.time(), event=event, data=data, importance=importance)
        async with self._lock:
            self._entries.append(entry)
            while len(self._entries) > self.max_entries:
                self._entries.popleft()
        return entry

    async def get_recent(self, n: int) -> List[MemoryEntry]:
        """Return the *n* most recently added entries, most recent first."""
        if n <= 0:
            return []
        async with self._lock:
            return list(reversed(self._entries))[:n]

    async def search(self, query: str) -> List[MemoryEntry]:
        """Entries whose event name or JSON-serialised data contains *query* (case-sensitive)."""
        async with self._lock:
            entries = list(self._entries)
        return [
            e for e in entries
            if query in e.event or query in json.dumps(e.data, default=str)
        ]

    async def count(self) -> int:
        async with self._lock:
            return len(self._entries)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
