"""
Memory Store
In-process history of solved problems and the user's verdict on each.
"""

import logging
from typing import Iterator, List, Optional

from agents.state import MemoryEntry

logger = logging.getLogger(__name__)


class MemoryStore:
    """
    Ordered list of memory entries, newest first.

    Entries are immutable and never deduplicated: solving the same problem
    twice gives two entries. ``max_entries`` bounds the list; when it is
    exceeded the oldest entries are dropped. ``0`` or ``None`` means no bound.
    """

    def __init__(self, max_entries: Optional[int] = 200):
        if max_entries is not None and max_entries < 0:
            raise ValueError("max_entries must be >= 0")
        self.max_entries = max_entries or None
        self._entries: List[MemoryEntry] = []

    def append(self, entry: MemoryEntry) -> MemoryEntry:
        """
        Store an entry at the front of the history.

        Args:
            entry: Entry to store

        Returns:
            The stored entry
        """
        self._entries.insert(0, entry)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            dropped = len(self._entries) - self.max_entries
            del self._entries[self.max_entries:]
            logger.debug("Memory bound reached, dropped %d oldest entries", dropped)
        logger.info("Stored memory entry %s (correct=%s)", entry.id, entry.was_correct)
        return entry

    def select(self, entry_id: str) -> Optional[MemoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def clear(self) -> None:
        count = len(self._entries)
        self._entries = []
        logger.info("Cleared %d memory entries", count)

    @property
    def entries(self) -> List[MemoryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MemoryEntry]:
        return iter(list(self._entries))
