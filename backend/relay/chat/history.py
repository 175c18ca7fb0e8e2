"""Bounded, in-memory message history shared by every connection.

The buffer is append-then-trim only: records are never reordered and the
oldest record is evicted first once capacity is exceeded.

Thread Safety:
    Designed for a single asyncio event loop. None of the methods await, so
    each call runs to completion before any other coroutine can observe it.
"""
import logging
from typing import Dict, Iterable, List, Optional

from .schemas import AnyRecord, Reactions

logger = logging.getLogger(__name__)


class BoundedHistory:
    """Fixed-capacity FIFO of chat records, oldest first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: List[AnyRecord] = []
        # message id -> record, kept in step with _records
        self._by_id: Dict[str, AnyRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: AnyRecord) -> AnyRecord:
        """Insert *record* at the tail, evicting from the head past capacity."""
        self._records.append(record)
        self._by_id[record.id] = record
        while len(self._records) > self.capacity:
            evicted = self._records.pop(0)
            if self._by_id.get(evicted.id) is evicted:
                del self._by_id[evicted.id]
            logger.debug(f"[History] Evicted oldest message {evicted.id}")
        return record

    def snapshot(self) -> List[AnyRecord]:
        """Return a copy of the current contents, oldest first.

        Records are deep-copied so later reaction updates are not visible
        through the returned list.
        """
        return [record.model_copy(deep=True) for record in self._records]

    def find_by_id(self, message_id: str) -> Optional[AnyRecord]:
        """Return the live record with *message_id*, or None."""
        return self._by_id.get(message_id)

    def replace_reactions(self, message_id: str, reactions: Reactions) -> Optional[AnyRecord]:
        """Swap in a new reactions map for *message_id*.

        Returns:
            The updated record, or None if the message is no longer held.
        """
        current = self._by_id.get(message_id)
        if current is None:
            return None
        updated = current.model_copy(update={"reacciones": reactions})
        for index, record in enumerate(self._records):
            if record is current:
                self._records[index] = updated
                break
        self._by_id[message_id] = updated
        return updated

    def hydrate(self, records: Iterable[AnyRecord]) -> int:
        """Seed an empty buffer with *records* (oldest first).

        Only the newest ``capacity`` records are kept. A buffer that already
        holds messages is left untouched.

        Returns:
            Number of records loaded.
        """
        if self._records:
            return 0
        loaded = 0
        for record in records:
            self.append(record)
            loaded += 1
        if loaded:
            logger.info(f"[History] Hydrated {len(self._records)} messages from durable store")
        return min(loaded, self.capacity)

    def clear(self) -> None:
        self._records.clear()
        self._by_id.clear()
