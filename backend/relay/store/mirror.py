"""Best-effort mirror of the bounded history into a durable store.

Writes are detached asyncio tasks: the relay never awaits them, never
retries them, and a failure is only logged. Reads raise ``StoreError`` so the
caller can fall back to the in-memory snapshot.

Retention: after each successful append the store is trimmed back to
``capacity`` records in the same task. The trim is not transactional with the
append, so concurrent appends may briefly leave the store above capacity.
"""
import asyncio
import logging
from typing import Awaitable, List, Set

from relay.chat.schemas import AnyRecord, Reactions

from .base import HistoryStore, StoreError

logger = logging.getLogger(__name__)


class DurableMirror:
    """Fire-and-forget writer and fallible reader around a HistoryStore."""

    def __init__(self, store: HistoryStore, capacity: int) -> None:
        self.store = store
        self.capacity = capacity
        # Strong references so pending writes are not garbage collected
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_recent(self) -> List[AnyRecord]:
        """Return up to ``capacity`` stored records, oldest first.

        Raises:
            StoreError: If the store cannot be read.
        """
        records = await self.store.list_recent(self.capacity)
        records.reverse()
        return records

    # ------------------------------------------------------------------
    # Writes (detached)
    # ------------------------------------------------------------------

    def append(self, record: AnyRecord) -> asyncio.Task:
        """Schedule persistence of *record* followed by retention trimming."""
        return self._spawn(self._append_and_trim(record), f"append {record.id}")

    def update_reactions(self, message_id: str, reactions: Reactions) -> asyncio.Task:
        """Schedule an upsert of the reactions map of *message_id*."""
        return self._spawn(
            self.store.update_reactions(message_id, dict(reactions)),
            f"reactions {message_id}",
        )

    async def _append_and_trim(self, record: AnyRecord) -> None:
        await self.store.append(record)
        count = await self.store.count()
        if count > self.capacity:
            excess = count - self.capacity
            await self.store.delete_oldest(excess)
            logger.info(f"[DB] Deleted {excess} old messages from {self.store.name}")

    def _spawn(self, coro: Awaitable[None], label: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(f"store:{label}")
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, StoreError):
            logger.error(f"[DB] {task.get_name()} failed: {exc}")
        elif exc is not None:
            logger.error(f"[DB] {task.get_name()} crashed: {exc!r}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for writes already scheduled (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.store.close()
