"""Interface of the durable history store.

The relay only ever needs five operations from a persistent store. Every
implementation wraps its driver errors in ``StoreError`` so callers can
fall back to the in-memory history without knowing which backend failed.
"""
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from pydantic import ValidationError

from relay.chat.schemas import AnyRecord, Reactions, record_from_wire

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A durable store operation failed (connection lost, write error, ...)."""


class HistoryStore(ABC):
    """Persistent mirror of the chat history, ordered by insertion time."""

    name: str = "store"

    @abstractmethod
    async def append(self, record: AnyRecord) -> None:
        """Persist one record, stamping it with a server insertion time."""

    @abstractmethod
    async def list_recent(self, limit: int) -> List[AnyRecord]:
        """Return up to *limit* records, most recent first."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored records."""

    @abstractmethod
    async def delete_oldest(self, n: int) -> None:
        """Delete the *n* records with the oldest insertion time."""

    @abstractmethod
    async def update_reactions(self, message_id: str, reactions: Reactions) -> None:
        """Upsert the reactions map of *message_id*."""

    async def close(self) -> None:
        """Release driver resources."""


def records_from_documents(documents: Iterable[dict], source: str) -> List[AnyRecord]:
    """Turn stored documents back into records, skipping incomplete ones.

    Partial documents can exist because reaction updates upsert by id.
    """
    records: List[AnyRecord] = []
    for doc in documents:
        try:
            records.append(record_from_wire(doc))
        except ValidationError:
            logger.warning("[DB] Skipping incomplete %s document id=%s", source, doc.get("id"))
    return records
