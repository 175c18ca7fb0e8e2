"""MongoDB-backed history store (motor async driver).

Each record is stored as one document in a single collection, plus a
server-assigned ``createdAt`` used for ordering and retention:

    { id, tipo, autor, fecha, reacciones, cipherText/iv | urlFull/urlThumb/...,
      createdAt }

The motor client connects lazily, so constructing the store performs no I/O.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from relay.chat.schemas import AnyRecord, Reactions, record_to_wire

from .base import HistoryStore, StoreError, records_from_documents

logger = logging.getLogger(__name__)

# Fields never sent back to clients
_HIDDEN_FIELDS = {"_id": 0, "createdAt": 0}


class MongoHistoryStore(HistoryStore):
    """Chat history kept in a MongoDB collection."""

    name = "mongodb"

    def __init__(
        self,
        uri: str,
        database: str = "chat",
        collection: str = "mensajes",
        client: Optional[AsyncIOMotorClient] = None,
    ) -> None:
        self._client = client or AsyncIOMotorClient(uri)
        self._collection = self._client[database][collection]
        logger.info(f"[DB] Using MongoDB collection {database}.{collection}")

    async def append(self, record: AnyRecord) -> None:
        document = record_to_wire(record)
        document["createdAt"] = datetime.now(timezone.utc)
        try:
            await self._collection.insert_one(document)
        except PyMongoError as exc:
            raise StoreError(f"insert failed: {exc}") from exc

    async def list_recent(self, limit: int) -> List[AnyRecord]:
        try:
            cursor = (
                self._collection.find({}, _HIDDEN_FIELDS)
                .sort("createdAt", DESCENDING)
                .limit(limit)
            )
            documents = await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise StoreError(f"history read failed: {exc}") from exc
        return records_from_documents(documents, self.name)

    async def count(self) -> int:
        try:
            return await self._collection.count_documents({})
        except PyMongoError as exc:
            raise StoreError(f"count failed: {exc}") from exc

    async def delete_oldest(self, n: int) -> None:
        if n <= 0:
            return
        try:
            cursor = (
                self._collection.find({}, {"_id": 1})
                .sort("createdAt", ASCENDING)
                .limit(n)
            )
            oldest = [doc["_id"] async for doc in cursor]
            if oldest:
                await self._collection.delete_many({"_id": {"$in": oldest}})
        except PyMongoError as exc:
            raise StoreError(f"retention delete failed: {exc}") from exc

    async def update_reactions(self, message_id: str, reactions: Reactions) -> None:
        try:
            await self._collection.update_one(
                {"id": message_id},
                {"$set": {"reacciones": reactions}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise StoreError(f"reaction update failed: {exc}") from exc

    async def close(self) -> None:
        self._client.close()
