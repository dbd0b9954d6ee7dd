from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.utils.record_store import (
    UNIQUE_INDEXES,
    DuplicateRecordError,
    OrderBy,
    RecordStore,
    Where,
)


def _to_mongo_filter(where: Optional[Where]) -> Dict[str, Any]:
    """Rename the public ``id`` key to Mongo's ``_id``, including inside $or/$and."""
    translated: Dict[str, Any] = {}
    for key, cond in (where or {}).items():
        if key in ("$or", "$and"):
            translated[key] = [_to_mongo_filter(clause) for clause in cond]
        elif key == "id":
            translated["_id"] = cond
        else:
            translated[key] = cond
    return translated


def _to_mongo_sort(order_by: Optional[OrderBy]) -> List[tuple]:
    return [("_id" if field == "id" else field, direction) for field, direction in (order_by or [("id", ASCENDING)])]


def _from_mongo(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return doc


class MongoRecordStore(RecordStore):
    """MongoDB-backed record store.

    Integer ids come from a ``counters`` collection so records can be
    addressed the same way regardless of backend.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db

    async def _next_id(self, collection: str) -> int:
        counter = await self.db.counters.find_one_and_update(
            {"_id": collection},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    async def ensure_indexes(self) -> None:
        for collection, indexes in UNIQUE_INDEXES.items():
            for fields, partial in indexes:
                options: Dict[str, Any] = {"unique": True}
                if partial:
                    options["partialFilterExpression"] = partial
                await self.db[collection].create_index([(f, ASCENDING) for f in fields], **options)
        await self.db.messages.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.db.otp_codes.create_index(
            [("contact_no", ASCENDING), ("purpose", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.db.conversations.create_index([("consumer_id", ASCENDING), ("last_message_at", DESCENDING)])
        await self.db.providers.create_index([("is_active", ASCENDING), ("status", ASCENDING)])

    async def find_unique(self, collection: str, record_id: int) -> Optional[Dict[str, Any]]:
        return _from_mongo(await self.db[collection].find_one({"_id": record_id}))

    async def find_first(
        self, collection: str, where: Optional[Where] = None, order_by: Optional[OrderBy] = None
    ) -> Optional[Dict[str, Any]]:
        docs = await self.find_many(collection, where, order_by, limit=1)
        return docs[0] if docs else None

    async def find_many(
        self,
        collection: str,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(_to_mongo_filter(where)).sort(_to_mongo_sort(order_by))
        if skip:
            cursor = cursor.skip(skip)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [_from_mongo(doc) async for doc in cursor]

    async def create(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(data)
        doc.pop("id", None)
        doc["_id"] = await self._next_id(collection)
        try:
            await self.db[collection].insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRecordError(str(e)) from e
        return _from_mongo(doc)

    async def update(
        self,
        collection: str,
        record_id: int,
        data: Optional[Dict[str, Any]] = None,
        *,
        where: Optional[Where] = None,
        inc: Optional[Dict[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        query = _to_mongo_filter(where)
        query["_id"] = record_id
        changes: Dict[str, Any] = {}
        if data:
            changes["$set"] = {k: v for k, v in data.items() if k != "id"}
        if inc:
            changes["$inc"] = dict(inc)
        if not changes:
            return _from_mongo(await self.db[collection].find_one(query))
        try:
            doc = await self.db[collection].find_one_and_update(
                query, changes, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise DuplicateRecordError(str(e)) from e
        return _from_mongo(doc)

    async def update_many(self, collection: str, where: Where, data: Dict[str, Any]) -> int:
        result = await self.db[collection].update_many(_to_mongo_filter(where), {"$set": data})
        return result.modified_count

    async def delete_many(self, collection: str, where: Where) -> int:
        result = await self.db[collection].delete_many(_to_mongo_filter(where))
        return result.deleted_count

    async def count(self, collection: str, where: Optional[Where] = None) -> int:
        return await self.db[collection].count_documents(_to_mongo_filter(where))

    async def group_by(self, collection: str, field: str, where: Optional[Where] = None) -> List[Dict[str, Any]]:
        pipeline = [
            {"$match": _to_mongo_filter(where)},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]
        rows = await self.db[collection].aggregate(pipeline).to_list(length=None)
        return [{field: row["_id"], "count": row["count"]} for row in rows]

    async def distinct(self, collection: str, field: str, where: Optional[Where] = None) -> List[Any]:
        values = await self.db[collection].distinct(field, _to_mongo_filter(where))
        return sorted(v for v in values if v is not None)
