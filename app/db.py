import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from app.utils.mongo_service import MongoRecordStore
from app.utils.record_store import MemoryRecordStore, RecordStore
from config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_store: Optional[RecordStore] = None


async def connect_to_store() -> RecordStore:
    """Create the process-wide record store selected by STORE_BACKEND."""
    global _client, _store
    if settings.STORE_BACKEND == "memory":
        _store = MemoryRecordStore()
        logger.info("Using in-memory record store")
        return _store

    _client = AsyncIOMotorClient(settings.MONGODB_URI, tz_aware=True)
    _store = MongoRecordStore(_client[settings.MONGODB_DB_NAME])
    if settings.ENABLE_INDEX_CREATION:
        await _store.ensure_indexes()
    logger.info(f"Connected to MongoDB database {settings.MONGODB_DB_NAME}")
    return _store


async def close_store_connection() -> None:
    """Close Motor client on application shutdown."""
    global _client, _store
    if _client is not None:
        _client.close()
        _client = None
    _store = None


def get_store() -> RecordStore:
    """Return the initialized record store."""
    if _store is None:
        raise RuntimeError("Record store not initialized. Ensure startup connected to the database.")
    return _store
