import logging

from fastapi import APIRouter, Depends, status

from app.api.deps import get_account_service
from app.db import get_store
from app.models.consumer import Consumer, ConsumerCreate, ConsumerSignin
from app.utils.account_service import AccountService
from app.utils.errors import Conflict, NotFound
from app.utils.record_store import RecordStore
from app.utils.security import hash_secret, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_consumer(doc: dict) -> Consumer:
    return Consumer.model_validate(doc)


@router.post("/consumer-create", status_code=status.HTTP_201_CREATED)
async def create_consumer(data: ConsumerCreate, store: RecordStore = Depends(get_store)):
    if await store.find_first("consumers", {"contact_no": data.contact_no}):
        raise Conflict("Consumer with this contact number already exists")

    now = utcnow()
    doc = data.model_dump(exclude={"pin"})
    doc.update({"pin_hash": hash_secret(data.pin), "created_at": now, "updated_at": now})
    created = await store.create("consumers", doc)
    logger.info(f"Created consumer {created['id']}")
    return {"success": True, "data": _serialize_consumer(created), "message": "Consumer created successfully"}


@router.post("/consumer-signin")
async def signin_consumer(data: ConsumerSignin, accounts: AccountService = Depends(get_account_service)):
    consumer = await accounts.authenticate_consumer(data.contact_no, data.pin)
    return {"success": True, "data": _serialize_consumer(consumer), "message": "Signed in successfully"}


@router.get("/consumer-get/{consumer_id}")
async def get_consumer(consumer_id: int, store: RecordStore = Depends(get_store)):
    consumer = await store.find_unique("consumers", consumer_id)
    if consumer is None:
        raise NotFound("Consumer not found")
    return {"success": True, "data": _serialize_consumer(consumer), "message": "Consumer retrieved successfully"}
