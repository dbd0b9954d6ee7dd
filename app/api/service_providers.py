import asyncio
import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from app.api.deps import get_account_service, get_storage, get_subscription_service
from app.db import get_store
from app.models.provider import (
    Provider,
    ProviderCreate,
    ProviderFilter,
    ProviderSignin,
    ProviderUpdate,
    RenewSubscriptionRequest,
)
from app.utils.account_service import AccountService
from app.utils.errors import Conflict, NotFound, ValidationError
from app.utils.record_store import DESCENDING, DuplicateRecordError, RecordStore, Where
from app.utils.security import hash_secret, utcnow
from app.utils.storage_service import StorageService
from app.utils.subscription_service import SubscriptionService
from config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIVE = {"is_active": True}


def _serialize_provider(doc: dict) -> Provider:
    return Provider.model_validate(doc)


def _contains(value: str) -> Dict[str, str]:
    return {"$regex": re.escape(value.strip()), "$options": "i"}


async def _require_provider(store: RecordStore, provider_id: int) -> Dict[str, Any]:
    provider = await store.find_first("providers", {"id": provider_id, **ACTIVE})
    if provider is None:
        raise NotFound("Service provider not found")
    return provider


async def _ensure_contact_free(store: RecordStore, contact_no: str, exclude_id: Optional[int] = None) -> None:
    where: Where = {"contact_no": contact_no, **ACTIVE}
    if exclude_id is not None:
        where["id"] = {"$ne": exclude_id}
    if await store.find_first("providers", where):
        raise Conflict("Service provider with this contact number already exists")


@router.post("/sp-create", status_code=status.HTTP_201_CREATED)
async def create_provider(
    data: ProviderCreate,
    store: RecordStore = Depends(get_store),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    await _ensure_contact_free(store, data.contact_no)

    now = utcnow()
    doc = data.model_dump(exclude={"pin"})
    doc.update(
        {
            "pin_hash": hash_secret(data.pin) if data.pin else None,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
            **subscriptions.trial_fields(),
        }
    )
    try:
        created = await store.create("providers", doc)
    except DuplicateRecordError:
        raise Conflict("Service provider with this contact number already exists")

    logger.info(f"Created service provider {created['id']} ({created['city']})")
    return {
        "success": True,
        "data": _serialize_provider(created),
        "message": "Service provider created successfully",
    }


@router.get("/sp-list")
async def list_providers(store: RecordStore = Depends(get_store)):
    docs = await store.find_many("providers", ACTIVE, order_by=[("created_at", DESCENDING), ("id", DESCENDING)])
    return {
        "success": True,
        "data": [_serialize_provider(doc) for doc in docs],
        "count": len(docs),
        "message": "Service providers retrieved successfully",
    }


@router.get("/sp-get/{provider_id}")
async def get_provider(provider_id: int, store: RecordStore = Depends(get_store)):
    provider = await _require_provider(store, provider_id)
    return {
        "success": True,
        "data": _serialize_provider(provider),
        "message": "Service provider retrieved successfully",
    }


@router.put("/sp-update/{provider_id}")
async def update_provider(
    provider_id: int,
    data: ProviderUpdate,
    store: RecordStore = Depends(get_store),
):
    await _require_provider(store, provider_id)
    await _ensure_contact_free(store, data.contact_no, exclude_id=provider_id)

    changes = data.model_dump(exclude={"pin"})
    if data.pin:
        changes["pin_hash"] = hash_secret(data.pin)
    changes["updated_at"] = utcnow()
    try:
        updated = await store.update("providers", provider_id, changes, where=ACTIVE)
    except DuplicateRecordError:
        raise Conflict("Service provider with this contact number already exists")
    if updated is None:
        raise NotFound("Service provider not found")

    logger.info(f"Updated service provider {provider_id}")
    return {
        "success": True,
        "data": _serialize_provider(updated),
        "message": "Service provider updated successfully",
    }


@router.delete("/sp-delete/{provider_id}")
async def delete_provider(provider_id: int, store: RecordStore = Depends(get_store)):
    await _require_provider(store, provider_id)
    await store.update("providers", provider_id, {"is_active": False, "updated_at": utcnow()})
    logger.info(f"Deactivated service provider {provider_id}")
    return {"success": True, "message": "Service provider deleted successfully"}


@router.post("/sp-filter")
async def filter_providers(criteria: ProviderFilter, store: RecordStore = Depends(get_store)):
    where: Where = dict(ACTIVE)
    if criteria.city:
        where["city"] = _contains(criteria.city)
    if criteria.skillset:
        where["skillset"] = _contains(criteria.skillset)
    if criteria.name:
        where["name"] = _contains(criteria.name)
    if criteria.experience:
        where["experience"] = criteria.experience
    if criteria.search:
        term = _contains(criteria.search)
        where["$or"] = [
            {"name": term},
            {"city": term},
            {"skillset": term},
            {"description": term},
        ]

    docs = await store.find_many("providers", where, order_by=[("created_at", DESCENDING), ("id", DESCENDING)])
    return {
        "success": True,
        "data": [_serialize_provider(doc) for doc in docs],
        "count": len(docs),
        "filters": criteria.model_dump(exclude_none=True),
        "message": "Service providers filtered successfully",
    }


@router.get("/sp-stats")
async def provider_stats(store: RecordStore = Depends(get_store)):
    total = await store.count("providers", ACTIVE)
    by_city = await store.group_by("providers", "city", ACTIVE)
    by_skillset = await store.group_by("providers", "skillset", ACTIVE)
    return {
        "success": True,
        "data": {
            "total_providers": total,
            "by_city": by_city,
            "by_skillset": by_skillset,
        },
        "message": "Statistics retrieved successfully",
    }


@router.get("/cities")
async def list_cities(store: RecordStore = Depends(get_store)):
    cities = await store.distinct("providers", "city", ACTIVE)
    return {"success": True, "data": cities, "count": len(cities), "message": "Cities retrieved successfully"}


@router.post("/sp-signin")
async def signin_provider(
    data: ProviderSignin,
    accounts: AccountService = Depends(get_account_service),
):
    provider = await accounts.authenticate_provider(data.contact_no, data.pin)
    return {"success": True, "data": _serialize_provider(provider), "message": "Signed in successfully"}


# Subscriptions


@router.get("/sp-subscription-status/{provider_id}")
async def subscription_status(
    provider_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return {
        "success": True,
        "data": await subscriptions.get_status(provider_id),
        "message": "Subscription status retrieved successfully",
    }


@router.post("/sp-renew-subscription/{provider_id}")
async def renew_subscription(
    provider_id: int,
    data: RenewSubscriptionRequest,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    provider = await subscriptions.renew(
        provider_id,
        months=data.months,
        proof_reference=str(data.screenshot),
        amount=data.amount,
    )
    return {
        "success": True,
        "data": _serialize_provider(provider),
        "message": f"Subscription renewed for {data.months} month(s)",
    }


@router.get("/sp-pending")
async def pending_providers(subscriptions: SubscriptionService = Depends(get_subscription_service)):
    pending = await subscriptions.list_pending()
    data = [
        {
            **_serialize_provider(doc).model_dump(),
            "days_expired": doc["days_expired"],
            "message": doc["message"],
        }
        for doc in pending
    ]
    return {
        "success": True,
        "data": data,
        "count": len(data),
        "message": "Pending service providers retrieved successfully",
    }


@router.post("/payment-upload", status_code=status.HTTP_201_CREATED)
async def upload_payment(
    service_provider_id: int = Form(...),
    amount: float = Form(..., gt=0),
    screenshot: UploadFile = File(...),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    storage: StorageService = Depends(get_storage),
):
    if not (screenshot.content_type or "").startswith("image/"):
        raise ValidationError("Screenshot must be an image")
    data = await screenshot.read()
    if not data:
        raise ValidationError("Screenshot file is empty")
    if len(data) > settings.MAX_SCREENSHOT_BYTES:
        raise ValidationError(f"Screenshot must be at most {settings.MAX_SCREENSHOT_BYTES} bytes")

    # Fail before storing anything for an unknown provider
    await subscriptions.get_status(service_provider_id)
    # boto3 and local disk writes are blocking
    path = await asyncio.to_thread(storage.upload_bytes, data, screenshot.content_type, "payments")

    provider = await subscriptions.renew(
        service_provider_id,
        months=settings.SUBSCRIPTION_DEFAULT_MONTHS,
        proof_reference=path,
        amount=amount,
    )
    logger.info(f"Payment screenshot stored for provider {service_provider_id}: {path}")
    return {
        "success": True,
        "data": {
            "service_provider_id": service_provider_id,
            "amount": amount,
            "screenshot_path": path,
            "subscription_end_date": provider["subscription_end_date"],
        },
        "message": "Payment uploaded and subscription renewed",
    }
