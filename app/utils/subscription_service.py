import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.models.provider import SubscriptionStatus
from app.utils.errors import NotFound, ValidationError
from app.utils.record_store import ASCENDING, RecordStore
from app.utils.security import add_months, utcnow
from config import settings

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def _days_between(start: datetime, end: datetime) -> int:
    return max(0, math.ceil((end - start).total_seconds() / SECONDS_PER_DAY))


class SubscriptionService:
    """Provider subscription lifecycle: trial on creation, renewal, expiry sweep.

    A provider is ACTIVE while ``subscription_end_date`` is in the future.
    Expiry is applied in bulk by :meth:`sweep_expired`, either from the
    background task or lazily before pending providers are listed.
    """

    def __init__(self, store: RecordStore, now: Callable = utcnow) -> None:
        self.store = store
        self.now = now

    def trial_fields(self, months: Optional[int] = None) -> Dict[str, Any]:
        now = self.now()
        return {
            "status": SubscriptionStatus.ACTIVE.value,
            "subscription_start_date": now,
            "subscription_end_date": add_months(now, months or settings.SUBSCRIPTION_DEFAULT_MONTHS),
        }

    async def _require_provider(self, provider_id: int) -> Dict[str, Any]:
        provider = await self.store.find_first("providers", {"id": provider_id, "is_active": True})
        if provider is None:
            raise NotFound("Service provider not found")
        return provider

    async def renew(
        self,
        provider_id: int,
        months: int = 1,
        proof_reference: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Start a fresh ``months``-long period from now and log the payment."""
        if months < 1:
            raise ValidationError("months must be at least 1")
        if not proof_reference:
            raise ValidationError("Payment screenshot is required")

        await self._require_provider(provider_id)
        now = self.now()
        end = add_months(now, months)
        provider = await self.store.update(
            "providers",
            provider_id,
            {
                "status": SubscriptionStatus.ACTIVE.value,
                "subscription_start_date": now,
                "subscription_end_date": end,
                "updated_at": now,
            },
        )
        if provider is None:
            raise NotFound("Service provider not found")

        await self.store.create(
            "payments",
            {
                "provider_id": provider_id,
                "amount": amount,
                "months": months,
                "screenshot_path": proof_reference,
                "created_at": now,
            },
        )
        logger.info(f"Renewed subscription for provider {provider_id} until {end.isoformat()}")
        return provider

    async def sweep_expired(self) -> int:
        """Flip every ACTIVE provider whose period has ended to EXPIRED."""
        now = self.now()
        expired = await self.store.update_many(
            "providers",
            {
                "is_active": True,
                "status": SubscriptionStatus.ACTIVE.value,
                "subscription_end_date": {"$lt": now},
            },
            {"status": SubscriptionStatus.EXPIRED.value, "updated_at": now},
        )
        if expired:
            logger.info(f"Expired {expired} provider subscriptions")
        return expired

    async def get_status(self, provider_id: int) -> Dict[str, Any]:
        provider = await self._require_provider(provider_id)
        end = provider.get("subscription_end_date")
        now = self.now()
        return {
            "provider_id": provider["id"],
            "name": provider.get("name"),
            "status": provider.get("status"),
            "is_subscription_active": provider.get("status") == SubscriptionStatus.ACTIVE.value,
            "subscription_start_date": provider.get("subscription_start_date"),
            "subscription_end_date": end,
            "days_until_expiry": _days_between(now, end) if end else 0,
            "is_expired": bool(end and end < now),
        }

    async def list_pending(self) -> List[Dict[str, Any]]:
        """Providers that are EXPIRED or past their end date, oldest expiry first."""
        try:
            await self.sweep_expired()
        except Exception:
            # Listing still works off end dates when the sweep fails
            logger.exception("Subscription sweep failed before listing pending providers")

        now = self.now()
        providers = await self.store.find_many(
            "providers",
            {
                "is_active": True,
                "$or": [
                    {"status": SubscriptionStatus.EXPIRED.value},
                    {"subscription_end_date": {"$lt": now}},
                ],
            },
            order_by=[("subscription_end_date", ASCENDING), ("id", ASCENDING)],
        )
        for provider in providers:
            end = provider.get("subscription_end_date")
            days = _days_between(end, now) if end else 0
            provider["days_expired"] = days
            provider["message"] = f"Subscription expired {days} day{'s' if days != 1 else ''} ago"
        return providers
