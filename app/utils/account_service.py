import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from app.models.otp import OtpPurpose
from app.models.user import UserType
from app.utils.errors import Conflict, NotFound, Unauthorized, ValidationError
from app.utils.record_store import RecordStore, Where
from app.utils.security import hash_secret, is_valid_pin, normalize_contact_no, utcnow, verify_secret

logger = logging.getLogger(__name__)


def contact_match_clauses(contact_no: str) -> List[Where]:
    """Exact match, then digits-only containment, then the trailing seven digits.

    Stored numbers keep whatever formatting the user typed ("+92 300 1234567"),
    so a strict equality check misses most real lookups.
    """
    raw = str(contact_no).strip()
    normalized = normalize_contact_no(raw)
    clauses: List[Where] = [{"contact_no": raw}]
    if normalized:
        clauses.append({"contact_no": {"$regex": re.escape(normalized)}})
    if len(normalized) >= 7:
        clauses.append({"contact_no": {"$regex": re.escape(normalized[-7:]) + "$"}})
    return clauses


def _account_filter(user_type: UserType, contact_no: str) -> Where:
    where: Where = {"$or": contact_match_clauses(contact_no)}
    if user_type is UserType.PROVIDER:
        where["is_active"] = True
    return where


async def find_account_by_contact(
    store: RecordStore,
    contact_no: str,
    user_types: Iterable[UserType] = (UserType.PROVIDER, UserType.CONSUMER),
) -> Optional[Tuple[UserType, Dict[str, Any]]]:
    """Return ``(user_type, record)`` for the first account owning ``contact_no``."""
    for user_type in user_types:
        record = await store.find_first(user_type.collection, _account_filter(user_type, contact_no))
        if record is not None:
            return user_type, record
    return None


async def find_exact_account(store: RecordStore, user_type: UserType, contact_no: str) -> Dict[str, Any]:
    """The single account whose number has exactly the same digits as ``contact_no``.

    Unlike :func:`find_account_by_contact` this never settles for a partial
    match, so it is safe for picking the record a write goes to.
    """
    normalized = normalize_contact_no(contact_no)
    candidates = await store.find_many(user_type.collection, _account_filter(user_type, contact_no))
    exact = [r for r in candidates if normalized and normalize_contact_no(r.get("contact_no", "")) == normalized]
    if not exact:
        raise NotFound("No account found with this contact number")
    if len(exact) > 1:
        raise Conflict("More than one account uses this contact number")
    return exact[0]


class AccountService:
    """PIN sign-in and OTP-gated PIN reset for both kinds of account."""

    def __init__(self, store: RecordStore, otp_service=None, now: Callable = utcnow) -> None:
        self.store = store
        self.otp_service = otp_service
        self.now = now

    async def _authenticate(self, user_type: UserType, contact_no: str, pin: str) -> Dict[str, Any]:
        where: Where = {"contact_no": str(contact_no).strip()}
        if user_type is UserType.PROVIDER:
            where["is_active"] = True
        record = await self.store.find_first(user_type.collection, where)
        label = "service provider" if user_type is UserType.PROVIDER else "consumer"
        if record is None:
            raise Unauthorized(f"No {label} found with this contact number")
        if not verify_secret(str(pin), record.get("pin_hash")):
            logger.info(f"Rejected sign-in for {label} {record['id']}: wrong PIN")
            raise Unauthorized("PIN is incorrect")
        logger.info(f"{label.capitalize()} {record['id']} signed in")
        return record

    async def authenticate_provider(self, contact_no: str, pin: str) -> Dict[str, Any]:
        return await self._authenticate(UserType.PROVIDER, contact_no, pin)

    async def authenticate_consumer(self, contact_no: str, pin: str) -> Dict[str, Any]:
        return await self._authenticate(UserType.CONSUMER, contact_no, pin)

    async def reset_pin(
        self,
        contact_no: str,
        code: str,
        new_pin: str,
        user_type: UserType = UserType.PROVIDER,
    ) -> Dict[str, Any]:
        """Consume a PIN_RESET code, then store the new PIN hash.

        The code is consumed before the PIN is written, so a replayed request
        can never change the PIN twice.
        """
        if not is_valid_pin(new_pin):
            raise ValidationError("PIN must be exactly 4 digits (0-9)")
        if self.otp_service is None:
            raise RuntimeError("AccountService.reset_pin needs an OtpService")

        user_type = UserType(user_type)
        account = await find_exact_account(self.store, user_type, contact_no)

        await self.otp_service.verify_otp(contact_no, OtpPurpose.PIN_RESET, code)

        updated = await self.store.update(
            user_type.collection,
            account["id"],
            {"pin_hash": hash_secret(new_pin), "updated_at": self.now()},
        )
        if updated is None:
            raise NotFound("No account found with this contact number")
        logger.info(f"PIN reset for {user_type.value} {account['id']}")
        return updated
