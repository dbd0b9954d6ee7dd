import logging
import re
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from app.models.otp import OtpPurpose
from app.utils.account_service import find_account_by_contact
from app.utils.errors import Conflict, Expired, InvalidCode, NotFound, ValidationError
from app.utils.record_store import DESCENDING, RecordStore
from app.utils.security import generate_numeric_code, hash_secret, utcnow, verify_secret
from config import settings

logger = logging.getLogger(__name__)

COLLECTION = "otp_codes"
OTP_CONTACT_PATTERN = re.compile(r"^[0-9]{6,15}$")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def _mask(contact_no: str) -> str:
    return f"***{contact_no[-4:]}"


class OtpService:
    """Issues and verifies single-use numeric codes bound to a contact and purpose.

    Only a bcrypt hash of each code is stored. At most one live code exists
    per (contact_no, purpose): issuing a new one invalidates the previous.
    """

    def __init__(
        self,
        store: RecordStore,
        sms_client=None,
        now: Callable = utcnow,
        expose_code: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.sms_client = sms_client
        self.now = now
        # Development builds hand the code back so flows can be tested without SMS
        self.expose_code = settings.is_development if expose_code is None else expose_code

    async def request_otp(
        self,
        contact_no: str,
        purpose: OtpPurpose = OtpPurpose.GENERIC,
        length: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> Dict[str, Any]:
        contact_no = str(contact_no).strip()
        if not OTP_CONTACT_PATTERN.match(contact_no):
            raise ValidationError("contact_no must be 6-15 digits")
        purpose = OtpPurpose(purpose)

        length = _clamp(
            length if length is not None else settings.OTP_DEFAULT_LENGTH,
            settings.OTP_MIN_LENGTH,
            settings.OTP_MAX_LENGTH,
        )
        ttl_seconds = _clamp(
            ttl_seconds if ttl_seconds is not None else settings.OTP_DEFAULT_TTL_SECONDS,
            settings.OTP_MIN_TTL_SECONDS,
            settings.OTP_MAX_TTL_SECONDS,
        )

        account = await find_account_by_contact(self.store, contact_no)
        if purpose.requires_account and account is None:
            raise NotFound("No account found with this contact number")
        if not purpose.requires_account and account is not None:
            raise Conflict("An account with this contact number already exists")

        now = self.now()
        # Superseded codes are kept until they expire so a stale code can be told apart from a typo
        replaced = await self.store.update_many(
            COLLECTION,
            {"contact_no": contact_no, "purpose": purpose.value, "consumed_at": None, "invalidated_at": None},
            {"invalidated_at": now},
        )

        code = generate_numeric_code(length)
        record = await self.store.create(
            COLLECTION,
            {
                "contact_no": contact_no,
                "purpose": purpose.value,
                "code_hash": hash_secret(code),
                "attempts": 0,
                "consumed_at": None,
                "invalidated_at": None,
                "expires_at": now + timedelta(seconds=ttl_seconds),
                "created_at": now,
            },
        )
        logger.info(
            f"Issued {purpose.value} OTP {record['id']} for {_mask(contact_no)}"
            + (f" (replaced {replaced})" if replaced else "")
        )

        await self._deliver(contact_no, code, ttl_seconds)

        issued = {
            "id": record["id"],
            "contact_no": contact_no,
            "purpose": purpose,
            "expires_at": record["expires_at"],
        }
        if self.expose_code:
            issued["code"] = code
        return issued

    async def _deliver(self, contact_no: str, code: str, ttl_seconds: int) -> None:
        if not settings.OTP_SMS_DELIVERY or self.sms_client is None:
            return
        message = settings.OTP_MESSAGE_TEMPLATE.format(code=code, minutes=max(1, ttl_seconds // 60))
        try:
            await self.sms_client.send_sms([contact_no], message)
        except Exception as e:
            # The code is stored either way; the user can ask for a resend
            logger.warning(f"Failed to deliver OTP SMS to {_mask(contact_no)}: {e}")

    async def verify_otp(self, contact_no: str, purpose: OtpPurpose, code: str) -> Dict[str, Any]:
        contact_no = str(contact_no).strip()
        purpose = OtpPurpose(purpose)
        scope = {"contact_no": contact_no, "purpose": purpose.value}
        live = {**scope, "consumed_at": None, "invalidated_at": None}

        record = await self.store.find_first(COLLECTION, live, order_by=[("created_at", DESCENDING), ("id", DESCENDING)])
        if record is None:
            raise NotFound("No active OTP found for this contact number")

        now = self.now()
        if record["expires_at"] < now:
            raise Expired("OTP has expired, please request a new one")
        if settings.OTP_MAX_ATTEMPTS and record.get("attempts", 0) >= settings.OTP_MAX_ATTEMPTS:
            raise Expired("Too many attempts, please request a new OTP")

        code = str(code).strip()
        if not verify_secret(code, record["code_hash"]):
            if await self._is_superseded(scope, code):
                raise NotFound("This OTP was replaced by a newer one")
            await self.store.update(COLLECTION, record["id"], inc={"attempts": 1})
            logger.info(f"Wrong OTP for {_mask(contact_no)} ({purpose.value})")
            raise InvalidCode("Invalid OTP")

        # Only one of several concurrent verifications can flip consumed_at
        consumed = await self.store.update(
            COLLECTION,
            record["id"],
            {"consumed_at": now},
            where={"consumed_at": None, "invalidated_at": None},
            inc={"attempts": 1},
        )
        if consumed is None:
            raise NotFound("No active OTP found for this contact number")

        logger.info(f"Verified {purpose.value} OTP {record['id']} for {_mask(contact_no)}")
        return {key: value for key, value in consumed.items() if key != "code_hash"}

    async def _is_superseded(self, scope, code: str) -> bool:
        superseded = await self.store.find_many(
            COLLECTION,
            {**scope, "consumed_at": None, "invalidated_at": {"$ne": None}, "expires_at": {"$gte": self.now()}},
            order_by=[("created_at", DESCENDING), ("id", DESCENDING)],
            limit=5,
        )
        return any(verify_secret(code, r["code_hash"]) for r in superseded)

    async def purge_expired(self) -> int:
        """Delete codes that are consumed or past their expiry."""
        removed = await self.store.delete_many(
            COLLECTION,
            {"$or": [{"expires_at": {"$lt": self.now()}}, {"consumed_at": {"$ne": None}}]},
        )
        if removed:
            logger.info(f"Purged {removed} spent OTP codes")
        return removed
