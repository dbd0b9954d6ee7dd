from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.models.user import UserType
from config import settings


class OtpPurpose(str, Enum):
    GENERIC = "GENERIC"
    SP_SIGNUP = "SP_SIGNUP"
    SP_SIGNIN = "SP_SIGNIN"
    PIN_RESET = "PIN_RESET"

    @property
    def requires_account(self) -> bool:
        return self in (OtpPurpose.SP_SIGNIN, OtpPurpose.PIN_RESET)


class OtpRequest(BaseModel):
    contact_no: str = Field(..., min_length=1)
    purpose: OtpPurpose = OtpPurpose.GENERIC
    # Out-of-range values are clamped, not rejected
    length: int = settings.OTP_DEFAULT_LENGTH
    ttl_seconds: int = settings.OTP_DEFAULT_TTL_SECONDS


class OtpVerify(BaseModel):
    contact_no: str = Field(..., min_length=1)
    purpose: OtpPurpose = OtpPurpose.GENERIC
    code: str = Field(..., min_length=1)


class OtpIssued(BaseModel):
    id: int
    contact_no: str
    purpose: OtpPurpose
    expires_at: datetime
    code: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    contact_no: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    new_pin: str = Field(..., pattern=r"^[0-9]{4}$")
    user_type: UserType = UserType.PROVIDER
