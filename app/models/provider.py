from datetime import datetime
from enum import IntEnum
from typing import Optional

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator

from app.utils.security import is_valid_contact_no, is_valid_pin


class SubscriptionStatus(IntEnum):
    EXPIRED = 0
    ACTIVE = 1


class ProviderBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    city: str = Field(..., min_length=2, max_length=100)
    skillset: str = Field(..., min_length=5)
    contact_no: str = Field(..., min_length=10, max_length=20)
    description: Optional[str] = None
    experience: Optional[str] = Field(None, max_length=50)

    @field_validator("name", "city", "skillset", "contact_no", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("contact_no")
    @classmethod
    def _check_contact_no(cls, value: str) -> str:
        if not is_valid_contact_no(value):
            raise ValueError("Please enter a valid contact number")
        return value


class ProviderCreate(ProviderBase):
    # Plain PIN from the client; only its hash is stored
    pin: Optional[str] = None

    @field_validator("pin")
    @classmethod
    def _check_pin(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_pin(value):
            raise ValueError("PIN must be exactly 4 digits (0-9)")
        return value


class ProviderUpdate(ProviderCreate):
    pass


class Provider(ProviderBase):
    id: int
    is_active: bool = True
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ProviderFilter(BaseModel):
    city: Optional[str] = None
    skillset: Optional[str] = None
    experience: Optional[str] = None
    name: Optional[str] = None
    search: Optional[str] = None


class ProviderSignin(BaseModel):
    contact_no: str = Field(..., min_length=1)
    pin: str

    @field_validator("pin", mode="before")
    @classmethod
    def _check_pin(cls, value) -> str:
        value = str(value)
        if not is_valid_pin(value):
            raise ValueError("PIN must be exactly 4 digits (0-9)")
        return value


class RenewSubscriptionRequest(BaseModel):
    months: int = Field(1, ge=1, le=36)
    screenshot: AnyHttpUrl = Field(..., description="URL of the uploaded payment screenshot")
    amount: Optional[float] = Field(None, gt=0)
