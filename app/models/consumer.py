from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.utils.security import is_valid_contact_no, is_valid_pin


class ConsumerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    contact_no: str = Field(..., min_length=5, max_length=20)

    @field_validator("name", "city", "contact_no", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("contact_no")
    @classmethod
    def _check_contact_no(cls, value: str) -> str:
        if not is_valid_contact_no(value):
            raise ValueError("Please enter a valid contact number")
        return value


class ConsumerCreate(ConsumerBase):
    pin: str

    @field_validator("pin", mode="before")
    @classmethod
    def _check_pin(cls, value) -> str:
        value = str(value)
        if not is_valid_pin(value):
            raise ValueError("Pin must be exactly 4 digits (0-9)")
        return value


class Consumer(ConsumerBase):
    id: int
    created_at: datetime
    updated_at: datetime


class ConsumerSignin(BaseModel):
    contact_no: str = Field(..., min_length=1)
    pin: str
