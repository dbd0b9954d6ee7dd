from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from app.models.user import UserType


class MessageType(str, Enum):
    OFFER = "OFFER"
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"
    CHARGE = "CHARGE"
    PAYMENT = "PAYMENT"
    GENERAL = "GENERAL"
    SYSTEM = "SYSTEM"


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from clients are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# Metadata shape per message type. A message's metadata is validated against
# METADATA_MODELS[message_type] before it is stored.

class OfferMetadata(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    validity_hours: int = Field(..., ge=1)
    offer_expires_at: UtcDatetime


class ChargeMetadata(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    breakdown: List[str] = Field(default_factory=list)
    timestamp: UtcDatetime


class PaymentMetadata(BaseModel):
    amount: float = Field(..., gt=0)
    method: str = Field(..., min_length=1)
    transaction_id: Optional[str] = None
    timestamp: UtcDatetime


class AcceptMetadata(BaseModel):
    accepted_offer_id: int
    accepted_at: UtcDatetime


class DeclineMetadata(BaseModel):
    declined_offer_id: int
    declined_at: UtcDatetime
    reason: Optional[str] = None


class GeneralMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")


class SystemMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None


METADATA_MODELS: Dict[MessageType, Type[BaseModel]] = {
    MessageType.OFFER: OfferMetadata,
    MessageType.ACCEPT: AcceptMetadata,
    MessageType.DECLINE: DeclineMetadata,
    MessageType.CHARGE: ChargeMetadata,
    MessageType.PAYMENT: PaymentMetadata,
    MessageType.GENERAL: GeneralMetadata,
    MessageType.SYSTEM: SystemMetadata,
}


def parse_metadata(message_type: MessageType, raw: Optional[Dict[str, Any]]) -> BaseModel:
    """Validate ``raw`` against the metadata model for ``message_type``.

    Raises pydantic.ValidationError when the payload does not fit.
    """
    return METADATA_MODELS[message_type].model_validate(raw or {})


class Message(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    sender_type: UserType
    message_type: MessageType
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime


# Request bodies

class SenderFields(BaseModel):
    conversation_id: int = Field(..., gt=0)
    sender_id: int = Field(..., gt=0)
    sender_type: UserType


class SendMessageRequest(SenderFields):
    message_type: MessageType = MessageType.GENERAL
    content: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SimpleMessageRequest(BaseModel):
    id: int = Field(..., gt=0, description="Conversation ID")
    content: str = Field(..., min_length=1)
    # Defaults to the conversation's consumer when omitted
    sender_id: Optional[int] = Field(None, gt=0)
    sender_type: Optional[UserType] = None


class OfferRequest(SenderFields):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    validity_hours: Optional[int] = Field(None, ge=1)


class ChargeRequest(SenderFields):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    breakdown: List[str] = Field(default_factory=list)


class PaymentRequest(SenderFields):
    amount: float = Field(..., gt=0)
    method: str = Field(..., min_length=1)
    transaction_id: Optional[str] = None


class AcceptOfferRequest(SenderFields):
    offer_message_id: int = Field(..., gt=0)


class DeclineOfferRequest(AcceptOfferRequest):
    reason: Optional[str] = None
