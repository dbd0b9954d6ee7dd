from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.message import Message
from app.models.user import UserType


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not ConversationStatus.ACTIVE


class ConversationCreate(BaseModel):
    provider_id: int = Field(..., gt=0)
    consumer_id: int = Field(..., gt=0)

    model_config = ConfigDict(json_schema_extra={"example": {"provider_id": 1, "consumer_id": 2}})


class ConversationStatusUpdate(BaseModel):
    status: ConversationStatus


class MarkReadRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    user_type: UserType


class Conversation(BaseModel):
    id: int
    provider_id: int
    consumer_id: int
    status: ConversationStatus
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    # Populated by the read paths, not stored
    provider: Optional[Dict[str, Any]] = None
    consumer: Optional[Dict[str, Any]] = None
    last_message: Optional[Message] = None
    messages: Optional[List[Message]] = None
