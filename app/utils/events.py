from dataclasses import dataclass, field
from typing import Any, Dict, Protocol, Union

from app.models.user import UserType


@dataclass(frozen=True)
class MessageSent:
    """A message was appended to a conversation's log."""

    conversation_id: int
    message: Dict[str, Any]


@dataclass(frozen=True)
class NotificationRaised:
    """Something the recipient should hear about on their personal channel."""

    recipient_id: int
    recipient_type: UserType
    payload: Dict[str, Any] = field(default_factory=dict)


DeliveryEvent = Union[MessageSent, NotificationRaised]


class EventPublisher(Protocol):
    async def publish(self, event: DeliveryEvent) -> None:
        ...
