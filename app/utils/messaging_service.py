"""Conversations between one provider and one consumer, and the message log inside them.

Messages are append-only. Negotiation moves (offer, charge, payment, accept,
decline) are ordinary messages whose ``message_type`` and ``metadata`` carry
the structured part. After a message is stored the service publishes a
:class:`MessageSent` to the conversation and a :class:`NotificationRaised` to
the other participant; delivery problems are logged and never undo the write.
"""

import logging
import math
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.models.conversation import ConversationStatus
from app.models.message import MessageType, parse_metadata
from app.models.user import UserType
from app.utils.errors import Conflict, Expired, InvalidTransition, NotFound, Unauthorized, ValidationError
from app.utils.events import DeliveryEvent, EventPublisher, MessageSent, NotificationRaised
from app.utils.record_store import ASCENDING, DESCENDING, DuplicateRecordError, RecordStore
from app.utils.security import utcnow
from config import settings

logger = logging.getLogger(__name__)

PROVIDER_SUMMARY_FIELDS = ("id", "name", "city", "skillset", "contact_no")
CONSUMER_SUMMARY_FIELDS = ("id", "name", "city", "contact_no")

# Metadata field naming the offer an answer refers to
ANSWER_KEYS = {MessageType.ACCEPT: "accepted_offer_id", MessageType.DECLINE: "declined_offer_id"}

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _format_amount(amount: float) -> str:
    amount = float(amount)
    return str(int(amount)) if amount.is_integer() else str(amount)


def _summary(record: Optional[Dict[str, Any]], fields: Tuple[str, ...]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return {field: record.get(field) for field in fields}


class MessagingService:
    def __init__(self, store: RecordStore, publisher: Optional[EventPublisher] = None, now: Callable = utcnow) -> None:
        self.store = store
        self.publisher = publisher
        self.now = now

    # Conversations

    async def _require_conversation(self, conversation_id: int) -> Dict[str, Any]:
        conversation = await self.store.find_unique("conversations", conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        return conversation

    async def _with_participants(self, conversation: Dict[str, Any]) -> Dict[str, Any]:
        provider = await self.store.find_unique("providers", conversation["provider_id"])
        consumer = await self.store.find_unique("consumers", conversation["consumer_id"])
        conversation["provider"] = _summary(provider, PROVIDER_SUMMARY_FIELDS)
        conversation["consumer"] = _summary(consumer, CONSUMER_SUMMARY_FIELDS)
        return conversation

    @staticmethod
    def _is_participant(conversation: Dict[str, Any], user_id: int, user_type: UserType) -> bool:
        if user_type is UserType.PROVIDER:
            return conversation["provider_id"] == user_id
        return conversation["consumer_id"] == user_id

    async def create_conversation(self, provider_id: int, consumer_id: int) -> Dict[str, Any]:
        """Return the conversation for this pair, creating it on first contact."""
        if await self.store.find_unique("providers", provider_id) is None:
            raise NotFound(f"Service provider with ID {provider_id} not found")
        if await self.store.find_unique("consumers", consumer_id) is None:
            raise NotFound(f"Consumer with ID {consumer_id} not found")

        pair = {"provider_id": provider_id, "consumer_id": consumer_id}
        conversation = await self.store.find_first("conversations", pair)
        if conversation is not None:
            logger.info(f"Reusing conversation {conversation['id']} for {pair}")
            return await self._with_participants(conversation)

        now = self.now()
        try:
            conversation = await self.store.create(
                "conversations",
                {
                    **pair,
                    "status": ConversationStatus.ACTIVE.value,
                    "last_message_at": None,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            logger.info(f"Created conversation {conversation['id']} for {pair}")
        except DuplicateRecordError:
            # A concurrent request created it first
            conversation = await self.store.find_first("conversations", pair)
            if conversation is None:
                raise
        return await self._with_participants(conversation)

    async def update_status(self, conversation_id: int, status: Any) -> Dict[str, Any]:
        try:
            new_status = ConversationStatus(status)
        except ValueError:
            raise ValidationError("Status must be ACTIVE, COMPLETED, or CANCELLED")

        conversation = await self._require_conversation(conversation_id)
        current = ConversationStatus(conversation["status"])
        if current is new_status:
            return await self._with_participants(conversation)
        if current.is_terminal:
            raise InvalidTransition(
                f"Conversation {conversation_id} is {current.value} and cannot become {new_status.value}"
            )

        updated = await self.store.update(
            "conversations",
            conversation_id,
            {"status": new_status.value, "updated_at": self.now()},
            where={"status": current.value},
        )
        if updated is None:
            raise InvalidTransition(f"Conversation {conversation_id} changed status concurrently")
        logger.info(f"Conversation {conversation_id}: {current.value} -> {new_status.value}")
        return await self._with_participants(updated)

    async def get_conversation(
        self,
        conversation_id: int,
        include_messages: bool = False,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, int]]]:
        """Return the conversation and, with ``include_messages``, one page of its log.

        Page 1 is the newest ``limit`` messages; each page is returned in
        chronological order.
        """
        conversation = await self._with_participants(await self._require_conversation(conversation_id))
        if not include_messages:
            return conversation, None

        page = max(1, int(page))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
        where = {"conversation_id": conversation_id}
        total = await self.store.count("messages", where)
        newest_first = await self.store.find_many(
            "messages",
            where,
            order_by=[("created_at", DESCENDING), ("id", DESCENDING)],
            skip=(page - 1) * limit,
            limit=limit,
        )
        conversation["messages"] = list(reversed(newest_first))
        pagination = {
            "total_messages": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit),
        }
        return conversation, pagination

    async def list_conversations_for_user(
        self,
        user_id: int,
        user_type: Any,
        include_last_message: bool = False,
    ) -> List[Dict[str, Any]]:
        user_type = UserType(user_type)
        field = "provider_id" if user_type is UserType.PROVIDER else "consumer_id"
        conversations = await self.store.find_many(
            "conversations",
            {field: user_id},
            order_by=[("last_message_at", DESCENDING), ("id", DESCENDING)],
        )
        for conversation in conversations:
            await self._with_participants(conversation)
            if include_last_message:
                conversation["last_message"] = await self.store.find_first(
                    "messages",
                    {"conversation_id": conversation["id"]},
                    order_by=[("created_at", DESCENDING), ("id", DESCENDING)],
                )
        return conversations

    async def get_messages(self, conversation_id: int) -> List[Dict[str, Any]]:
        await self._require_conversation(conversation_id)
        return await self.store.find_many(
            "messages",
            {"conversation_id": conversation_id},
            order_by=[("created_at", ASCENDING), ("id", ASCENDING)],
        )

    async def mark_read(self, conversation_id: int, reader_id: int, reader_type: Any) -> int:
        """Mark every unread message the reader did not send as read."""
        reader_type = UserType(reader_type)
        conversation = await self._require_conversation(conversation_id)
        if not self._is_participant(conversation, reader_id, reader_type):
            raise Unauthorized("Not a participant in this conversation")
        count = await self.store.update_many(
            "messages",
            {
                "conversation_id": conversation_id,
                "is_read": False,
                "sender_type": {"$ne": reader_type.value},
            },
            {"is_read": True},
        )
        logger.info(f"Marked {count} messages read in conversation {conversation_id} for {reader_type.value} {reader_id}")
        return count

    # Messages

    async def _publish(self, event: DeliveryEvent) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {type(event).__name__}: {e}")

    async def send_message(
        self,
        conversation_id: int,
        sender_id: int,
        sender_type: Any,
        content: str,
        message_type: Any = MessageType.GENERAL,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            message_type = MessageType(message_type)
            sender_type = UserType(sender_type)
        except ValueError as e:
            raise ValidationError(str(e))
        if not content or not str(content).strip():
            raise ValidationError("Message content is required")

        conversation = await self._require_conversation(conversation_id)
        if not self._is_participant(conversation, sender_id, sender_type):
            raise ValidationError("Sender is not a participant in this conversation")

        try:
            parsed = parse_metadata(message_type, metadata)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid metadata for {message_type.value} message",
                details=e.errors(include_url=False, include_context=False, include_input=False),
            )

        now = self.now()
        record = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_type": sender_type.value,
            "message_type": message_type.value,
            "content": content,
            "metadata": parsed.model_dump(),
            "is_read": False,
            "created_at": now,
        }
        answer_key = ANSWER_KEYS.get(message_type)
        if answer_key:
            record["answers_offer_id"] = record["metadata"][answer_key]
        try:
            message = await self.store.create("messages", record)
        except DuplicateRecordError:
            raise Conflict("This offer has already been answered")
        await self.store.update("conversations", conversation_id, {"last_message_at": now, "updated_at": now})
        logger.info(
            f"Message {message['id']} ({message_type.value}) from {sender_type.value} {sender_id} "
            f"in conversation {conversation_id}"
        )

        await self._publish(MessageSent(conversation_id=conversation_id, message=message))

        sender = await self.store.find_unique(sender_type.collection, sender_id)
        recipient_id = conversation["consumer_id"] if sender_type is UserType.PROVIDER else conversation["provider_id"]
        await self._publish(
            NotificationRaised(
                recipient_id=recipient_id,
                recipient_type=sender_type.counterpart,
                payload={
                    "type": "new_message_notification",
                    "conversationId": conversation_id,
                    "senderName": sender.get("name") if sender else None,
                    "messageType": message_type.value,
                    "content": content,
                },
            )
        )
        return message

    async def send_offer(
        self,
        conversation_id: int,
        sender_id: int,
        sender_type: Any,
        amount: float,
        description: str,
        validity_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        hours = validity_hours or settings.OFFER_DEFAULT_VALIDITY_HOURS
        return await self.send_message(
            conversation_id,
            sender_id,
            sender_type,
            f"Offer: {description} - ${_format_amount(amount)}",
            MessageType.OFFER,
            {
                "amount": amount,
                "description": description,
                "validity_hours": hours,
                "offer_expires_at": self.now() + timedelta(hours=hours),
            },
        )

    async def send_charge(
        self,
        conversation_id: int,
        sender_id: int,
        sender_type: Any,
        amount: float,
        description: str,
        breakdown: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        return await self.send_message(
            conversation_id,
            sender_id,
            sender_type,
            f"Charge: {description} - ${_format_amount(amount)}",
            MessageType.CHARGE,
            {
                "amount": amount,
                "description": description,
                "breakdown": breakdown or [],
                "timestamp": self.now(),
            },
        )

    async def send_payment(
        self,
        conversation_id: int,
        sender_id: int,
        sender_type: Any,
        amount: float,
        method: str,
        transaction_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.send_message(
            conversation_id,
            sender_id,
            sender_type,
            f"Payment: ${_format_amount(amount)} via {method}",
            MessageType.PAYMENT,
            {
                "amount": amount,
                "method": method,
                "transaction_id": transaction_id,
                "timestamp": self.now(),
            },
        )

    async def _answerable_offer(
        self, conversation_id: int, responder_id: int, responder_type: UserType, offer_message_id: int
    ) -> Dict[str, Any]:
        offer = await self.store.find_unique("messages", offer_message_id)
        if offer is None or offer["conversation_id"] != conversation_id:
            raise NotFound("Offer not found in this conversation")
        if offer["message_type"] != MessageType.OFFER.value:
            raise ValidationError(f"Message {offer_message_id} is not an offer")
        if offer["sender_id"] == responder_id and offer["sender_type"] == responder_type.value:
            raise ValidationError("You cannot answer your own offer")

        if await self.store.count("messages", {"answers_offer_id": offer_message_id}):
            raise Conflict("This offer has already been answered")
        return offer

    async def accept_offer(
        self, conversation_id: int, sender_id: int, sender_type: Any, offer_message_id: int
    ) -> Dict[str, Any]:
        sender_type = UserType(sender_type)
        offer = await self._answerable_offer(conversation_id, sender_id, sender_type, offer_message_id)
        now = self.now()
        expires_at = offer.get("metadata", {}).get("offer_expires_at")
        if expires_at is not None and expires_at < now:
            raise Expired("This offer has expired")
        return await self.send_message(
            conversation_id,
            sender_id,
            sender_type,
            "Offer accepted",
            MessageType.ACCEPT,
            {"accepted_offer_id": offer_message_id, "accepted_at": now},
        )

    async def decline_offer(
        self,
        conversation_id: int,
        sender_id: int,
        sender_type: Any,
        offer_message_id: int,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        sender_type = UserType(sender_type)
        await self._answerable_offer(conversation_id, sender_id, sender_type, offer_message_id)
        return await self.send_message(
            conversation_id,
            sender_id,
            sender_type,
            f"Offer declined: {reason}" if reason else "Offer declined",
            MessageType.DECLINE,
            {"declined_offer_id": offer_message_id, "declined_at": self.now(), "reason": reason},
        )
