from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_messaging_service
from app.models.conversation import Conversation, ConversationCreate, ConversationStatusUpdate, MarkReadRequest
from app.models.message import Message, MessageType, SimpleMessageRequest
from app.models.user import UserType
from app.utils.errors import ValidationError
from app.utils.messaging_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MessagingService

router = APIRouter()


def _serialize_conversation(doc: dict) -> Conversation:
    return Conversation.model_validate(doc)


@router.post("/conversation", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    data: ConversationCreate,
    messaging: MessagingService = Depends(get_messaging_service),
):
    conversation = await messaging.create_conversation(data.provider_id, data.consumer_id)
    return {"success": True, "conversation": _serialize_conversation(conversation)}


@router.get("/conversation")
async def get_conversations(
    conversation_id: Optional[int] = Query(None, alias="id"),
    user_type: Optional[UserType] = Query(None, alias="userType"),
    user_id: Optional[int] = Query(None, alias="userId"),
    include_messages: bool = Query(False, alias="includeMessages"),
    include_last_message: bool = Query(False, alias="includeLastMessage"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    messaging: MessagingService = Depends(get_messaging_service),
):
    if conversation_id is not None:
        conversation, pagination = await messaging.get_conversation(
            conversation_id, include_messages=include_messages, page=page, limit=limit
        )
        body = {"success": True, "conversation": _serialize_conversation(conversation)}
        if pagination is not None:
            body["pagination"] = pagination
        return body

    if user_type is not None and user_id is not None:
        conversations = await messaging.list_conversations_for_user(
            user_id, user_type, include_last_message=include_last_message
        )
        return {
            "success": True,
            "conversations": [_serialize_conversation(doc) for doc in conversations],
            "count": len(conversations),
        }

    raise ValidationError(
        "Provide either id, or both userType and userId",
        details={
            "examples": [
                "/api/conversation?id=1&includeMessages=true",
                "/api/conversation?userType=consumer&userId=1",
            ]
        },
    )


@router.put("/conversation/{conversation_id}/status")
async def update_conversation_status(
    conversation_id: int,
    data: ConversationStatusUpdate,
    messaging: MessagingService = Depends(get_messaging_service),
):
    conversation = await messaging.update_status(conversation_id, data.status)
    return {
        "success": True,
        "conversation": _serialize_conversation(conversation),
        "message": f"Conversation marked as {data.status.value}",
    }


@router.put("/conversation/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: int,
    data: MarkReadRequest,
    messaging: MessagingService = Depends(get_messaging_service),
):
    count = await messaging.mark_read(conversation_id, data.user_id, data.user_type)
    return {"success": True, "count": count, "message": f"Marked {count} messages as read"}


@router.post("/message", status_code=status.HTTP_201_CREATED)
async def post_message(
    data: SimpleMessageRequest,
    messaging: MessagingService = Depends(get_messaging_service),
):
    sender_type = data.sender_type or UserType.CONSUMER
    sender_id = data.sender_id
    if sender_id is None:
        # Unattributed messages come from the conversation's party of sender_type
        conversation, _ = await messaging.get_conversation(data.id)
        sender_id = conversation["provider_id"] if sender_type is UserType.PROVIDER else conversation["consumer_id"]

    message = await messaging.send_message(
        data.id, sender_id, sender_type, data.content, message_type=MessageType.GENERAL
    )
    return {"success": True, "message": Message.model_validate(message)}


@router.get("/messages")
async def list_messages(
    conversation_id: int = Query(..., alias="id"),
    messaging: MessagingService = Depends(get_messaging_service),
):
    messages: List[dict] = await messaging.get_messages(conversation_id)
    return {
        "success": True,
        "messages": [Message.model_validate(doc) for doc in messages],
        "count": len(messages),
    }
