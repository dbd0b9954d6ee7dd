from fastapi import APIRouter, Depends, status

from app.api.deps import get_messaging_service, get_presence
from app.models.message import (
    AcceptOfferRequest,
    ChargeRequest,
    DeclineOfferRequest,
    Message,
    OfferRequest,
    PaymentRequest,
    SendMessageRequest,
)
from app.utils.messaging_service import MessagingService
from app.utils.presence_service import PresenceService

router = APIRouter()


def _created(message: dict, note: str) -> dict:
    return {"success": True, "data": Message.model_validate(message), "message": note}


@router.post("/message/send", status_code=status.HTTP_201_CREATED)
async def send_message(data: SendMessageRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.send_message(
        data.conversation_id,
        data.sender_id,
        data.sender_type,
        data.content,
        message_type=data.message_type,
        metadata=data.metadata,
    )
    return _created(message, "Message sent successfully")


@router.post("/message/offer", status_code=status.HTTP_201_CREATED)
async def send_offer(data: OfferRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.send_offer(
        data.conversation_id,
        data.sender_id,
        data.sender_type,
        amount=data.amount,
        description=data.description,
        validity_hours=data.validity_hours,
    )
    return _created(message, "Offer sent successfully")


@router.post("/message/charge", status_code=status.HTTP_201_CREATED)
async def send_charge(data: ChargeRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.send_charge(
        data.conversation_id,
        data.sender_id,
        data.sender_type,
        amount=data.amount,
        description=data.description,
        breakdown=data.breakdown,
    )
    return _created(message, "Charge sent successfully")


@router.post("/message/payment", status_code=status.HTTP_201_CREATED)
async def send_payment(data: PaymentRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.send_payment(
        data.conversation_id,
        data.sender_id,
        data.sender_type,
        amount=data.amount,
        method=data.method,
        transaction_id=data.transaction_id,
    )
    return _created(message, "Payment recorded successfully")


@router.post("/message/accept-offer", status_code=status.HTTP_201_CREATED)
async def accept_offer(data: AcceptOfferRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.accept_offer(
        data.conversation_id, data.sender_id, data.sender_type, data.offer_message_id
    )
    return _created(message, "Offer accepted")


@router.post("/message/decline-offer", status_code=status.HTTP_201_CREATED)
async def decline_offer(data: DeclineOfferRequest, messaging: MessagingService = Depends(get_messaging_service)):
    message = await messaging.decline_offer(
        data.conversation_id, data.sender_id, data.sender_type, data.offer_message_id, reason=data.reason
    )
    return _created(message, "Offer declined")


@router.get("/online-users")
async def online_users(presence: PresenceService = Depends(get_presence)):
    users = presence.list_online()
    return {"success": True, "data": users, "count": len(users)}
