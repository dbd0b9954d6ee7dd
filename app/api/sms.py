import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_sms_client
from app.utils.errors import InternalError, ValidationError
from app.utils.sms_client import TextBeeClient

logger = logging.getLogger(__name__)

router = APIRouter()


class SendSmsRequest(BaseModel):
    recipients: List[str] = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1600)


@router.post("/sms/send")
async def send_sms(data: SendSmsRequest, sms_client: TextBeeClient = Depends(get_sms_client)):
    if not sms_client.is_configured:
        raise ValidationError("SMS gateway is not configured")
    try:
        result = await sms_client.send_sms(data.recipients, data.message)
    except Exception as e:
        logger.error(f"SMS relay failed: {e}")
        raise InternalError("Failed to send SMS")
    return {"success": True, "data": result, "message": "SMS sent successfully"}
