from fastapi import Depends, Request

from app.db import get_store
from app.utils.account_service import AccountService
from app.utils.messaging_service import MessagingService
from app.utils.otp_service import OtpService
from app.utils.presence_service import PresenceService
from app.utils.record_store import RecordStore
from app.utils.sms_client import TextBeeClient
from app.utils.storage_service import StorageService
from app.utils.subscription_service import SubscriptionService
from config import settings


def get_presence(request: Request) -> PresenceService:
    return request.app.state.presence


def get_sms_client() -> TextBeeClient:
    return TextBeeClient()


def get_storage() -> StorageService:
    return StorageService()


def get_otp_service(
    store: RecordStore = Depends(get_store),
    sms_client: TextBeeClient = Depends(get_sms_client),
) -> OtpService:
    return OtpService(store, sms_client=sms_client if settings.OTP_SMS_DELIVERY else None)


def get_account_service(
    store: RecordStore = Depends(get_store),
    otp_service: OtpService = Depends(get_otp_service),
) -> AccountService:
    return AccountService(store, otp_service=otp_service)


def get_subscription_service(store: RecordStore = Depends(get_store)) -> SubscriptionService:
    return SubscriptionService(store)


def get_messaging_service(
    store: RecordStore = Depends(get_store),
    presence: PresenceService = Depends(get_presence),
) -> MessagingService:
    return MessagingService(store, publisher=presence)
