from fastapi import APIRouter, Depends, status

from app.api.deps import get_account_service, get_otp_service
from app.models.otp import ForgotPasswordRequest, OtpIssued, OtpRequest, OtpVerify
from app.utils.account_service import AccountService
from app.utils.otp_service import OtpService

router = APIRouter()


@router.post("/otp/request", status_code=status.HTTP_201_CREATED)
async def request_otp(data: OtpRequest, otp_service: OtpService = Depends(get_otp_service)):
    issued = await otp_service.request_otp(
        data.contact_no,
        purpose=data.purpose,
        length=data.length,
        ttl_seconds=data.ttl_seconds,
    )
    return {"success": True, "data": OtpIssued(**issued), "message": "OTP sent successfully"}


@router.post("/otp/verify")
async def verify_otp(data: OtpVerify, otp_service: OtpService = Depends(get_otp_service)):
    await otp_service.verify_otp(data.contact_no, data.purpose, data.code)
    return {"success": True, "message": "OTP verified successfully"}


@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordRequest, accounts: AccountService = Depends(get_account_service)):
    await accounts.reset_pin(data.contact_no, data.code, data.new_pin, user_type=data.user_type)
    return {"success": True, "message": "PIN reset successfully"}
