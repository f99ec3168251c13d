"""
Phone verification and outbound SMS.
"""

from fastapi import APIRouter, Depends

from academypro.auth.dependencies import CurrentUser, require_roles
from academypro.database import schemas
from academypro.database.models import Role
from academypro.errors import BadRequestError, ok
from academypro.resources import get_mailbox, get_otp_store
from academypro.services import otp, sms
from academypro.services.mailbox import Mailbox
from academypro.services.otp import OtpStore

router = APIRouter(prefix="/sms", tags=["sms"])


@router.post("/auth/otp")
def request_otp(body: schemas.OtpRequest, store: OtpStore = Depends(get_otp_store)):
    """Issue a code the user must text from their phone within 3 minutes."""
    code = otp.issue_otp(store, body.phone_number)
    return ok("OTP issued", {"otp": code, "expires_in": store.ttl_seconds})


@router.post("/auth/verify")
def verify_otp(
    body: schemas.OtpRequest,
    store: OtpStore = Depends(get_otp_store),
    mailbox: Mailbox = Depends(get_mailbox),
):
    if not otp.verify_otp(store, mailbox, body.phone_number):
        raise BadRequestError("Phone verification failed", error_code="OTP_MISMATCH")
    return ok("Phone verified", {"phone_number": otp.normalize_phone(body.phone_number), "verified": True})


@router.post("/send")
def send_messages(
    body: schemas.SmsSendRequest,
    current: CurrentUser = Depends(require_roles(Role.CHIEF)),
):
    sent = []
    for phone_number in dict.fromkeys(body.phone_numbers):
        sms.send_sms(phone_number, body.message)
        sent.append(phone_number)
    return ok("Messages sent", {"sent": sent, "count": len(sent)})
