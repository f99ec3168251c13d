"""
Phone verification codes.

The user is shown a 6-digit code and texts it from their phone to the
academy inbox. Verification reads the newest unseen mail, takes the code
and the sending number from it, and consumes the matching record.
Records live in Redis under otp:<phone>:<code> for 3 minutes and are
deleted on the first successful verification.
"""

import logging
import os
import re
import secrets
from typing import Optional

import redis

from academypro.errors import BadRequestError

log = logging.getLogger(__name__)

# ─── Config ────────────────────────────────────────────────────────────────────

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
OTP_TTL_SECONDS = 180
OTP_LENGTH = 6


# ─── Key helpers ───────────────────────────────────────────────────────────────

def normalize_phone(phone_number: str) -> str:
    return re.sub(r"\D", "", phone_number or "")


def _otp_key(phone_number: str, code: str) -> str:
    return f"otp:{normalize_phone(phone_number)}:{code}"


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


class OtpStore:
    """TTL'd OTP records. Several live codes per phone are allowed."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = OTP_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str = REDIS_URL) -> "OtpStore":
        return cls(redis.from_url(url, decode_responses=True))

    def close(self) -> None:
        self.client.close()

    def save(self, phone_number: str, code: str) -> None:
        self.client.setex(_otp_key(phone_number, code), self.ttl_seconds, "1")

    def exists(self, phone_number: str, code: str) -> bool:
        return bool(self.client.exists(_otp_key(phone_number, code)))

    def consume(self, phone_number: str, code: str) -> bool:
        """True once per live record; DEL is atomic so a replay always fails."""
        return self.client.delete(_otp_key(phone_number, code)) == 1


def issue_otp(store: OtpStore, phone_number: str) -> str:
    phone = normalize_phone(phone_number)
    if not phone:
        raise BadRequestError("phone_number is required", error_code="INVALID_INPUT")
    code = generate_code()
    store.save(phone, code)
    log.info("OTP issued for %s", phone)
    return code


def verify_otp(store: OtpStore, mailbox, phone_number: str) -> bool:
    """
    Check the newest unseen inbox message against the stored codes.
    A message sent from another number never verifies this one.
    """
    message = mailbox.fetch_latest_code()
    if message is None:
        log.info("No unseen OTP message for %s", normalize_phone(phone_number))
        return False
    sender, code = message
    if normalize_phone(sender) != normalize_phone(phone_number):
        return False
    verified = store.consume(phone_number, code)
    log.info("OTP verification for %s: %s", normalize_phone(phone_number), verified)
    return verified


def parse_code(text: str) -> Optional[str]:
    match = re.search(rf"(?<!\d)(\d{{{OTP_LENGTH}}})(?!\d)", text or "")
    return match.group(1) if match else None
