"""
Outbound text messages through the Aligo gateway.
"""

import logging
import os

import httpx

from academypro.errors import UpstreamError

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

ALIGO_URL = "https://apis.aligo.in/send/"
ALIGO_API_KEY = os.getenv("ALIGO_API_KEY", "")
ALIGO_USER_ID = os.getenv("ALIGO_USER_ID", "")
ALIGO_SENDER = os.getenv("ALIGO_SENDER", "")


def send_sms(phone_number: str, message: str, timeout: float = 10.0) -> dict:
    """Send one message. Aligo reports failure with result_code < 1."""
    data = {
        "key": ALIGO_API_KEY,
        "user_id": ALIGO_USER_ID,
        "sender": ALIGO_SENDER,
        "receiver": phone_number,
        "msg": message,
    }
    try:
        response = httpx.post(ALIGO_URL, data=data, timeout=timeout)
        response.raise_for_status()
        result = response.json()
    except (httpx.HTTPError, ValueError) as e:
        log.error("SMS gateway call failed: %s", e)
        raise UpstreamError("SMS gateway request failed")

    if int(result.get("result_code", -1)) < 1:
        log.error("SMS gateway refused message: %s", result.get("message"))
        raise UpstreamError(f"SMS gateway refused message: {result.get('message')}")
    log.info("SMS sent to %s", phone_number)
    return result
