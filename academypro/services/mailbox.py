"""
IMAP inbox that receives OTP codes texted to the academy's address.
"""

import email
import imaplib
import logging
import os
import re
from email.header import decode_header, make_header
from email.utils import parseaddr
from typing import Optional, Tuple

from academypro.errors import UpstreamError
from academypro.services.otp import parse_code

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

IMAP_HOST = os.getenv("IMAP_HOST", "imap.gmail.com")
IMAP_PORT = int(os.getenv("IMAP_PORT", "993"))
IMAP_USER = os.getenv("IMAP_USER", "")
IMAP_PASSWORD = os.getenv("IMAP_PASSWORD", "")
IMAP_MAILBOX = os.getenv("IMAP_MAILBOX", "INBOX")


def _body_text(message: email.message.Message) -> str:
    parts = []
    for part in message.walk():
        if part.get_content_maintype() == "multipart":
            continue
        if part.get_content_type() not in ("text/plain", "text/html"):
            continue
        payload = part.get_payload(decode=True) or b""
        parts.append(payload.decode(part.get_content_charset() or "utf-8", errors="replace"))
    return "\n".join(parts)


def parse_otp_message(raw: bytes) -> Optional[Tuple[str, str]]:
    """(sender phone, code) from a raw RFC822 message, or None when it has no code."""
    message = email.message_from_bytes(raw)
    _, address = parseaddr(str(make_header(decode_header(message.get("From", "")))))
    sender = re.sub(r"\D", "", address.split("@", 1)[0])
    subject = str(make_header(decode_header(message.get("Subject", ""))))
    code = parse_code(_body_text(message)) or parse_code(subject)
    if not sender or not code:
        return None
    return sender, code


class Mailbox:
    def __init__(self, host: str = IMAP_HOST, port: int = IMAP_PORT, user: str = IMAP_USER,
                 password: str = IMAP_PASSWORD, mailbox: str = IMAP_MAILBOX):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mailbox = mailbox

    def fetch_latest_code(self) -> Optional[Tuple[str, str]]:
        """Read the newest unseen message (marking it seen) and parse it."""
        try:
            with imaplib.IMAP4_SSL(self.host, self.port) as conn:
                conn.login(self.user, self.password)
                conn.select(self.mailbox)
                status, data = conn.search(None, "UNSEEN")
                if status != "OK" or not data or not data[0]:
                    return None
                latest = data[0].split()[-1]
                status, fetched = conn.fetch(latest, "(RFC822)")
                if status != "OK" or not fetched or not isinstance(fetched[0], tuple):
                    return None
                return parse_otp_message(fetched[0][1])
        except (imaplib.IMAP4.error, OSError) as e:
            log.error("Mailbox poll failed: %s", e)
            raise UpstreamError("Could not read the verification mailbox")
