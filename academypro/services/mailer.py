"""
Outgoing mail (temporary passwords).
"""

import logging
import os
import smtplib
from email.mime.text import MIMEText

from academypro.errors import UpstreamError

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")


def send_mail(to_email: str, subject: str, body: str) -> None:
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = SMTP_USER
    msg["To"] = to_email
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls()
            server.login(SMTP_USER, SMTP_PASSWORD)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        log.error("Mail to %s failed: %s", to_email, e)
        raise UpstreamError("Could not send mail")
    log.info("Mail sent to %s", to_email)


def send_temporary_password(to_email: str, user_name: str, password: str) -> None:
    body = (
        f"{user_name}님, 임시 비밀번호가 발급되었습니다.\n\n"
        f"임시 비밀번호: {password}\n\n"
        "로그인 후 비밀번호를 변경해주세요."
    )
    send_mail(to_email, "[AcademyPro] 임시 비밀번호 안내", body)
