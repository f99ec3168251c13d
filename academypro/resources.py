"""
Long-lived clients owned by the application lifespan.

main.py opens them at startup, stores them on app.state and closes them
at shutdown. Routes receive them through the getters below, which tests
override with in-memory doubles.
"""

from pathlib import Path
from typing import Callable

from starlette.requests import HTTPConnection

from academypro.database.mongo import DocumentStore
from academypro.services.gpt_client import call_llm
from academypro.services.mailbox import Mailbox
from academypro.services.notice_files import NOTICE_ROOT
from academypro.services.object_storage import ObjectStorage
from academypro.services.otp import OtpStore


def get_document_store(conn: HTTPConnection) -> DocumentStore:
    return conn.app.state.documents


def get_otp_store(conn: HTTPConnection) -> OtpStore:
    return conn.app.state.otp_store


def get_object_storage(conn: HTTPConnection) -> ObjectStorage:
    return conn.app.state.storage


def get_mailbox(conn: HTTPConnection) -> Mailbox:
    return conn.app.state.mailbox


def get_llm() -> Callable[[str], str]:
    return call_llm


def get_notice_root() -> Path:
    return NOTICE_ROOT
