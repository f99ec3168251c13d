"""
AcademyPro API: Main Application
Multi-tenant academy management: academies and members, lectures, exams
and scores, notices, billing, LLM quizzes, chat and phone verification.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from academypro.auth.security import hash_password
from academypro.database.database import Base, SessionLocal, engine
from academypro.database.models import Role, User
from academypro.database.mongo import DocumentStore
from academypro.errors import AppError
from academypro.routers import (
    bills, chat, classes, exam_types, lectures, members, notices, quizzes, registration, sms, users,
)
from academypro.services.mailbox import Mailbox
from academypro.services.notice_files import NOTICE_ROOT, find_orphans
from academypro.services.object_storage import ObjectStorage
from academypro.services.otp import OtpStore

# ─── Config ───────────────────────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ADMIN_USER_ID = os.getenv("ADMIN_USER_ID", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@academypro.local")
ADMIN_PHONE = os.getenv("ADMIN_PHONE", "00000000000")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s  %(levelname)s  %(name)s  %(message)s")
log = logging.getLogger(__name__)


def _seed_admin():
    """Create the platform ADMIN account if no ADMIN exists."""
    db = SessionLocal()
    try:
        if db.query(User).filter(User.role == Role.ADMIN).count() == 0:
            db.add(User(
                user_id=ADMIN_USER_ID,
                email=ADMIN_EMAIL,
                hashed_password=hash_password(ADMIN_PASSWORD),
                user_name="Admin",
                phone_number=ADMIN_PHONE,
                role=Role.ADMIN,
            ))
            db.commit()
            log.info("Default admin account created: %s", ADMIN_USER_ID)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: tables, admin seed, external clients. Shutdown: close clients."""
    Base.metadata.create_all(bind=engine)
    _seed_admin()
    NOTICE_ROOT.mkdir(parents=True, exist_ok=True)

    app.state.documents = DocumentStore().open()
    app.state.otp_store = OtpStore.from_url()
    app.state.storage = ObjectStorage().open()
    app.state.mailbox = Mailbox()

    orphans = find_orphans(NOTICE_ROOT)
    if orphans:
        log.warning("%d notice directories await mirroring; run python -m academypro.reconcile", len(orphans))
    try:
        yield
    finally:
        app.state.documents.close()
        app.state.otp_store.close()
        app.state.storage.close()


app = FastAPI(
    title="AcademyPro API",
    description="Academy management: members, lectures, exams, notices, billing, quizzes and chat",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error envelopes ──────────────────────────────────────────────────────────

def _error(status_code: int, message: str, error_code) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "errorCode": error_code})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s %s -> %r", request.method, request.url.path, exc)
    return _error(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"{field}: {first.get('msg')}" if field else "Invalid input"
    return _error(status.HTTP_400_BAD_REQUEST, message, "INVALID_INPUT")


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    log.warning("IntegrityError on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error(status.HTTP_409_CONFLICT, "duplicate entry", "DUPLICATE")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", 500)


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(users.router)              # /user/*
app.include_router(registration.router)       # /registration/*
app.include_router(lectures.router)           # /lecture/*
app.include_router(exam_types.router)         # /exam-type/*
app.include_router(classes.router)            # /expense/*
app.include_router(bills.router)              # /bill/*
app.include_router(members.student_router)    # /student/*
app.include_router(members.teacher_router)    # /teacher/*
app.include_router(notices.router)            # /notice/*
app.include_router(quizzes.router)            # /quiz/*
app.include_router(sms.router)                # /sms/*
app.include_router(chat.router)               # /chat/*


@app.get("/")
def root():
    return {"name": "AcademyPro API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "academypro-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
