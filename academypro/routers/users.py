"""
User accounts: signup, login/refresh/logout, profile, profile image,
id lookup, password reset and parent↔student links.
"""

import logging
import os
from pathlib import Path

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from academypro.auth.dependencies import CurrentUser, get_current_user
from academypro.auth.security import (
    create_access_token, create_refresh_token, generate_temporary_password,
    hash_password, refresh_token_expired, refresh_token_expiry, verify_password,
)
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.models import Family, Role, User
from academypro.errors import (
    BadRequestError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ok,
)
from academypro.resources import get_object_storage
from academypro.services import mailer, registration
from academypro.services.object_storage import ObjectStorage

log = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])

# ─── Config ───────────────────────────────────────────────────────────────────

PROFILE_KEY_PREFIX = os.getenv("PROFILE_KEY_PREFIX", "public/profile")
DEFAULT_PROFILE_IMAGE = os.getenv("DEFAULT_PROFILE_IMAGE", "public/profile/default.png")
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png"}
MAX_IMAGE_SIZE = 10 * 1024 * 1024


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _user_data(user: User) -> dict:
    return schemas.UserResponse.model_validate(user).model_dump(mode="json")


def _issue_access_token(user: User) -> str:
    return create_access_token(
        {"sub": user.user_id, "role": user.role.value, "academy_id": user.academy_id}
    )


def _ensure_self(current: CurrentUser, user_id: str) -> None:
    if current.user_id != user_id:
        raise ForbiddenError("You can only manage your own account")


def _can_view(current: CurrentUser, target: User) -> bool:
    if current.user_id == target.user_id:
        return True
    return (
        current.role in (Role.CHIEF, Role.TEACHER)
        and current.academy_id is not None
        and current.academy_id == target.academy_id
    )


def _family_ids(db: Session, user: User) -> list:
    if user.role == Role.STUDENT:
        return [p.user_id for p in crud.parents_of(db, user.user_id)]
    if user.role == Role.PARENT:
        return crud.children_ids(db, user.user_id)
    return []


# ==========================================
# SIGNUP / AUTH
# ==========================================

@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(body: schemas.UserCreate, db: Session = Depends(get_db)):
    if body.role == Role.ADMIN:
        raise BadRequestError("ADMIN accounts cannot be created through signup")
    if crud.get_user(db, body.user_id):
        raise ConflictError("That user id is already taken", error_code="DUPLICATE_USER_ID")
    if db.query(User).filter(User.email == body.email).first():
        raise ConflictError("That email is already in use", error_code="DUPLICATE_EMAIL")
    if db.query(User).filter(User.phone_number == body.phone_number).first():
        raise ConflictError("That phone number is already in use", error_code="DUPLICATE_PHONE")

    user = User(
        user_id=body.user_id,
        email=body.email,
        hashed_password=hash_password(body.password),
        user_name=body.user_name,
        phone_number=body.phone_number,
        birth_date=body.birth_date,
        role=body.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("New %s account %s", user.role.value, user.user_id)
    return ok("Signed up", _user_data(user))


@router.post("/login")
def login(body: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user(db, body.user_id)
    if not user or not verify_password(body.password, user.hashed_password):
        raise UnauthorizedError("Invalid user id or password", error_code="INVALID_CREDENTIALS")

    user.refresh_token = create_refresh_token()
    user.refresh_token_expires_at = refresh_token_expiry()
    db.commit()
    db.refresh(user)

    latest = crud.latest_registration(db, user.user_id)
    token = schemas.TokenResponse(
        access_token=_issue_access_token(user),
        refresh_token=user.refresh_token,
        user=schemas.UserResponse.model_validate(user),
        registration_status=latest.status if latest else None,
    )
    return ok("Logged in", token.model_dump(mode="json"))


@router.post("/refresh")
def refresh(body: schemas.RefreshRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_refresh_token(db, body.refresh_token)
    if not user or refresh_token_expired(user.refresh_token_expires_at):
        raise ForbiddenError("Invalid or expired refresh token, please log in again",
                             error_code="INVALID_REFRESH_TOKEN")
    return ok("Access token refreshed", {"access_token": _issue_access_token(user), "token_type": "bearer"})


@router.post("/logout")
def logout(body: schemas.RefreshRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_refresh_token(db, body.refresh_token)
    if not user:
        raise BadRequestError("Invalid refresh token", error_code="INVALID_REFRESH_TOKEN")
    user.refresh_token = None
    user.refresh_token_expires_at = None
    db.commit()
    return ok("Logged out")


# ==========================================
# ACCOUNT RECOVERY
# ==========================================

@router.get("/check/{user_id}")
def check_user_id(user_id: str, db: Session = Depends(get_db)):
    if crud.get_user(db, user_id):
        raise ConflictError("That user id is already taken", error_code="DUPLICATE_USER_ID")
    return ok("User id is available")


@router.post("/find-id")
def find_user_id(body: schemas.FindIdRequest, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(User.email == body.email, User.phone_number == body.phone_number)
        .first()
    )
    if not user:
        raise NotFoundError("No account matches that email and phone number", error_code="USER_NOT_FOUND")
    return ok("Found user id", {"user_id": user.user_id})


@router.post("/reset-password")
def reset_password(body: schemas.ResetPasswordRequest, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(
            User.user_id == body.user_id,
            User.email == body.email,
            User.phone_number == body.phone_number,
        )
        .first()
    )
    if not user:
        raise NotFoundError("No account matches those details", error_code="USER_NOT_FOUND")

    temporary = generate_temporary_password()
    user.hashed_password = hash_password(temporary)
    user.refresh_token = None
    user.refresh_token_expires_at = None
    mailer.send_temporary_password(user.email, user.user_name, temporary)
    db.commit()
    return ok("A temporary password has been sent by email")


# ==========================================
# FAMILY
# ==========================================

@router.post("/family", status_code=status.HTTP_201_CREATED)
def set_family(
    body: schemas.FamilyRequest,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current.role == Role.PARENT and current.user_id != body.parent_id:
        raise ForbiddenError("Parents can only link themselves")
    if current.role not in (Role.PARENT, Role.CHIEF):
        raise ForbiddenError("You do not have permission for this action")
    family: Family = registration.link_family(db, body.parent_id, body.student_id)
    return ok("Family linked", {"parent_id": family.parent_id, "student_id": family.student_id})


# ==========================================
# PROFILE
# ==========================================

@router.get("/{user_id}")
def get_user_info(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.require_user(db, user_id)
    if not _can_view(current, user):
        raise ForbiddenError("You cannot view this user")
    return ok("User info", {**_user_data(user), "family": _family_ids(db, user)})


@router.put("/{user_id}")
def update_user_info(
    user_id: str,
    body: schemas.UserUpdate,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self(current, user_id)
    user = crud.require_user(db, user_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    password = changes.pop("password", None)
    if password:
        user.hashed_password = hash_password(password)
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return ok("User info updated", _user_data(user))


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self(current, user_id)
    user = crud.require_user(db, user_id)
    if user.academy_id:
        raise ForbiddenError("Members of an academy cannot delete their account", error_code="AFFILIATED_USER")
    db.delete(user)
    db.commit()
    log.info("Account %s deleted", user_id)
    return ok("Account deleted")


@router.get("/{user_id}/image")
def get_user_image(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
):
    user = crud.require_user(db, user_id)
    key = user.image or DEFAULT_PROFILE_IMAGE
    return ok("User image", {"user_id": user.user_id, "image": key, "url": storage.url_for(key)})


@router.put("/{user_id}/image")
def update_user_image(
    user_id: str,
    image: UploadFile = File(...),
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
):
    _ensure_self(current, user_id)
    user = crud.require_user(db, user_id)
    if image.content_type not in ALLOWED_IMAGE_TYPES:
        raise BadRequestError("Only jpeg, jpg and png images are allowed", error_code="INCORRECT_FILETYPE")
    image.file.seek(0, os.SEEK_END)
    size = image.file.tell()
    image.file.seek(0)
    if size > MAX_IMAGE_SIZE:
        raise BadRequestError("Images must be 10MB or smaller", error_code="FILE_TOO_LARGE")

    key = f"{PROFILE_KEY_PREFIX}/{user_id}{Path(image.filename or '').suffix.lower()}"
    storage.upload_fileobj(image.file, key, content_type=image.content_type)
    user.image = key
    db.commit()
    return ok("User image updated", {"user_id": user_id, "image": key, "url": storage.url_for(key)})
