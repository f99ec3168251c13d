"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from academypro.database.models import Day, Role, Status


# ==========================================
# USER SCHEMAS
# ==========================================

class UserCreate(BaseModel):
    user_id: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    user_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=8, max_length=32)
    birth_date: Optional[date] = None
    role: Role


class UserUpdate(BaseModel):
    """All fields optional"""
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6, max_length=128)
    user_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, min_length=8, max_length=32)
    birth_date: Optional[date] = None


class UserResponse(BaseModel):
    user_id: str
    email: str
    user_name: str
    phone_number: str
    birth_date: Optional[date] = None
    role: Role
    academy_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    user_id: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse
    registration_status: Optional[Status] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class FindIdRequest(BaseModel):
    email: EmailStr
    phone_number: str


class ResetPasswordRequest(BaseModel):
    user_id: str
    email: EmailStr
    phone_number: str


class FamilyRequest(BaseModel):
    parent_id: str
    student_id: str


# ==========================================
# REGISTRATION SCHEMAS
# ==========================================

class AcademyCreate(BaseModel):
    academy_id: str = Field(..., min_length=2, max_length=64)
    academy_name: str = Field(..., min_length=1, max_length=255)
    academy_email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=500)
    phone_number: Optional[str] = Field(None, max_length=32)
    academy_key: Optional[str] = Field(None, min_length=4, max_length=64)


class AcademyResponse(BaseModel):
    academy_id: str
    academy_key: str
    academy_name: str
    academy_email: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    status: Status
    chief_id: Optional[str] = None
    student_headcount: int
    teacher_headcount: int

    model_config = ConfigDict(from_attributes=True)


class AcademyDecision(BaseModel):
    academy_id: str
    approve: bool


class UserRegistrationRequest(BaseModel):
    academy_id: str
    academy_key: str


class UserDecision(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)
    approve: bool


class RegistrationResponse(BaseModel):
    id: int
    academy_id: str
    user_id: str
    role: Role
    status: Status
    created_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# LECTURE SCHEMAS
# ==========================================

class LectureCreate(BaseModel):
    lecture_name: str = Field(..., min_length=1, max_length=255)
    teacher_id: str
    days: List[Day] = Field(default_factory=list)
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class LectureUpdate(BaseModel):
    lecture_name: Optional[str] = Field(None, min_length=1, max_length=255)
    teacher_id: Optional[str] = None
    days: Optional[List[Day]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class RosterRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


class ExamCreate(BaseModel):
    exam_name: str = Field(..., min_length=1, max_length=255)
    exam_type_id: int = Field(..., gt=0)
    exam_date: Optional[date] = None


class ExamResponse(BaseModel):
    exam_id: int
    lecture_id: int
    exam_type_id: Optional[int] = None
    exam_name: str
    exam_date: Optional[date] = None
    headcount: int
    low_score: int
    high_score: int
    total_score: int
    average_score: float

    model_config = ConfigDict(from_attributes=True)


class ScoreEntry(BaseModel):
    user_id: str
    score: Optional[int] = None


class ScoreBatch(BaseModel):
    scores: List[ScoreEntry]


class ScoreUpdate(BaseModel):
    user_id: str
    score: int


class ExamTypeCreate(BaseModel):
    exam_type_name: str = Field(..., min_length=1, max_length=100)


class ExamTypeResponse(BaseModel):
    exam_type_id: int
    academy_id: str
    exam_type_name: str

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# BILLING SCHEMAS
# ==========================================

class ClassCreate(BaseModel):
    class_name: str = Field(..., min_length=1, max_length=255)
    expense: int = Field(..., ge=0)
    discount: Optional[int] = Field(None, ge=0)
    duration: int = Field(..., gt=0, description="Length in days")


class ClassUpdate(BaseModel):
    class_name: Optional[str] = Field(None, min_length=1, max_length=255)
    expense: Optional[int] = Field(None, ge=0)
    discount: Optional[int] = Field(None, ge=0)
    duration: Optional[int] = Field(None, gt=0)


class ClassResponse(BaseModel):
    class_id: int
    academy_id: str
    class_name: str
    expense: int
    discount: Optional[int] = None
    duration: int

    model_config = ConfigDict(from_attributes=True)


class BillCreate(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)
    class_ids: List[int] = Field(..., min_length=1)
    deadline: Optional[date] = None


class BillPay(BaseModel):
    bill_id: int = Field(..., gt=0)


class BillUserResponse(BaseModel):
    user_id: str
    paid: bool
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BillResponse(BaseModel):
    bill_id: int
    academy_id: str
    amount: int
    deadline: Optional[date] = None
    class_ids: List[int] = Field(default_factory=list)
    users: List[BillUserResponse] = Field(default_factory=list)


# ==========================================
# MEMBER SCHEMAS
# ==========================================

class MemberRemoval(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


# ==========================================
# NOTICE SCHEMAS
# ==========================================

class NoticeFileResponse(BaseModel):
    file_name: str
    file: str
    url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class NoticeSummary(BaseModel):
    notice_id: str
    title: str
    content: str
    user_id: Optional[str] = None
    views: int

    model_config = ConfigDict(from_attributes=True)


class NoticeDetail(NoticeSummary):
    academy_id: str
    lecture_id: int
    notice_num: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    files: List[NoticeFileResponse] = Field(default_factory=list)


# ==========================================
# QUIZ / SMS / CHAT SCHEMAS
# ==========================================

class QuizCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    lecture_id: int = Field(..., gt=0)
    keyword: str = Field(..., min_length=1, max_length=200)
    comment: Optional[str] = None


class QuizSubmission(BaseModel):
    answers: List[int]


class OtpRequest(BaseModel):
    phone_number: str = Field(..., min_length=8, max_length=32)


class SmsSendRequest(BaseModel):
    phone_numbers: List[str] = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=2000)


class RoomCreate(BaseModel):
    opponent_id: str
