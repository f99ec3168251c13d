"""
SQLAlchemy models for the academy relational store

Academy → Lecture → Exam → ExamUserScore is the scoring hierarchy.
Exam statistics and Academy/Lecture headcounts are cached projections;
services/scores.py and services/headcount.py own their recomputation.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Date, Time, Text, Float,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from academypro.database.database import Base


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    CHIEF = "CHIEF"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"


class Status(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Day(str, enum.Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"


# ==========================================
# TENANTS AND USERS
# ==========================================

class Academy(Base):
    """
    Tenant organization.
    academy_key is the invite key users present to request membership.
    student_headcount / teacher_headcount are cached counts of affiliated users.
    """
    __tablename__ = "academies"

    academy_id = Column(String(64), primary_key=True)
    academy_key = Column(String(64), unique=True, nullable=False, index=True)
    academy_name = Column(String(255), nullable=False)
    academy_email = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)
    phone_number = Column(String(32), nullable=True)
    status = Column(SQLEnum(Status), default=Status.PENDING, nullable=False)
    chief_id = Column(String(64), nullable=True, index=True)
    student_headcount = Column(Integer, default=0, nullable=False)
    teacher_headcount = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Academy(academy_id='{self.academy_id}', status={self.status})>"


class User(Base):
    """
    Account for every role. academy_id is set only once a registration is approved.
    refresh_token and its expiry are stored at login and cleared on logout.
    """
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    user_name = Column(String(100), nullable=False)
    phone_number = Column(String(32), unique=True, nullable=False)
    birth_date = Column(Date, nullable=True)
    role = Column(SQLEnum(Role), nullable=False)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="SET NULL"), nullable=True, index=True)
    image = Column(String(500), nullable=True)
    refresh_token = Column(String(512), nullable=True, index=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(user_id='{self.user_id}', role={self.role})>"


class Family(Base):
    """Parent ↔ student link."""
    __tablename__ = "families"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("parent_id", "student_id", name="uq_family_pair"),)

    parent = relationship("User", foreign_keys=[parent_id])
    student = relationship("User", foreign_keys=[student_id])


class AcademyUserRegistrationList(Base):
    """Join request of a user into an academy, subject to CHIEF approval."""
    __tablename__ = "academy_user_registrations"

    id = Column(Integer, primary_key=True, index=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(Role), nullable=False)
    status = Column(SQLEnum(Status), default=Status.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")

    def __repr__(self):
        return f"<Registration(academy='{self.academy_id}', user='{self.user_id}', status={self.status})>"


# ==========================================
# LECTURES
# ==========================================

class Lecture(Base):
    __tablename__ = "lectures"

    lecture_id = Column(Integer, primary_key=True, index=True)
    lecture_name = Column(String(255), nullable=False)
    teacher_id = Column(String(64), ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    headcount = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    teacher = relationship("User")
    days = relationship("LectureDay", back_populates="lecture", cascade="all, delete-orphan")
    participants = relationship("LectureParticipant", back_populates="lecture", cascade="all, delete-orphan")
    exams = relationship("Exam", back_populates="lecture", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Lecture(lecture_id={self.lecture_id}, name='{self.lecture_name}')>"


class LectureDay(Base):
    __tablename__ = "lecture_days"

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.lecture_id", ondelete="CASCADE"), nullable=False, index=True)
    day = Column(SQLEnum(Day), nullable=False)

    __table_args__ = (UniqueConstraint("lecture_id", "day", name="uq_lecture_day"),)

    lecture = relationship("Lecture", back_populates="days")


class LectureParticipant(Base):
    __tablename__ = "lecture_participants"

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.lecture_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("lecture_id", "user_id", name="uq_lecture_participant"),)

    lecture = relationship("Lecture", back_populates="participants")
    user = relationship("User")


# ==========================================
# EXAMS AND SCORES
# ==========================================

class ExamType(Base):
    __tablename__ = "exam_types"

    exam_type_id = Column(Integer, primary_key=True, index=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    exam_type_name = Column(String(100), nullable=False)

    __table_args__ = (UniqueConstraint("academy_id", "exam_type_name", name="uq_exam_type_name"),)


class Exam(Base):
    """
    Gradable event within a lecture.
    headcount/low_score/high_score/total_score/average_score are cached
    statistics over ExamUserScore rows; low_score=100 and high_score=0 while empty.
    """
    __tablename__ = "exams"

    exam_id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.lecture_id", ondelete="CASCADE"), nullable=False, index=True)
    exam_type_id = Column(Integer, ForeignKey("exam_types.exam_type_id", ondelete="SET NULL"), nullable=True, index=True)
    exam_name = Column(String(255), nullable=False)
    exam_date = Column(Date, nullable=True)
    headcount = Column(Integer, default=0, nullable=False)
    low_score = Column(Integer, default=100, nullable=False)
    high_score = Column(Integer, default=0, nullable=False)
    total_score = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    lecture = relationship("Lecture", back_populates="exams")
    exam_type = relationship("ExamType")
    scores = relationship("ExamUserScore", back_populates="exam", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Exam(exam_id={self.exam_id}, name='{self.exam_name}', headcount={self.headcount})>"


class ExamUserScore(Base):
    __tablename__ = "exam_user_scores"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.exam_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    score = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("exam_id", "user_id", name="uq_exam_user_score"),)

    exam = relationship("Exam", back_populates="scores")
    user = relationship("User")


# ==========================================
# BILLING
# ==========================================

class Class(Base):
    """Billable course package. discount is stored but not applied to bills."""
    __tablename__ = "classes"

    class_id = Column(Integer, primary_key=True, index=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    class_name = Column(String(255), nullable=False)
    expense = Column(Integer, nullable=False)
    discount = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("academy_id", "class_name", name="uq_class_name"),)


class Bill(Base):
    __tablename__ = "bills"

    bill_id = Column(Integer, primary_key=True, index=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    deadline = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    classes = relationship("BillClass", back_populates="bill", cascade="all, delete-orphan")
    users = relationship("BillUser", back_populates="bill", cascade="all, delete-orphan")


class BillClass(Base):
    __tablename__ = "bill_classes"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.bill_id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.class_id", ondelete="CASCADE"), nullable=False, index=True)

    bill = relationship("Bill", back_populates="classes")


class BillUser(Base):
    __tablename__ = "bill_users"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.bill_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    bill = relationship("Bill", back_populates="users")


# ==========================================
# NOTICES
# ==========================================

class Notice(Base):
    """
    Announcement scoped to (academy, lecture).
    notice_id is "<academy_id>_<lecture_id>_<notice_num>" and never changes.
    """
    __tablename__ = "notices"

    notice_id = Column(String(160), primary_key=True)
    academy_id = Column(String(64), ForeignKey("academies.academy_id", ondelete="CASCADE"), nullable=False, index=True)
    lecture_id = Column(Integer, nullable=False, index=True)
    notice_num = Column(Integer, nullable=False)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    views = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (UniqueConstraint("academy_id", "lecture_id", "notice_num", name="uq_notice_sequence"),)

    files = relationship("NoticeFile", back_populates="notice", cascade="all, delete-orphan")


class NoticeFile(Base):
    __tablename__ = "notice_files"

    id = Column(Integer, primary_key=True, index=True)
    notice_id = Column(String(160), ForeignKey("notices.notice_id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file = Column(String(1000), nullable=False)  # object storage key

    notice = relationship("Notice", back_populates="files")
