"""
Shared fixtures: an in-memory SQLite database, in-memory doubles for the
lifespan-owned clients (document store, Redis, S3, IMAP inbox, LLM) and a
TestClient wired to all of them through dependency overrides.
"""

import copy
import json
import time
import uuid
import zlib
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from academypro import resources
from academypro.auth.security import create_access_token, hash_password
from academypro.database.database import Base, get_db
from academypro.database.models import Academy, Family, Role, Status, User
from academypro.errors import StorageError
from academypro.main import app
from academypro.services.headcount import refresh_headcount
from academypro.services.otp import OtpStore

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)


# ==========================================
# DOUBLES
# ==========================================

class FakeDocumentStore:
    """In-memory stand-in for DocumentStore with the same method surface."""

    def __init__(self):
        self.rooms = {}
        self.chat = []
        self.quizzes = {}
        self.results = {}
        self.fail_save = False

    def create_room(self, members):
        room = {"id": uuid.uuid4().hex, "members": sorted(set(members)), "date": datetime.now(timezone.utc)}
        self.rooms[room["id"]] = room
        return dict(room)

    def get_room(self, room_id):
        room = self.rooms.get(room_id)
        return dict(room) if room else None

    def rooms_for(self, user_id):
        return [dict(r) for r in self.rooms.values() if user_id in r["members"]]

    def add_message(self, room_id, sender_id, text):
        message = {
            "id": uuid.uuid4().hex,
            "room_id": room_id,
            "sender_id": sender_id,
            "message": text,
            "timestamp": datetime.now(timezone.utc),
        }
        self.chat.append(message)
        return dict(message)

    def messages(self, room_id, limit=50):
        return [dict(m) for m in self.chat if m["room_id"] == room_id][-limit:]

    def save_quiz(self, exam_id, quiz):
        if self.fail_save:
            raise RuntimeError("document store unavailable")
        doc = {**copy.deepcopy(quiz), "exam_id": exam_id}
        self.quizzes[exam_id] = doc
        return copy.deepcopy(doc)

    def get_quiz(self, exam_id):
        doc = self.quizzes.get(exam_id)
        return copy.deepcopy(doc) if doc else None

    def delete_quiz(self, exam_id):
        self.quizzes.pop(exam_id, None)
        self.results.pop(exam_id, None)

    def record_quiz_result(self, exam_id, user_id, result):
        self.results.setdefault(exam_id, {})[user_id] = copy.deepcopy(result)
        return result

    def get_quiz_results(self, exam_id):
        return copy.deepcopy(self.results.get(exam_id, {}))


class FakeRedis:
    """The slice of redis.Redis that OtpStore uses, with TTLs."""

    def __init__(self):
        self.data = {}

    def _live(self, key):
        entry = self.data.get(key)
        if entry is None:
            return False
        if entry[1] <= time.monotonic():
            del self.data[key]
            return False
        return True

    def setex(self, key, ttl, value):
        self.data[key] = (value, time.monotonic() + ttl)

    def exists(self, key):
        return 1 if self._live(key) else 0

    def delete(self, key):
        if self._live(key):
            del self.data[key]
            return 1
        return 0

    def expire_all(self):
        self.data = {k: (v, 0) for k, (v, _) in self.data.items()}

    def close(self):
        pass


class FakeObjectStorage:
    """Keeps uploaded objects in a dict keyed by object key."""

    def __init__(self):
        self.objects = {}
        self.fail_uploads = False

    def upload_fileobj(self, fileobj, key, content_type=None):
        if self.fail_uploads:
            raise StorageError(f"Failed to upload {key}")
        self.objects[key] = fileobj.read()
        return key

    def upload_dir(self, dir_path, prefix):
        if self.fail_uploads:
            raise StorageError(f"Failed to upload {prefix}")
        keys = []
        for path in sorted(Path(dir_path).rglob("*")):
            if path.is_file():
                key = f"{prefix}/{path.relative_to(dir_path).as_posix()}"
                self.objects[key] = path.read_bytes()
                keys.append(key)
        return keys

    def delete_keys(self, keys):
        for key in keys:
            self.objects.pop(key, None)
        return len(keys)

    def delete_prefix(self, prefix):
        doomed = [k for k in self.objects if k.startswith(prefix)]
        return self.delete_keys(doomed)

    def url_for(self, key):
        return f"https://bucket.test/{key}"

    def close(self):
        pass


class FakeMailbox:
    """Holds at most one unseen (sender, code) message, consumed on read."""

    def __init__(self):
        self.pending = None

    def deliver(self, sender, code):
        self.pending = (sender, code)

    def fetch_latest_code(self):
        message, self.pending = self.pending, None
        return message


class FakeLLM:
    """Callable returning a canned response and remembering prompts."""

    def __init__(self, response=None):
        self.response = response if response is not None else quiz_response()
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def quiz_response(answers=(0, 1, 2, 3, 0)):
    return json.dumps({
        "quiz_list": [
            {"question": f"질문 {i + 1}", "options": ["가", "나", "다", "라"], "explanation": "해설"}
            for i in range(len(answers))
        ],
        "answer_list": list(answers),
    })


# ==========================================
# DATABASE
# ==========================================

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_user(db, user_id, role, academy_id=None, phone_number=None):
    user = User(
        user_id=user_id,
        email=f"{user_id}@example.com",
        hashed_password=PASSWORD_HASH,
        user_name=user_id.capitalize(),
        phone_number=phone_number or f"010{zlib.crc32(user_id.encode()) % 10 ** 8:08d}",
        role=role,
        academy_id=academy_id,
    )
    db.add(user)
    return user


def make_academy(db, academy_id, chief_id, status=Status.APPROVED, academy_key=None):
    academy = Academy(
        academy_id=academy_id,
        academy_key=academy_key or f"key-{academy_id}",
        academy_name=f"{academy_id} academy",
        status=status,
        chief_id=chief_id,
    )
    db.add(academy)
    return academy


@pytest.fixture
def world(db):
    """
    acad1 (approved): chief1, teacher1, student1 with parent1.
    acad2 (approved): chief2.
    Unaffiliated: student2 with parent2, teacher2.
    """
    make_academy(db, "acad1", "chief1")
    make_academy(db, "acad2", "chief2")
    db.flush()
    make_user(db, "chief1", Role.CHIEF, "acad1")
    make_user(db, "teacher1", Role.TEACHER, "acad1")
    make_user(db, "student1", Role.STUDENT, "acad1")
    make_user(db, "parent1", Role.PARENT, "acad1")
    make_user(db, "chief2", Role.CHIEF, "acad2")
    make_user(db, "student2", Role.STUDENT)
    make_user(db, "parent2", Role.PARENT)
    make_user(db, "teacher2", Role.TEACHER)
    db.flush()
    db.add(Family(parent_id="parent1", student_id="student1"))
    db.add(Family(parent_id="parent2", student_id="student2"))
    refresh_headcount(db, "acad1")
    refresh_headcount(db, "acad2")
    db.commit()
    return db


def token_for(db, user_id):
    user = db.query(User).filter(User.user_id == user_id).one()
    db.refresh(user)
    return create_access_token({"sub": user.user_id, "role": user.role.value, "academy_id": user.academy_id})


@pytest.fixture
def auth(db):
    """auth("chief1") -> Authorization header carrying that user's current academy."""
    def _headers(user_id):
        return {"Authorization": f"Bearer {token_for(db, user_id)}"}
    return _headers


# ==========================================
# CLIENTS
# ==========================================

@pytest.fixture
def documents():
    return FakeDocumentStore()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def otp_store(redis_client):
    return OtpStore(redis_client)


@pytest.fixture
def storage():
    return FakeObjectStorage()


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def notice_root(tmp_path):
    return tmp_path / "notice"


@pytest.fixture
def client(session_factory, documents, otp_store, storage, mailbox, llm, notice_root):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[resources.get_document_store] = lambda: documents
    app.dependency_overrides[resources.get_otp_store] = lambda: otp_store
    app.dependency_overrides[resources.get_object_storage] = lambda: storage
    app.dependency_overrides[resources.get_mailbox] = lambda: mailbox
    app.dependency_overrides[resources.get_llm] = lambda: llm
    app.dependency_overrides[resources.get_notice_root] = lambda: notice_root
    # no context manager: the lifespan (real Postgres, Mongo, Redis, S3) is not started
    yield TestClient(app)
    app.dependency_overrides.clear()
