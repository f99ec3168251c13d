"""
Document store for chat rooms, chat messages, quizzes and quiz results.

DocumentStore is constructed and opened once in the app lifespan, kept on
app.state and injected into routes; nothing connects lazily.
Documents carry a string "id" and are returned without Mongo's _id.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "academypro")

_NO_ID = {"_id": 0}


def _now():
    return datetime.now(timezone.utc)


class DocumentStore:
    def __init__(self, url: str = MONGO_URL, db_name: str = MONGO_DB):
        self.url = url
        self.db_name = db_name
        self._client: Optional[MongoClient] = None
        self.db = None

    def open(self) -> "DocumentStore":
        self._client = MongoClient(self.url, tz_aware=True)
        self.db = self._client[self.db_name]
        self.db.chat_rooms.create_index([("members", ASCENDING)])
        self.db.chat_messages.create_index([("room_id", ASCENDING), ("timestamp", ASCENDING)])
        self.db.quizzes.create_index("exam_id", unique=True)
        self.db.quiz_results.create_index("exam_id", unique=True)
        log.info("Connected to MongoDB database %s", self.db_name)
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            log.info("MongoDB connection closed")
        self._client = None
        self.db = None

    # ==========================================
    # CHAT
    # ==========================================

    def create_room(self, members: List[str]) -> dict:
        room = {"id": uuid.uuid4().hex, "members": sorted(set(members)), "date": _now()}
        self.db.chat_rooms.insert_one(dict(room))
        return room

    def get_room(self, room_id: str) -> Optional[dict]:
        return self.db.chat_rooms.find_one({"id": room_id}, _NO_ID)

    def rooms_for(self, user_id: str) -> List[dict]:
        return list(self.db.chat_rooms.find({"members": user_id}, _NO_ID).sort("date", DESCENDING))

    def add_message(self, room_id: str, sender_id: str, text: str) -> dict:
        message = {
            "id": uuid.uuid4().hex,
            "room_id": room_id,
            "sender_id": sender_id,
            "message": text,
            "timestamp": _now(),
        }
        self.db.chat_messages.insert_one(dict(message))
        return message

    def messages(self, room_id: str, limit: int = 50) -> List[dict]:
        """Most recent messages of a room, oldest first."""
        recent = list(
            self.db.chat_messages.find({"room_id": room_id}, _NO_ID)
            .sort("timestamp", DESCENDING)
            .limit(limit)
        )
        return list(reversed(recent))

    # ==========================================
    # QUIZZES
    # ==========================================

    def save_quiz(self, exam_id: int, quiz: dict) -> dict:
        doc = {**quiz, "exam_id": exam_id, "created_at": _now()}
        self.db.quizzes.replace_one({"exam_id": exam_id}, doc, upsert=True)
        doc.pop("_id", None)
        return doc

    def get_quiz(self, exam_id: int) -> Optional[dict]:
        return self.db.quizzes.find_one({"exam_id": exam_id}, _NO_ID)

    def delete_quiz(self, exam_id: int) -> None:
        self.db.quizzes.delete_one({"exam_id": exam_id})
        self.db.quiz_results.delete_one({"exam_id": exam_id})

    def record_quiz_result(self, exam_id: int, user_id: str, result: dict) -> dict:
        doc = self.db.quiz_results.find_one_and_update(
            {"exam_id": exam_id},
            {"$set": {f"results.{user_id}": result}},
            projection=_NO_ID,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc["results"][user_id]

    def get_quiz_results(self, exam_id: int) -> dict:
        doc = self.db.quiz_results.find_one({"exam_id": exam_id}, _NO_ID)
        return doc.get("results", {}) if doc else {}
