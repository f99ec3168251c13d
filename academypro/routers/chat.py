"""
Chat rooms over REST plus a per-room WebSocket.

Client frames on /chat/ws/{room_id}?token=...:
  {"type": "message", "message": "..."}   persisted, broadcast to the room
  {"type": "history", "limit": 50}        recent messages, sent to the caller
Joining and leaving are broadcast to the room as well.
"""

import logging
from collections import defaultdict
from typing import Dict, List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from academypro.auth.dependencies import CurrentUser, get_current_user, user_from_token
from academypro.database import crud, schemas
from academypro.database.database import get_db
from academypro.database.mongo import DocumentStore
from academypro.errors import AppError, BadRequestError, ForbiddenError, NotFoundError, ok
from academypro.resources import get_document_store

log = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

MAX_HISTORY = 200


class ConnectionManager:
    """Open sockets grouped by room."""

    def __init__(self):
        self.rooms: Dict[str, List[WebSocket]] = defaultdict(list)

    async def connect(self, room_id: str, websocket: WebSocket):
        await websocket.accept()
        self.rooms[room_id].append(websocket)

    def disconnect(self, room_id: str, websocket: WebSocket):
        connections = self.rooms.get(room_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.rooms.pop(room_id, None)

    async def broadcast(self, room_id: str, payload: dict):
        data = jsonable_encoder(payload)
        for connection in list(self.rooms.get(room_id, [])):
            try:
                await connection.send_json(data)
            except (WebSocketDisconnect, RuntimeError):
                self.disconnect(room_id, connection)


manager = ConnectionManager()


def _member_room(store: DocumentStore, room_id: str, user_id: str) -> dict:
    room = store.get_room(room_id)
    if not room:
        raise NotFoundError(f"Chat room {room_id} not found", error_code="ROOM_NOT_FOUND")
    if user_id not in room["members"]:
        raise ForbiddenError("You are not a member of this room")
    return room


# ==========================================
# REST
# ==========================================

@router.post("/room", status_code=status.HTTP_201_CREATED)
def create_room(
    body: schemas.RoomCreate,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: DocumentStore = Depends(get_document_store),
):
    if body.opponent_id == current.user_id:
        raise BadRequestError("Cannot open a chat with yourself")
    crud.require_user(db, body.opponent_id)
    room = store.create_room([current.user_id, body.opponent_id])
    log.info("Chat room %s opened by %s", room["id"], current.user_id)
    return ok("Chat room created", jsonable_encoder(room))


@router.get("/room")
def list_rooms(
    current: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    return ok("Chat rooms", jsonable_encoder(store.rooms_for(current.user_id)))


@router.get("/room/{room_id}/messages")
def room_messages(
    room_id: str,
    limit: int = 50,
    current: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    _member_room(store, room_id, current.user_id)
    limit = min(max(limit, 1), MAX_HISTORY)
    return ok("Chat messages", jsonable_encoder(store.messages(room_id, limit)))


# ==========================================
# WEBSOCKET
# ==========================================

@router.websocket("/ws/{room_id}")
async def chat_socket(
    websocket: WebSocket,
    room_id: str,
    token: str = "",
    store: DocumentStore = Depends(get_document_store),
):
    try:
        user = user_from_token(token)
        await run_in_threadpool(_member_room, store, room_id, user.user_id)
    except AppError as e:
        log.info("Chat socket refused for room %s: %s", room_id, e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(room_id, websocket)
    await manager.broadcast(room_id, {"type": "join", "room_id": room_id, "user_id": user.user_id})
    try:
        while True:
            frame = await websocket.receive_json()
            kind = frame.get("type") if isinstance(frame, dict) else None
            if kind == "message":
                text = str(frame.get("message", "")).strip()
                if not text:
                    continue
                message = await run_in_threadpool(store.add_message, room_id, user.user_id, text)
                await manager.broadcast(room_id, {"type": "message", **message})
            elif kind == "history":
                limit = min(max(int(frame.get("limit", 50)), 1), MAX_HISTORY)
                history = await run_in_threadpool(store.messages, room_id, limit)
                await websocket.send_json(jsonable_encoder({"type": "history", "messages": history}))
            else:
                await websocket.send_json({"type": "error", "message": "Unknown frame type"})
    except WebSocketDisconnect:
        pass
    except (TypeError, ValueError) as e:
        log.warning("Malformed chat frame in room %s: %s", room_id, e)
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        manager.disconnect(room_id, websocket)
    await manager.broadcast(room_id, {"type": "leave", "room_id": room_id, "user_id": user.user_id})
