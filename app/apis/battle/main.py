from __future__ import annotations

import json
from datetime import date
from typing import Annotated, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response, WebSocket, WebSocketDisconnect, status

from app.core.config import settings
from app.core.logging import get_logger
from app.apis.battle.schemas import (
    AdvanceRequest,
    AnswerRequest,
    CompleteDailyRequest,
    CreateRoomRequest,
    CreateRoomResponse,
    DailyChallengeResponse,
    DailyRecordResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    ParticipantRequest,
    RoomResponse,
    WriteResponse,
)
from app.apis.deps import get_daily_challenges, get_room_store, get_today, get_vocabulary
from app.modules.battle.daily import DailyChallengeService
from app.modules.battle.errors import (
    AuthorityViolation,
    BattleError,
    NotAParticipant,
    RoomCodeUnavailable,
    RoomNotFound,
    RoomNotJoinable,
    StoreError,
    SyncWriteFailed,
)
from app.modules.battle.generator import build_for_mode
from app.modules.battle.models import Role, Room
from app.modules.battle.rooms import RoomStore
from app.modules.battle.vocabulary import VocabularySource


logger = get_logger(__name__)
router = APIRouter()

PREFIX = f"/{settings.app.version}/battle"

Rooms = Annotated[RoomStore, Depends(get_room_store)]


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, RoomNotFound):
        return HTTPException(status_code=404, detail="Room not found")
    if isinstance(exc, RoomNotJoinable):
        return HTTPException(status_code=409, detail="Room is no longer available")
    if isinstance(exc, (AuthorityViolation, NotAParticipant)):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, (SyncWriteFailed, StoreError, RoomCodeUnavailable)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _ws_url(room_code: str, participant_id: str) -> str:
    return f"{PREFIX}/ws/{room_code}?participant_id={quote(participant_id, safe='')}"


@router.post(f"{PREFIX}/rooms", response_model=CreateRoomResponse, tags=["battle"])
async def create_room(
    req: CreateRoomRequest,
    rooms: Rooms,
    vocabulary: Annotated[VocabularySource, Depends(get_vocabulary)],
) -> CreateRoomResponse:
    words = await vocabulary.list_words()
    questions = build_for_mode(words, req.mode)
    if not questions:
        raise HTTPException(
            status_code=422, detail="Vocabulary pool is too small to build questions"
        )
    try:
        room = await rooms.create_room(
            host_id=req.host_id, host_name=req.host_name, questions=questions
        )
    except (BattleError, StoreError) as e:
        raise _http_error(e)
    return CreateRoomResponse(
        room_code=room.room_code, ws_url=_ws_url(room.room_code, req.host_id), room=room
    )


@router.post(
    f"{PREFIX}/rooms/{{room_code}}/join", response_model=JoinRoomResponse, tags=["battle"]
)
async def join_room(room_code: str, req: JoinRoomRequest, rooms: Rooms) -> JoinRoomResponse:
    try:
        room = await rooms.join_room(
            room_code, guest_id=req.guest_id, guest_name=req.guest_name
        )
    except (BattleError, StoreError) as e:
        raise _http_error(e)
    return JoinRoomResponse(ws_url=_ws_url(room.room_code, req.guest_id), room=room)


@router.get(f"{PREFIX}/rooms/{{room_code}}", response_model=RoomResponse, tags=["battle"])
async def get_room(room_code: str, rooms: Rooms) -> RoomResponse:
    try:
        return RoomResponse(room=await rooms.get_room(room_code))
    except (BattleError, StoreError) as e:
        raise _http_error(e)


@router.post(
    f"{PREFIX}/rooms/{{room_code}}/start", response_model=WriteResponse, tags=["battle"]
)
async def start_game(room_code: str, req: ParticipantRequest, rooms: Rooms) -> WriteResponse:
    try:
        room, role = await rooms.resolve_role(room_code, req.participant_id)
        updated = await rooms.start_game(room.room_code, role=role)
    except (BattleError, StoreError) as e:
        raise _http_error(e)
    return WriteResponse(applied=updated is not None, room=updated or room)


@router.post(
    f"{PREFIX}/rooms/{{room_code}}/answer", response_model=WriteResponse, tags=["battle"]
)
async def submit_answer(room_code: str, req: AnswerRequest, rooms: Rooms) -> WriteResponse:
    try:
        room, role = await rooms.resolve_role(room_code, req.participant_id)
        updated = await rooms.submit_answer(
            room.room_code, role=role, index=req.index, answer=req.answer
        )
    except (BattleError, StoreError) as e:
        raise _http_error(e)
    return WriteResponse(applied=updated is not None, room=updated or room)


@router.post(
    f"{PREFIX}/rooms/{{room_code}}/advance", response_model=WriteResponse, tags=["battle"]
)
async def advance(room_code: str, req: AdvanceRequest, rooms: Rooms) -> WriteResponse:
    try:
        room, role = await rooms.resolve_role(room_code, req.participant_id)
        updated = await rooms.advance(room.room_code, role=role, from_index=req.from_index)
    except (BattleError, StoreError) as e:
        raise _http_error(e)
    return WriteResponse(applied=updated is not None, room=updated or room)


@router.delete(
    f"{PREFIX}/rooms/{{room_code}}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["battle"],
)
async def delete_room(room_code: str, rooms: Rooms) -> Response:
    await rooms.delete_room(room_code)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    f"{PREFIX}/daily/{{user_id}}", response_model=DailyChallengeResponse, tags=["battle"]
)
async def get_daily(
    user_id: str,
    daily: Annotated[DailyChallengeService, Depends(get_daily_challenges)],
    today: Annotated[date, Depends(get_today)],
) -> DailyChallengeResponse:
    try:
        challenge = await daily.load(user_id, today)
    except StoreError as e:
        raise _http_error(e)
    return DailyChallengeResponse(**challenge.model_dump())


@router.post(
    f"{PREFIX}/daily/{{user_id}}/complete",
    response_model=DailyRecordResponse,
    tags=["battle"],
)
async def complete_daily(
    user_id: str,
    req: CompleteDailyRequest,
    daily: Annotated[DailyChallengeService, Depends(get_daily_challenges)],
    today: Annotated[date, Depends(get_today)],
) -> DailyRecordResponse:
    try:
        record = await daily.complete(user_id, req.score, today)
    except StoreError as e:
        raise _http_error(e)
    return DailyRecordResponse(**record.model_dump())


@router.websocket(f"{PREFIX}/ws/{{room_code}}")
async def ws_room(websocket: WebSocket, room_code: str, rooms: Rooms) -> None:
    participant_id = websocket.query_params.get("participant_id")
    if not participant_id:
        await websocket.close(code=4401)
        return
    try:
        room, role = await rooms.resolve_role(room_code, participant_id)
    except RoomNotFound:
        await websocket.close(code=4404)
        return
    except NotAParticipant:
        await websocket.close(code=4403)
        return

    await websocket.accept()
    extra = {"room": room.room_code, "role": role.value}
    logger.info("WS connected", extra=extra)

    async def push(snapshot: Optional[Room]) -> None:
        if snapshot is None:
            await websocket.send_json(
                {"type": "room_deleted", "data": {"room_code": room.room_code}}
            )
        else:
            await websocket.send_json({"type": "room_state", "data": snapshot.to_document()})

    unsubscribe = await rooms.subscribe(room.room_code, push)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(msg, dict):
                continue
            await _handle_ws_message(websocket, rooms, room.room_code, role, msg)
    except WebSocketDisconnect:
        logger.info("WS disconnected", extra=extra)
    finally:
        unsubscribe()


async def _handle_ws_message(
    websocket: WebSocket, rooms: RoomStore, room_code: str, role: Role, msg: dict
) -> None:
    mtype = msg.get("type")
    try:
        if mtype == "answer":
            await rooms.submit_answer(
                room_code, role=role, index=int(msg["index"]), answer=str(msg["answer"])
            )
        elif mtype == "advance":
            await rooms.advance(room_code, role=role, from_index=int(msg["from_index"]))
        elif mtype == "start":
            await rooms.start_game(room_code, role=role)
    except (KeyError, TypeError, ValueError):
        await websocket.send_json({"type": "error", "data": {"detail": "malformed message"}})
    except (BattleError, StoreError) as exc:
        await websocket.send_json({"type": "error", "data": {"detail": str(exc)}})
