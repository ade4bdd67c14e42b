from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from app.modules.battle.models import BattleMode, Question, Room


class CreateRoomRequest(BaseModel):
    host_id: str = Field(..., description="Stable id of the room creator")
    host_name: str = Field(..., description="Display name of room creator")
    mode: BattleMode = BattleMode.HEAD_TO_HEAD


class CreateRoomResponse(BaseModel):
    room_code: str
    ws_url: str
    room: Room


class JoinRoomRequest(BaseModel):
    guest_id: str
    guest_name: str


class JoinRoomResponse(BaseModel):
    ws_url: str
    room: Room


class ParticipantRequest(BaseModel):
    participant_id: str


class AnswerRequest(BaseModel):
    participant_id: str
    index: int
    answer: str


class AdvanceRequest(BaseModel):
    participant_id: str
    from_index: int


class WriteResponse(BaseModel):
    applied: bool
    room: Room


class RoomResponse(BaseModel):
    room: Room


class DailyChallengeResponse(BaseModel):
    completed: bool
    streak: int
    questions: list[Question] = Field(default_factory=list)


class CompleteDailyRequest(BaseModel):
    score: int = Field(..., ge=0)


class DailyRecordResponse(BaseModel):
    streak: int
    last_score: int
    total_completed: int
    last_completed: Optional[date] = None
