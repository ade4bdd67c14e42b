"""Pydantic models for head-to-head vocabulary battles.

Rooms are plain documents: `Room.to_document()` produces the JSON-able dict
written to the shared store and `Room.from_document()` reads it back. Absent
optional fields (guest identity, answers) are missing keys, never nulls.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


OPTIONS_PER_QUESTION = 4


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class VocabularyWord(BaseModel):
    id: str
    word: str
    definition: str


class Question(BaseModel):
    """A single multiple-choice question: pick the definition of `prompt`."""

    word_id: Optional[str] = None
    prompt: str
    correct_option: str
    options: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_options(self) -> "Question":
        if len(self.options) != OPTIONS_PER_QUESTION:
            raise ValueError(f"expected {OPTIONS_PER_QUESTION} options, got {len(self.options)}")
        if len(set(self.options)) != len(self.options):
            raise ValueError("options must be distinct")
        if self.correct_option not in self.options:
            raise ValueError("correct_option must be one of the options")
        return self

    def is_correct(self, answer: str) -> bool:
        return answer == self.correct_option


class BattleMode(str, Enum):
    HEAD_TO_HEAD = "head_to_head"
    DAILY = "daily"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"

    @property
    def other(self) -> "Role":
        return Role.GUEST if self is Role.HOST else Role.HOST


class RoomStatus(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    PLAYING = "playing"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @staticmethod
    def can_transition(old: "RoomStatus", new: "RoomStatus") -> bool:
        return new.rank >= old.rank


_STATUS_RANK = {
    RoomStatus.WAITING: 0,
    RoomStatus.READY: 1,
    RoomStatus.PLAYING: 2,
    RoomStatus.FINISHED: 3,
}


class Outcome(str, Enum):
    WIN = "win"
    LOSE = "lose"
    DRAW = "draw"


def decide_winner(host_score: int, guest_score: int) -> Optional[Role]:
    """Winner by score comparison; None means a draw."""
    if host_score > guest_score:
        return Role.HOST
    if guest_score > host_score:
        return Role.GUEST
    return None


def outcome_for(role: Role, host_score: int, guest_score: int) -> Outcome:
    winner = decide_winner(host_score, guest_score)
    if winner is None:
        return Outcome.DRAW
    return Outcome.WIN if winner is role else Outcome.LOSE


class Room(BaseModel):
    """The shared authoritative record of a two-party contest."""

    room_code: str
    host_id: str
    host_name: str
    guest_id: Optional[str] = None
    guest_name: Optional[str] = None
    status: RoomStatus = RoomStatus.WAITING
    questions: list[Question] = Field(default_factory=list)
    current_index: int = 0
    host_score: int = 0
    guest_score: int = 0
    host_answer: Optional[str] = None
    guest_answer: Optional[str] = None
    created_at: str = Field(default_factory=_now_iso)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Room":
        return cls.model_validate(document)

    @property
    def last_index(self) -> int:
        return len(self.questions) - 1

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= self.last_index

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    def score_of(self, role: Role) -> int:
        return self.host_score if role is Role.HOST else self.guest_score

    def answer_of(self, role: Role) -> Optional[str]:
        return self.host_answer if role is Role.HOST else self.guest_answer

    def name_of(self, role: Role) -> Optional[str]:
        return self.host_name if role is Role.HOST else self.guest_name

    def role_of(self, participant_id: str) -> Optional[Role]:
        if participant_id == self.host_id:
            return Role.HOST
        if self.guest_id is not None and participant_id == self.guest_id:
            return Role.GUEST
        return None

    def winner(self) -> Optional[Role]:
        return decide_winner(self.host_score, self.guest_score)

    def outcome_for(self, role: Role) -> Outcome:
        return outcome_for(role, self.host_score, self.guest_score)


class SoloSession(BaseModel):
    """Local-only contest against the opponent simulator.

    Transition methods return a new session and leave the receiver untouched,
    so the controller can treat each step as `(state, event) -> state`.
    """

    questions: list[Question]
    difficulty: Difficulty
    current_index: int = 0
    player_score: int = 0
    opponent_score: int = 0
    player_answer: Optional[str] = None
    timed_out: bool = False
    finished: bool = False

    @property
    def current_question(self) -> Question:
        return self.questions[self.current_index]

    @property
    def answered(self) -> bool:
        return self.player_answer is not None or self.timed_out

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    def record_answer(self, answer: str, opponent_correct: bool) -> "SoloSession":
        if self.finished or self.answered:
            return self
        gained = 1 if self.current_question.is_correct(answer) else 0
        return self.model_copy(
            update={
                "player_answer": answer,
                "player_score": self.player_score + gained,
                "opponent_score": self.opponent_score + (1 if opponent_correct else 0),
            }
        )

    def record_timeout(self, opponent_correct: bool) -> "SoloSession":
        if self.finished or self.answered:
            return self
        return self.model_copy(
            update={
                "timed_out": True,
                "opponent_score": self.opponent_score + (1 if opponent_correct else 0),
            }
        )

    def advanced(self) -> "SoloSession":
        """Move to the next question, or finish after the last one."""
        if self.finished:
            return self
        if self.is_last_question:
            return self.model_copy(update={"finished": True})
        return self.model_copy(
            update={
                "current_index": self.current_index + 1,
                "player_answer": None,
                "timed_out": False,
            }
        )

    def outcome(self) -> Outcome:
        # The player plays the host side of the comparison.
        return outcome_for(Role.HOST, self.player_score, self.opponent_score)
