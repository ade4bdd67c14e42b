"""Reconciliation of remote room snapshots into a participant's local view.

`reconcile(view, room)` is a pure function: it never touches the store or
any timer. It returns the new view plus the actions the caller must carry
out (start the game, reseed the countdown, finalise). Snapshots that would
move the view backwards (lower status rank or lower question index than
already seen) are stale and produce no change.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.core.logging import get_logger
from app.modules.battle.models import Outcome, Question, Role, Room, RoomStatus, outcome_for


logger = get_logger(__name__)


class LocalPhase(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class SyncAction(str, Enum):
    START_GAME = "start_game"
    RESEED_TIMER = "reseed_timer"
    OPPONENT_LEFT = "opponent_left"
    FINALIZE = "finalize"


class LocalView(BaseModel):
    """What one participant currently believes about the contest."""

    role: Role
    phase: LocalPhase = LocalPhase.WAITING
    room_status: RoomStatus = RoomStatus.WAITING
    questions: list[Question] = Field(default_factory=list)
    current_index: int = 0
    my_score: int = 0
    opponent_score: int = 0
    opponent_name: Optional[str] = None
    selected_answer: Optional[str] = None
    timed_out: bool = False
    abandoned: bool = False

    @property
    def answered(self) -> bool:
        return self.selected_answer is not None or self.timed_out

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    @property
    def host_score(self) -> int:
        return self.my_score if self.role is Role.HOST else self.opponent_score

    @property
    def guest_score(self) -> int:
        return self.opponent_score if self.role is Role.HOST else self.my_score

    def outcome(self) -> Outcome:
        return outcome_for(self.role, self.host_score, self.guest_score)


def is_stale(view: LocalView, room: Room) -> bool:
    if room.status.rank < view.room_status.rank:
        return True
    return room.current_index < view.current_index


def _settles_local_finish(view: LocalView, room: Optional[Room]) -> bool:
    """A view finalised locally still takes the room's own `finished` once."""
    return (
        room is not None
        and room.status is RoomStatus.FINISHED
        and view.room_status is not RoomStatus.FINISHED
        and not view.abandoned
    )


def _adopt_final_scores(view: LocalView, room: Room) -> LocalView:
    logger.info(
        "Adopting final scores %d-%d from the room",
        room.host_score,
        room.guest_score,
        extra={"room": room.room_code, "role": view.role.value},
    )
    return view.model_copy(
        update={
            "room_status": room.status,
            "my_score": room.score_of(view.role),
            "opponent_score": room.score_of(view.role.other),
        }
    )


def reconcile(
    view: LocalView, room: Optional[Room]
) -> tuple[LocalView, list[SyncAction]]:
    if view.phase is LocalPhase.FINISHED:
        if _settles_local_finish(view, room):
            return _adopt_final_scores(view, room), []
        return view, []

    if room is None:
        return (
            view.model_copy(update={"phase": LocalPhase.FINISHED, "abandoned": True}),
            [SyncAction.OPPONENT_LEFT, SyncAction.FINALIZE],
        )

    if is_stale(view, room):
        logger.debug(
            "Ignoring stale notification (status=%s index=%d)",
            room.status.value,
            room.current_index,
            extra={"room": room.room_code, "role": view.role.value},
        )
        return view, []

    role = view.role
    updates: dict[str, Any] = {"room_status": room.status}
    actions: list[SyncAction] = []
    phase = view.phase

    if room.status in (RoomStatus.READY, RoomStatus.PLAYING):
        if phase is LocalPhase.WAITING:
            # Lock in the embedded questions once; they are never replaced.
            updates.update(
                phase=LocalPhase.PLAYING,
                questions=view.questions or list(room.questions),
                opponent_name=room.name_of(role.other),
                current_index=room.current_index,
                selected_answer=None,
                timed_out=False,
            )
            phase = LocalPhase.PLAYING
            actions.append(SyncAction.RESEED_TIMER)
        elif room.current_index > view.current_index:
            updates.update(
                current_index=room.current_index,
                selected_answer=None,
                timed_out=False,
            )
            actions.append(SyncAction.RESEED_TIMER)
        if role is Role.HOST and room.status is RoomStatus.READY:
            actions.insert(0, SyncAction.START_GAME)

    if room.status in (RoomStatus.PLAYING, RoomStatus.FINISHED):
        updates.update(
            my_score=max(view.my_score, room.score_of(role)),
            opponent_score=max(view.opponent_score, room.score_of(role.other)),
        )
        if view.opponent_name is None and "opponent_name" not in updates:
            updates["opponent_name"] = room.name_of(role.other)

    if room.status is RoomStatus.FINISHED:
        if not view.questions:
            updates["questions"] = list(room.questions)
        updates["phase"] = LocalPhase.FINISHED
        actions = [SyncAction.FINALIZE]

    return view.model_copy(update=updates), actions
