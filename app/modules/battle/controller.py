"""Turn/timer controllers for room battles and solo battles.

A `RoomBattleController` drives one participant of a two-party room. Each
question is resolved by exactly one of three paths, first one wins:

1. the participant answers before the countdown expires;
2. the countdown expires (a miss);
3. a notification shows the host already moved on.

Only the host turns a resolution into a pointer advance. The guest follows
the host's pointer and never writes `current_index` or `status`.

`SoloBattleController` runs the same countdown/settle flow locally against
the opponent simulator.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

from app.core.config import BattleSettings, settings
from app.core.logging import get_logger, get_participant_logger
from app.modules.battle.callbacks import invoke
from app.modules.battle.errors import BattleError, StoreError
from app.modules.battle.models import Difficulty, Outcome, Question, Role, Room, SoloSession
from app.modules.battle.opponent import OpponentSimulator
from app.modules.battle.protocol import LocalPhase, LocalView, SyncAction, reconcile
from app.modules.battle.rooms import RoomStore, normalize_code
from app.modules.battle.store import Unsubscribe
from app.modules.battle.timer import Countdown


logger = get_logger(__name__)

UpdateListener = Callable[..., Optional[Awaitable[None]]]


class _TaskOwner:
    """Tracks background tasks so every exit path can cancel them."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()


class RoomBattleController(_TaskOwner):
    def __init__(
        self,
        rooms: RoomStore,
        *,
        room_code: str,
        role: Role,
        config: Optional[BattleSettings] = None,
        on_update: Optional[UpdateListener] = None,
    ) -> None:
        super().__init__()
        self._rooms = rooms
        self.room_code = normalize_code(room_code)
        self.role = role
        self._log = get_participant_logger(__name__, self.room_code, role.value)
        self._config = config or settings.battle
        self._on_update = on_update
        self.view = LocalView(role=role)
        self.last_room: Optional[Room] = None
        self.finished = asyncio.Event()
        self._countdown: Optional[Countdown] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._question_deadline = 0.0

    @property
    def time_left(self) -> Optional[int]:
        return self._countdown.remaining if self._countdown else None

    @property
    def outcome(self) -> Optional[Outcome]:
        if self.view.phase is not LocalPhase.FINISHED:
            return None
        return self.view.outcome()

    # Lifecycle ----------------------------------------------------------
    async def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = await self._rooms.subscribe(self.room_code, self._on_change)

    async def leave(self) -> None:
        """Stop timers, unsubscribe and best-effort delete the room."""
        self._stop()
        if self.view.phase is not LocalPhase.FINISHED:
            self.view = self.view.model_copy(update={"phase": LocalPhase.FINISHED})
        self.finished.set()
        await self._rooms.delete_room(self.room_code)

    def _stop(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        self._cancel_tasks()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Remote changes -----------------------------------------------------
    async def _on_change(self, room: Optional[Room]) -> None:
        if room is not None:
            self.last_room = room
        self.view, actions = reconcile(self.view, room)
        for action in actions:
            if action is SyncAction.START_GAME:
                await self._guarded(self._rooms.start_game(self.room_code, role=self.role))
            elif action is SyncAction.RESEED_TIMER:
                self._reseed()
            elif action is SyncAction.OPPONENT_LEFT:
                self._log.info("Room closed by the other side")
            elif action is SyncAction.FINALIZE:
                self._finalize()
        await self._notify()

    def _reseed(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        index = self.view.current_index
        self._question_deadline = asyncio.get_running_loop().time() + (
            self._config.question_seconds * self._config.tick_seconds
        )
        self._countdown = Countdown(
            self._config.question_seconds,
            tick_seconds=self._config.tick_seconds,
            on_tick=lambda _remaining: self._notify(),
            on_expire=lambda: self._on_expire(index),
        ).start()

    def _finalize(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        self._cancel_tasks()
        if not self.finished.is_set():
            self._log.info(
                "Battle finished %d-%d (%s)",
                self.view.host_score,
                self.view.guest_score,
                self.view.outcome().value,
            )
        self.finished.set()

    # Resolution paths ---------------------------------------------------
    async def submit_answer(self, answer: str) -> bool:
        """Record an answer for the current question; False if it was a no-op."""
        view = self.view
        question = view.current_question
        if view.phase is not LocalPhase.PLAYING or view.answered or question is None:
            return False
        index = view.current_index
        gained = 1 if question.is_correct(answer) else 0
        self.view = view.model_copy(
            update={"selected_answer": answer, "my_score": view.my_score + gained}
        )
        if self._countdown is not None:
            self._countdown.cancel()
        await self._notify()
        try:
            written = await self._rooms.submit_answer(
                self.room_code, role=self.role, index=index, answer=answer
            )
        except (BattleError, StoreError) as exc:
            # Fire-and-forget: the local score stands even though the room missed it.
            self._log.warning("Answer write failed: %s", exc)
        else:
            if written is None and gained:
                # The room had already moved on; the answer never counted.
                self.view = self.view.model_copy(
                    update={"my_score": max(0, self.view.my_score - gained)}
                )
        self._spawn(self._resolve_after(index, self._config.answer_settle_seconds))
        return True

    def _on_expire(self, index: int) -> None:
        view = self.view
        if view.phase is not LocalPhase.PLAYING or view.current_index != index or view.answered:
            return
        self.view = view.model_copy(update={"timed_out": True})
        self._log.debug("Question %d timed out", index)
        self._spawn(self._resolve_after(index, self._config.timeout_settle_seconds))

    async def _resolve_after(self, index: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.view.phase is not LocalPhase.PLAYING or self.view.current_index != index:
            return
        if self.role is Role.HOST:
            await self._guarded(
                self._rooms.advance(self.room_code, role=self.role, from_index=index)
            )
        elif self.view.is_last_question:
            self._spawn(self._finish_after_grace(index))

    async def _finish_after_grace(self, index: int) -> None:
        # Measured from the question deadline: the host may answer until then.
        settle_by = (
            self._question_deadline
            + self._config.timeout_settle_seconds
            + self._config.guest_finish_grace_seconds
        )
        await asyncio.sleep(max(0.0, settle_by - asyncio.get_running_loop().time()))
        if self.view.phase is LocalPhase.PLAYING and self.view.current_index == index:
            self._log.warning("Host never finished the room; finalising locally")
            self.view = self.view.model_copy(update={"phase": LocalPhase.FINISHED})
            self._finalize()
            await self._notify()

    # Helpers ------------------------------------------------------------
    async def _guarded(self, write: Awaitable[Optional[Room]]) -> Optional[Room]:
        try:
            return await write
        except (BattleError, StoreError) as exc:
            self._log.warning("Room write failed: %s", exc)
            return None

    async def _notify(self) -> None:
        if self._on_update is not None:
            await invoke(self._on_update, self)


class SoloBattleController(_TaskOwner):
    def __init__(
        self,
        questions: Sequence[Question],
        difficulty: Difficulty,
        *,
        simulator: Optional[OpponentSimulator] = None,
        config: Optional[BattleSettings] = None,
        on_update: Optional[UpdateListener] = None,
    ) -> None:
        super().__init__()
        if not questions:
            raise ValueError("a solo battle needs at least one question")
        self.session = SoloSession(questions=list(questions), difficulty=difficulty)
        self.simulator = simulator or OpponentSimulator()
        self.opponent_name = self.simulator.display_name(difficulty)
        self._config = config or settings.battle
        self._on_update = on_update
        self._countdown: Optional[Countdown] = None
        self.finished = asyncio.Event()

    @property
    def time_left(self) -> Optional[int]:
        return self._countdown.remaining if self._countdown else None

    @property
    def outcome(self) -> Optional[Outcome]:
        return self.session.outcome() if self.session.finished else None

    async def start(self) -> None:
        self._reseed()
        await self._notify()

    async def leave(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        self._cancel_tasks()
        self.finished.set()

    def _reseed(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        index = self.session.current_index
        self._countdown = Countdown(
            self._config.question_seconds,
            tick_seconds=self._config.tick_seconds,
            on_tick=lambda _remaining: self._notify(),
            on_expire=lambda: self._on_expire(index),
        ).start()

    async def submit_answer(self, answer: str) -> bool:
        session = self.session
        if session.finished or session.answered:
            return False
        if self._countdown is not None:
            self._countdown.cancel()
        opponent_correct = self.simulator.should_answer_correctly(session.difficulty)
        self.session = session.record_answer(answer, opponent_correct)
        await self._notify()
        self._spawn(
            self._advance_after(session.current_index, self._config.answer_settle_seconds)
        )
        return True

    def _on_expire(self, index: int) -> None:
        session = self.session
        if session.finished or session.answered or session.current_index != index:
            return
        opponent_correct = self.simulator.should_answer_correctly(session.difficulty)
        self.session = session.record_timeout(opponent_correct)
        self._spawn(self._advance_after(index, self._config.timeout_settle_seconds))

    async def _advance_after(self, index: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.session.current_index != index or self.session.finished:
            return
        self.session = self.session.advanced()
        if self.session.finished:
            logger.info(
                "Solo battle finished %d-%d against %s",
                self.session.player_score,
                self.session.opponent_score,
                self.opponent_name,
            )
            self.finished.set()
        else:
            self._reseed()
        await self._notify()

    async def _notify(self) -> None:
        if self._on_update is not None:
            await invoke(self._on_update, self)
