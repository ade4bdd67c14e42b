"""Room-level contract over a shared document store.

Every mutation is a partial merge keyed by field name, and every merge made
on behalf of a participant goes through `check_authority`:

- the host owns the question pointer (`current_index`), `status`, its own
  answer/score, and may clear (never set) the guest's answer;
- the guest owns only `guest_answer` and `guest_score`.

Writes that would regress status, move the pointer backwards or past the
last question, decrease a score, or overwrite an answer are rejected before
reaching the store. There is no locking; the partition above is what keeps
two concurrent writers from clobbering each other.
"""

from __future__ import annotations

import asyncio
import random
import string
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from app.core.config import BattleSettings, settings
from app.core.logging import get_logger
from app.modules.battle.callbacks import Listener, invoke
from app.modules.battle.errors import (
    AuthorityViolation,
    DocumentExists,
    DocumentNotFound,
    NotAParticipant,
    RoomCodeUnavailable,
    RoomNotFound,
    RoomNotJoinable,
    StoreError,
    SyncWriteFailed,
    WriteConflict,
)
from app.modules.battle.models import Question, Role, Room, RoomStatus
from app.modules.battle.store import DocumentStore, Unsubscribe, merge_fields


logger = get_logger(__name__)

T = TypeVar("T")

ROOM_CODE_ALPHABET = string.digits + string.ascii_uppercase

HOST_FIELDS = frozenset(
    {"host_score", "host_answer", "current_index", "status", "guest_answer"}
)
GUEST_FIELDS = frozenset({"guest_score", "guest_answer"})


def normalize_code(code: str) -> str:
    return code.strip().upper()


def check_authority(room: Room, role: Role, fields: dict[str, Any]) -> None:
    """Raise AuthorityViolation if `role` may not merge `fields` into `room`."""

    def deny(reason: str) -> None:
        raise AuthorityViolation(
            f"{role.value} write rejected: {reason}", room_code=room.room_code
        )

    allowed = HOST_FIELDS if role is Role.HOST else GUEST_FIELDS
    forbidden = sorted(set(fields) - allowed)
    if forbidden:
        deny(f"fields {forbidden} are not writable by the {role.value}")

    if role is Role.HOST and fields.get("guest_answer") is not None:
        deny("host may only clear guest_answer")

    index = room.current_index
    if "current_index" in fields:
        index = fields["current_index"]
        if not isinstance(index, int) or index < room.current_index:
            deny("current_index may not decrease")
        if index > room.last_index:
            deny("current_index past the last question")
        if index > room.current_index and any(
            name not in fields or fields[name] is not None
            for name in ("host_answer", "guest_answer")
        ):
            deny("advancing must clear both answers")

    if "status" in fields:
        status = RoomStatus(fields["status"])
        if not RoomStatus.can_transition(room.status, status):
            deny(f"status may not go from {room.status.value} to {status.value}")

    for side in Role:
        score_field = f"{side.value}_score"
        if score_field in fields:
            score = fields[score_field]
            if not isinstance(score, int) or score < room.score_of(side):
                deny(f"{score_field} may not decrease")
            if score > index + 1:
                deny(f"{score_field} exceeds questions played")

    answer_field = f"{role.value}_answer"
    if (
        fields.get(answer_field) is not None
        and index == room.current_index
        and room.answer_of(role) is not None
    ):
        deny("answer already recorded for this question")


class RoomStore:
    """Creates, joins and mutates rooms on behalf of host and guest."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        config: Optional[BattleSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._config = config or settings.battle
        self._rng = rng or random.Random()

    @property
    def store(self) -> DocumentStore:
        return self._store

    # Room lifecycle -----------------------------------------------------
    def _new_code(self) -> str:
        return "".join(
            self._rng.choice(ROOM_CODE_ALPHABET)
            for _ in range(self._config.room_code_length)
        )

    async def create_room(
        self, *, host_id: str, host_name: str, questions: Sequence[Question]
    ) -> Room:
        if not questions:
            raise ValueError("a room needs at least one question")
        attempts = max(1, self._config.room_code_attempts)
        for _ in range(attempts):
            room = Room(
                room_code=self._new_code(),
                host_id=host_id,
                host_name=host_name,
                questions=list(questions),
            )
            document = room.to_document()
            try:
                await self._retrying(
                    room.room_code,
                    document,
                    lambda: self._store.create(room.room_code, document),
                )
            except DocumentExists:
                logger.info("Room code collision, retrying", extra={"room": room.room_code})
                continue
            logger.info(
                "Room created with %d questions",
                len(room.questions),
                extra={"room": room.room_code, "role": Role.HOST.value},
            )
            return room
        raise RoomCodeUnavailable(attempts)

    async def get_room(self, code: str) -> Room:
        code = normalize_code(code)
        document = await self._store.get(code)
        if document is None:
            raise RoomNotFound(code)
        return Room.from_document(document)

    async def resolve_role(self, code: str, participant_id: str) -> tuple[Room, Role]:
        room = await self.get_room(code)
        role = room.role_of(participant_id)
        if role is None:
            raise NotAParticipant(room.room_code, participant_id)
        return room, role

    async def join_room(self, code: str, *, guest_id: str, guest_name: str) -> Room:
        room = await self.get_room(code)
        if room.status is not RoomStatus.WAITING:
            raise RoomNotJoinable(room.room_code, room.status.value)
        if guest_id == room.host_id:
            raise RoomNotJoinable(room.room_code, room.status.value)
        fields = {
            "guest_id": guest_id,
            "guest_name": guest_name,
            "status": RoomStatus.READY.value,
        }
        try:
            await self._write(
                room.room_code, fields, expect={"status": RoomStatus.WAITING.value}
            )
        except WriteConflict as exc:
            raise RoomNotJoinable(room.room_code, "taken") from exc
        logger.info(
            "Guest %s joined", guest_name, extra={"room": room.room_code, "role": "guest"}
        )
        return _applied(room, fields)

    async def delete_room(self, code: str) -> None:
        """Best-effort delete; failures are logged and swallowed."""
        code = normalize_code(code)
        try:
            await self._store.delete(code)
        except Exception:  # noqa: BLE001
            logger.warning("Room delete failed", exc_info=True, extra={"room": code})
            return
        logger.info("Room deleted", extra={"room": code})

    # Gameplay writes ----------------------------------------------------
    async def start_game(self, code: str, *, role: Role) -> Optional[Room]:
        """Host-only `ready -> playing`; returns None when there is nothing to do."""
        if role is not Role.HOST:
            raise AuthorityViolation("only the host starts the game", room_code=code)
        room = await self.get_room(code)
        if room.status is not RoomStatus.READY:
            return None
        try:
            return await self.apply_update(
                room.room_code,
                role,
                {"status": RoomStatus.PLAYING.value},
                room=room,
                expect={"status": RoomStatus.READY.value},
            )
        except WriteConflict:
            return None

    async def submit_answer(
        self, code: str, *, role: Role, index: int, answer: str
    ) -> Optional[Room]:
        """Record `role`'s answer for question `index`.

        Returns None without writing when the room has moved on, is not in
        play, or this side already answered.
        """
        room = await self.get_room(code)
        if room.status not in (RoomStatus.READY, RoomStatus.PLAYING):
            return None
        if room.current_index != index:
            logger.debug(
                "Dropping answer for superseded question %d",
                index,
                extra={"room": room.room_code, "role": role.value},
            )
            return None
        if room.answer_of(role) is not None:
            return None
        answer_field = f"{role.value}_answer"
        fields: dict[str, Any] = {answer_field: answer}
        if room.questions[index].is_correct(answer):
            fields[f"{role.value}_score"] = room.score_of(role) + 1
        try:
            return await self.apply_update(
                room.room_code,
                role,
                fields,
                room=room,
                expect={"current_index": index, answer_field: None},
            )
        except WriteConflict as exc:
            logger.debug(
                "Answer for question %d lost the race on %s",
                index,
                exc.field,
                extra={"room": room.room_code, "role": role.value},
            )
            return None

    async def advance(self, code: str, *, role: Role, from_index: int) -> Optional[Room]:
        """Host-only: move past `from_index`, finishing the room after the last question."""
        if role is not Role.HOST:
            raise AuthorityViolation("only the host advances the question", room_code=code)
        room = await self.get_room(code)
        if room.status is RoomStatus.FINISHED or room.current_index != from_index:
            return None
        if room.is_last_question:
            fields: dict[str, Any] = {"status": RoomStatus.FINISHED.value}
        else:
            fields = {
                "current_index": from_index + 1,
                "host_answer": None,
                "guest_answer": None,
            }
        try:
            updated = await self.apply_update(
                room.room_code,
                role,
                fields,
                room=room,
                expect={"current_index": from_index},
            )
        except WriteConflict:
            return None
        logger.info(
            "Advanced past question %d",
            from_index,
            extra={"room": room.room_code, "role": role.value},
        )
        return updated

    async def finish(self, code: str, *, role: Role) -> Optional[Room]:
        if role is not Role.HOST:
            raise AuthorityViolation("only the host finishes the room", room_code=code)
        room = await self.get_room(code)
        if room.status is RoomStatus.FINISHED:
            return None
        return await self.apply_update(
            room.room_code, role, {"status": RoomStatus.FINISHED.value}, room=room
        )

    async def apply_update(
        self,
        code: str,
        role: Role,
        fields: dict[str, Any],
        *,
        room: Optional[Room] = None,
        expect: Optional[dict[str, Any]] = None,
    ) -> Room:
        """Authority-checked partial merge; returns the room as written.

        `expect` makes the merge conditional on the stored values of the named
        fields and raises `WriteConflict` if another writer changed them.
        """
        code = normalize_code(code)
        if room is None:
            room = await self.get_room(code)
        check_authority(room, role, fields)
        await self._write(code, fields, expect=expect)
        return _applied(room, fields)

    # Notifications ------------------------------------------------------
    async def subscribe(self, code: str, on_change: Listener) -> Unsubscribe:
        """Subscribe to a room; `on_change` receives a Room, or None once deleted."""

        async def listener(document: Optional[dict[str, Any]]) -> None:
            room = Room.from_document(document) if document is not None else None
            await invoke(on_change, room)

        return await self._store.subscribe(normalize_code(code), listener)

    # Internals ----------------------------------------------------------
    async def _write(
        self, code: str, fields: dict[str, Any], *, expect: Optional[dict[str, Any]] = None
    ) -> None:
        try:
            await self._retrying(
                code, fields, lambda: self._store.merge_update(code, fields, expect=expect)
            )
        except DocumentNotFound as exc:
            raise RoomNotFound(code) from exc

    async def _retrying(
        self, code: str, fields: dict[str, Any], op: Callable[[], Awaitable[T]]
    ) -> T:
        attempt = 0
        while True:
            try:
                return await op()
            except StoreError as exc:
                attempt += 1
                if attempt > self._config.write_retries:
                    logger.error(
                        "Write failed after %d attempts: %s",
                        attempt,
                        exc,
                        extra={"room": code},
                    )
                    raise SyncWriteFailed(code, fields) from exc
                delay = self._config.write_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Write failed (attempt %d), retrying in %.2fs: %s",
                    attempt,
                    delay,
                    exc,
                    extra={"room": code},
                )
                await asyncio.sleep(delay)


def _applied(room: Room, fields: dict[str, Any]) -> Room:
    return Room.from_document(merge_fields(room.to_document(), fields))
