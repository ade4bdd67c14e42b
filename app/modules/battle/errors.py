"""Battle error taxonomy.

Store-level errors describe the transport; room-level errors describe the
contest and are what API handlers and controllers deal with.
"""

from __future__ import annotations

from typing import Any, Optional


class StoreError(Exception):
    """Transient failure talking to the shared document store."""


class DocumentNotFound(Exception):
    def __init__(self, key: str) -> None:
        super().__init__(f"document {key!r} does not exist")
        self.key = key


class DocumentExists(Exception):
    def __init__(self, key: str) -> None:
        super().__init__(f"document {key!r} already exists")
        self.key = key


class WriteConflict(Exception):
    """A conditional merge whose expected field values no longer hold."""

    def __init__(self, key: str, field: str) -> None:
        super().__init__(f"document {key!r} changed {field!r} before the write")
        self.key = key
        self.field = field


class BattleError(Exception):
    """Base class for room-level failures."""

    def __init__(self, message: str, *, room_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.room_code = room_code


class RoomNotFound(BattleError):
    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room {room_code} not found", room_code=room_code)


class RoomNotJoinable(BattleError):
    def __init__(self, room_code: str, status: str) -> None:
        super().__init__(
            f"Room {room_code} is no longer available (status={status})",
            room_code=room_code,
        )
        self.status = status


class RoomCodeUnavailable(BattleError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a free room code after {attempts} attempts")


class NotAParticipant(BattleError):
    def __init__(self, room_code: str, participant_id: str) -> None:
        super().__init__(
            f"{participant_id} is not a participant of room {room_code}",
            room_code=room_code,
        )
        self.participant_id = participant_id


class AuthorityViolation(BattleError):
    """A write that the authority rule does not allow for the writing role."""


class SyncWriteFailed(BattleError):
    def __init__(self, room_code: str, fields: dict[str, Any]) -> None:
        super().__init__(
            f"Write to room {room_code} failed: {sorted(fields)}",
            room_code=room_code,
        )
        self.fields = fields
