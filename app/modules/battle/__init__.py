"""Battle module exports."""

from .controller import RoomBattleController, SoloBattleController
from .generator import build_for_mode, build_questions
from .models import (
    BattleMode,
    Difficulty,
    Outcome,
    Question,
    Role,
    Room,
    RoomStatus,
    SoloSession,
    VocabularyWord,
)
from .opponent import OpponentSimulator
from .rooms import RoomStore
from .store import DocumentStore, InMemoryDocumentStore, RedisDocumentStore

__all__ = [
    "BattleMode",
    "Difficulty",
    "DocumentStore",
    "InMemoryDocumentStore",
    "OpponentSimulator",
    "Outcome",
    "Question",
    "RedisDocumentStore",
    "Role",
    "Room",
    "RoomBattleController",
    "RoomStatus",
    "RoomStore",
    "SoloBattleController",
    "SoloSession",
    "VocabularyWord",
    "build_for_mode",
    "build_questions",
]
