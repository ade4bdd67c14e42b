from __future__ import annotations

from datetime import date

from app.modules.battle import state
from app.modules.battle.daily import DailyChallengeService
from app.modules.battle.rooms import RoomStore
from app.modules.battle.vocabulary import VocabularySource


def get_room_store() -> RoomStore:
    return state.room_store


def get_vocabulary() -> VocabularySource:
    return state.vocabulary


def get_daily_challenges() -> DailyChallengeService:
    return state.daily_challenges


def get_today() -> date:
    """Calendar day used for daily challenges; overridable in tests."""
    return date.today()
