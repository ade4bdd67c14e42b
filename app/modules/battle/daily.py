"""Daily challenge: an abbreviated 5-question run with a completion streak.

The streak continues when the previous completion was yesterday and resets
to 1 otherwise. Completing twice on the same day changes nothing.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, Field

from app.core.logging import get_logger
from app.modules.battle.generator import build_for_mode
from app.modules.battle.models import BattleMode, Question
from app.modules.battle.store import DocumentStore
from app.modules.battle.vocabulary import VocabularySource


logger = get_logger(__name__)


class DailyChallengeRecord(BaseModel):
    last_completed: Optional[date] = None
    streak: int = 0
    last_score: int = 0
    total_completed: int = 0

    def is_completed_on(self, day: date) -> bool:
        return self.last_completed == day

    def completed_on(self, day: date, score: int) -> "DailyChallengeRecord":
        if self.is_completed_on(day):
            return self
        streak = self.streak + 1 if self.last_completed == day - timedelta(days=1) else 1
        return DailyChallengeRecord(
            last_completed=day,
            streak=streak,
            last_score=score,
            total_completed=self.total_completed + 1,
        )


class DailyChallenge(BaseModel):
    completed: bool
    streak: int
    questions: list[Question] = Field(default_factory=list)


class DailyChallengeService:
    def __init__(self, store: DocumentStore, vocabulary: VocabularySource) -> None:
        self._store = store
        self._vocabulary = vocabulary

    @staticmethod
    def _key(user_id: str) -> str:
        return f"daily:{user_id}"

    async def get_record(self, user_id: str) -> DailyChallengeRecord:
        document = await self._store.get(self._key(user_id))
        if document is None:
            return DailyChallengeRecord()
        return DailyChallengeRecord.model_validate(document)

    async def load(self, user_id: str, today: date) -> DailyChallenge:
        record = await self.get_record(user_id)
        if record.is_completed_on(today):
            return DailyChallenge(completed=True, streak=record.streak)
        words = await self._vocabulary.list_words()
        return DailyChallenge(
            completed=False,
            streak=record.streak,
            questions=build_for_mode(words, BattleMode.DAILY),
        )

    async def complete(self, user_id: str, score: int, today: date) -> DailyChallengeRecord:
        key = self._key(user_id)
        document = await self._store.get(key)
        record = (
            DailyChallengeRecord.model_validate(document)
            if document is not None
            else DailyChallengeRecord()
        )
        updated = record.completed_on(today, score)
        if updated is record:
            return record
        fields = updated.model_dump(mode="json")
        if document is None:
            await self._store.create(key, fields)
        else:
            await self._store.merge_update(key, fields)
        logger.info("Daily challenge completed by %s, streak %d", user_id, updated.streak)
        return updated
