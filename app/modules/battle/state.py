"""Process-wide battle services used by the API/WS layer."""

from __future__ import annotations

from app.core.config import settings
from app.modules.battle.daily import DailyChallengeService
from app.modules.battle.rooms import RoomStore
from app.modules.battle.store import InMemoryDocumentStore, RedisDocumentStore, build_document_store
from app.modules.battle.vocabulary import CachedVocabularySource, JsonFileVocabularySource


document_store = build_document_store(settings)
room_store = RoomStore(document_store)
vocabulary = CachedVocabularySource(JsonFileVocabularySource(settings.battle.vocabulary_file))
daily_challenges = DailyChallengeService(document_store, vocabulary)


def start() -> None:
    # Redis expires idle rooms via TTL; the in-memory store needs a sweeper.
    if isinstance(document_store, InMemoryDocumentStore):
        document_store.start(
            idle_seconds=settings.battle.room_idle_seconds,
            sweep_interval=settings.battle.sweep_interval_seconds,
        )


async def stop() -> None:
    if isinstance(document_store, InMemoryDocumentStore):
        await document_store.stop()
    elif isinstance(document_store, RedisDocumentStore):
        await document_store.close()
