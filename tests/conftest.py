import asyncio
import random

import pytest

from app.core.config import BattleSettings
from app.modules.battle.generator import build_questions
from app.modules.battle.models import VocabularyWord
from app.modules.battle.rooms import RoomStore
from app.modules.battle.store import InMemoryDocumentStore


def make_pool(size: int = 20) -> list[VocabularyWord]:
    return [
        VocabularyWord(id=f"w{i:02d}", word=f"word{i}", definition=f"definition number {i}")
        for i in range(size)
    ]


@pytest.fixture
def pool() -> list[VocabularyWord]:
    return make_pool(20)


@pytest.fixture
def fast_config() -> BattleSettings:
    """Everything expires within a few hundredths of a second."""
    return BattleSettings(
        question_seconds=3,
        tick_seconds=0.01,
        answer_settle_seconds=0.01,
        timeout_settle_seconds=0.01,
        guest_finish_grace_seconds=0.05,
        write_retries=2,
        write_backoff_seconds=0.001,
    )


@pytest.fixture
def manual_config(fast_config: BattleSettings) -> BattleSettings:
    """Countdown long enough that only explicit answers resolve questions."""
    return fast_config.model_copy(update={"question_seconds": 1000})


@pytest.fixture
async def store():
    s = InMemoryDocumentStore()
    yield s
    await s.stop()


@pytest.fixture
def rooms(store, fast_config) -> RoomStore:
    return RoomStore(store, config=fast_config, rng=random.Random(7))


@pytest.fixture
def questions(pool):
    return build_questions(pool, 10, rng=random.Random(1))


@pytest.fixture
def wait_for():
    async def _wait_for(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait_for
