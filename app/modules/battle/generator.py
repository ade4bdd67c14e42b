"""Question set builder for vocabulary battles.

Provides:
- build_questions(pool, count) -> list[Question]
- build_for_mode(pool, mode) -> list[Question]

Each question asks for the definition of a word; the three distractors are
definitions of other words from the same pool. Shuffling happens on every
call; once a sequence is embedded in a room it is never rebuilt.
"""

from __future__ import annotations

import random
from typing import Optional, Sequence

from app.core.config import settings
from app.core.logging import get_logger
from app.modules.battle.models import (
    OPTIONS_PER_QUESTION,
    BattleMode,
    Question,
    VocabularyWord,
)


logger = get_logger(__name__)

DISTRACTORS_PER_QUESTION = OPTIONS_PER_QUESTION - 1


def question_count(mode: BattleMode) -> int:
    if mode == BattleMode.DAILY:
        return settings.battle.daily_questions
    return settings.battle.head_to_head_questions


def _distractors(
    word: VocabularyWord, pool: Sequence[VocabularyWord], rng: random.Random
) -> list[str]:
    # Distinct definitions of the other words, never the correct one.
    candidates = {
        w.definition
        for w in pool
        if w.id != word.id and w.definition != word.definition
    }
    if len(candidates) < DISTRACTORS_PER_QUESTION:
        return []
    return rng.sample(sorted(candidates), DISTRACTORS_PER_QUESTION)


def build_questions(
    pool: Sequence[VocabularyWord],
    count: int,
    *,
    rng: Optional[random.Random] = None,
) -> list[Question]:
    """Pick `min(count, len(pool))` words and turn each into a 4-option question."""
    rng = rng or random.Random()
    if not pool or count <= 0:
        return []

    picked = rng.sample(list(pool), min(int(count), len(pool)))
    out: list[Question] = []
    for word in picked:
        wrong = _distractors(word, pool, rng)
        if not wrong:
            logger.warning("Skipping %r: not enough distinct distractors", word.word)
            continue
        options = [word.definition, *wrong]
        rng.shuffle(options)
        out.append(
            Question(
                word_id=word.id,
                prompt=word.word,
                correct_option=word.definition,
                options=options,
            )
        )
    return out


def build_for_mode(
    pool: Sequence[VocabularyWord],
    mode: BattleMode,
    *,
    rng: Optional[random.Random] = None,
) -> list[Question]:
    return build_questions(pool, question_count(mode), rng=rng)
