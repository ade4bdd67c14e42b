"""Simulated opponent for solo battles.

Each question gets one independent Bernoulli draw whose success probability
depends only on the difficulty tier. The draw ignores what the human did and
carries nothing over from earlier questions.
"""

from __future__ import annotations

import random
from typing import Optional

from app.modules.battle.models import Difficulty


ACCURACY: dict[Difficulty, float] = {
    Difficulty.EASY: 0.3,
    Difficulty.MEDIUM: 0.6,
    Difficulty.HARD: 0.9,
}


class OpponentSimulator:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    @staticmethod
    def accuracy(difficulty: Difficulty) -> float:
        return ACCURACY[Difficulty(difficulty)]

    def should_answer_correctly(self, difficulty: Difficulty) -> bool:
        return self._rng.random() < self.accuracy(difficulty)

    @staticmethod
    def display_name(difficulty: Difficulty) -> str:
        return f"AI ({Difficulty(difficulty).value.capitalize()})"
