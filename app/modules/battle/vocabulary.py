"""Vocabulary sources feeding the question builder."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from pydantic import TypeAdapter

from app.core.logging import get_logger
from app.modules.battle.models import VocabularyWord


logger = get_logger(__name__)

_WORDS = TypeAdapter(list[VocabularyWord])


class VocabularySource(ABC):
    @abstractmethod
    async def list_words(self) -> list[VocabularyWord]: ...


class StaticVocabularySource(VocabularySource):
    def __init__(self, words: Iterable[VocabularyWord]) -> None:
        self._words = list(words)

    async def list_words(self) -> list[VocabularyWord]:
        return list(self._words)


class JsonFileVocabularySource(VocabularySource):
    """Reads a JSON array of `{id, word, definition}` objects."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def list_words(self) -> list[VocabularyWord]:
        raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        words = _WORDS.validate_python(json.loads(raw))
        logger.info("Loaded %d words from %s", len(words), self.path)
        return words


class CachedVocabularySource(VocabularySource):
    """Caches the first successful listing of the wrapped source."""

    def __init__(self, source: VocabularySource) -> None:
        self._source = source
        self._cached: Optional[list[VocabularyWord]] = None

    async def list_words(self) -> list[VocabularyWord]:
        if self._cached is None:
            self._cached = await self._source.list_words()
        return list(self._cached)

    def invalidate(self) -> None:
        self._cached = None
