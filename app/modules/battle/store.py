"""Shared document stores backing battle rooms.

A document store holds JSON-able dicts under string keys and supports
partial-field merges plus push-style change notification. Two backends:

- InMemoryDocumentStore: single-process, used for tests and local play.
- RedisDocumentStore: hash-per-document with pub/sub change fan-out, so two
  participants in different processes observe the same room.

Subscribers receive the current snapshot immediately, then one snapshot per
change in write order. A `None` snapshot means the document was deleted.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from app.core.config import Settings, settings as default_settings
from app.core.logging import get_logger
from app.modules.battle.callbacks import Listener, invoke
from app.modules.battle.errors import DocumentExists, DocumentNotFound, StoreError, WriteConflict


logger = get_logger(__name__)

Document = dict[str, Any]
Unsubscribe = Callable[[], None]


class DocumentStore(ABC):
    @abstractmethod
    async def create(self, key: str, document: Document) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Document]: ...

    @abstractmethod
    async def merge_update(
        self, key: str, fields: Document, *, expect: Optional[Document] = None
    ) -> None:
        """Merge `fields` into the document; a `None` value removes that field.

        With `expect`, the merge only happens if every named field still holds
        the given value (`None` meaning absent), checked atomically with the
        write; otherwise `WriteConflict` is raised and nothing is written.
        """

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def subscribe(self, key: str, on_change: Listener) -> Unsubscribe: ...


def merge_fields(document: Document, fields: Document) -> Document:
    merged = dict(document)
    for name, value in fields.items():
        if value is None:
            merged.pop(name, None)
        else:
            merged[name] = copy.deepcopy(value)
    return merged


def check_expected(key: str, document: Document, expect: Optional[Document]) -> None:
    for name, value in (expect or {}).items():
        if document.get(name) != value:
            raise WriteConflict(key, name)


class _Subscription:
    """Delivers snapshots to one listener, strictly in arrival order."""

    def __init__(self, key: str, listener: Listener) -> None:
        self.key = key
        self.listener = listener
        self.pending = 0
        self._queue: asyncio.Queue[Optional[Document]] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._pump())

    def push(self, snapshot: Optional[Document]) -> None:
        self.pending += 1
        self._queue.put_nowait(copy.deepcopy(snapshot))

    async def _pump(self) -> None:
        while True:
            snapshot = await self._queue.get()
            try:
                await invoke(self.listener, snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Change listener failed", extra={"room": self.key})
            finally:
                self.pending = max(0, self.pending - 1)

    def close(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self.pending = 0


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}
        self._touched: dict[str, float] = {}
        self._subs: dict[str, list[_Subscription]] = {}
        self._reaper_task: Optional[asyncio.Task] = None
        self._idle_seconds: int = 600
        self._sweep_interval: int = 60

    # Documents ----------------------------------------------------------
    async def create(self, key: str, document: Document) -> None:
        if key in self._docs:
            raise DocumentExists(key)
        self._docs[key] = merge_fields({}, document)
        self._touch(key)
        self._notify(key)

    async def get(self, key: str) -> Optional[Document]:
        doc = self._docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def merge_update(
        self, key: str, fields: Document, *, expect: Optional[Document] = None
    ) -> None:
        doc = self._docs.get(key)
        if doc is None:
            raise DocumentNotFound(key)
        check_expected(key, doc, expect)
        self._docs[key] = merge_fields(doc, fields)
        self._touch(key)
        self._notify(key)

    async def delete(self, key: str) -> None:
        if self._docs.pop(key, None) is None:
            return
        self._touched.pop(key, None)
        self._notify(key)

    def keys(self) -> list[str]:
        return list(self._docs)

    # Notifications ------------------------------------------------------
    async def subscribe(self, key: str, on_change: Listener) -> Unsubscribe:
        sub = _Subscription(key, on_change)
        self._subs.setdefault(key, []).append(sub)
        sub.start()
        sub.push(self._docs.get(key))

        def unsubscribe() -> None:
            subs = self._subs.get(key, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(key, None)
            sub.close()

        return unsubscribe

    def _notify(self, key: str) -> None:
        snapshot = self._docs.get(key)
        for sub in list(self._subs.get(key, [])):
            sub.push(snapshot)

    async def flush(self) -> None:
        """Wait until every listener has consumed its pending snapshots."""
        while any(sub.pending for subs in self._subs.values() for sub in subs):
            await asyncio.sleep(0)

    # Idle reaper --------------------------------------------------------
    def _touch(self, key: str) -> None:
        self._touched[key] = time.monotonic()

    def start(self, *, idle_seconds: int = 600, sweep_interval: int = 60) -> None:
        self._idle_seconds = max(1, int(idle_seconds))
        self._sweep_interval = max(1, int(sweep_interval))
        if self._reaper_task and not self._reaper_task.done():
            return
        self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def stop(self) -> None:
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
        self._reaper_task = None
        for subs in list(self._subs.values()):
            for sub in subs:
                sub.close()
        self._subs.clear()

    async def reap_idle(self) -> list[str]:
        now = time.monotonic()
        expired = [
            key
            for key, touched in list(self._touched.items())
            if now - touched > self._idle_seconds
        ]
        for key in expired:
            logger.info("Reaping idle document", extra={"room": key})
            await self.delete(key)
        return expired

    async def _reaper_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._sweep_interval)
                await self.reap_idle()
        except asyncio.CancelledError:
            return


def _wrap_redis_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except RedisError as exc:
            raise StoreError(str(exc)) from exc

    return wrapper


class RedisDocumentStore(DocumentStore):
    """Each document is a hash of JSON-encoded fields; changes go out on pub/sub.

    Every write refreshes the key's TTL so rooms nobody touches expire on
    their own.
    """

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = "battle:",
        ttl_seconds: Optional[int] = None,
        watch_attempts: int = 5,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = ttl_seconds
        self._watch_attempts = max(1, watch_attempts)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _channel(self, key: str) -> str:
        return f"{self._prefix}{key}:changes"

    @staticmethod
    def _encode(document: Document) -> dict[str, str]:
        return {
            name: json.dumps(value, ensure_ascii=False)
            for name, value in document.items()
            if value is not None
        }

    @staticmethod
    def _decode(raw: dict[str, str]) -> Document:
        return {name: json.loads(value) for name, value in raw.items()}

    async def _watched_write(
        self,
        key: str,
        check: Callable[[Optional[Document]], None],
        to_set: dict[str, str],
        to_clear: list[str],
    ) -> None:
        """Check the current hash and write it in one optimistic transaction.

        The key is WATCHed while `check` inspects it; a concurrent write or
        delete aborts EXEC and the check runs again on the new contents.
        """
        rkey = self._key(key)
        for _ in range(self._watch_attempts):
            async with self._client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(rkey)
                    raw = await pipe.hgetall(rkey)
                    check(self._decode(raw) if raw else None)
                    pipe.multi()
                    if to_set:
                        pipe.hset(rkey, mapping=to_set)
                    if to_clear:
                        pipe.hdel(rkey, *to_clear)
                    if self._ttl:
                        pipe.expire(rkey, self._ttl)
                    await pipe.execute()
                except WatchError:
                    logger.debug("Document changed mid-write, retrying", extra={"room": key})
                    continue
            await self._publish(key)
            return
        raise StoreError(f"document {key!r} kept changing during the write")

    @_wrap_redis_errors
    async def create(self, key: str, document: Document) -> None:
        def check(current: Optional[Document]) -> None:
            if current is not None:
                raise DocumentExists(key)

        await self._watched_write(key, check, self._encode(document), [])

    @_wrap_redis_errors
    async def get(self, key: str) -> Optional[Document]:
        raw = await self._client.hgetall(self._key(key))
        if not raw:
            return None
        return self._decode(raw)

    @_wrap_redis_errors
    async def merge_update(
        self, key: str, fields: Document, *, expect: Optional[Document] = None
    ) -> None:
        def check(current: Optional[Document]) -> None:
            if current is None:
                raise DocumentNotFound(key)
            check_expected(key, current, expect)

        to_clear = [name for name, value in fields.items() if value is None]
        await self._watched_write(key, check, self._encode(fields), to_clear)

    @_wrap_redis_errors
    async def delete(self, key: str) -> None:
        if await self._client.delete(self._key(key)):
            await self._client.publish(self._channel(key), json.dumps(None))

    async def _publish(self, key: str) -> None:
        snapshot = await self.get(key)
        await self._client.publish(
            self._channel(key), json.dumps(snapshot, ensure_ascii=False)
        )

    async def close(self) -> None:
        await self._client.aclose()

    @_wrap_redis_errors
    async def subscribe(self, key: str, on_change: Listener) -> Unsubscribe:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self._channel(key))
        initial = await self.get(key)
        task = asyncio.create_task(self._listen(key, pubsub, on_change, initial))
        return task.cancel

    async def _listen(
        self, key: str, pubsub, on_change: Listener, initial: Optional[Document]
    ) -> None:
        async def deliver(snapshot: Optional[Document]) -> None:
            try:
                await invoke(on_change, snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Change listener failed", extra={"room": key})

        try:
            await deliver(initial)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await deliver(json.loads(message["data"]))
        except RedisError:
            logger.exception("Subscription dropped", extra={"room": key})
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()


def build_document_store(config: Optional[Settings] = None) -> DocumentStore:
    """Pick the backend configured in `BATTLE_STORE_BACKEND`."""
    config = config or default_settings
    if config.battle.store_backend == "redis":
        client = Redis.from_url(str(config.redis.dsn), decode_responses=True)
        return RedisDocumentStore(
            client,
            prefix=config.redis.key_prefix,
            ttl_seconds=config.battle.room_idle_seconds,
        )
    return InMemoryDocumentStore()
