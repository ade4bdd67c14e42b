from __future__ import annotations

import asyncio
from typing import Optional

from app.core.logging import get_logger
from app.modules.battle.callbacks import Listener, invoke


logger = get_logger(__name__)


class Countdown:
    """Per-question countdown running as a cancellable asyncio task.

    Decrements `remaining` once per tick and calls `on_tick(remaining)`; when
    it reaches zero calls `on_expire()` once. `cancel()` stops it for good.
    """

    def __init__(
        self,
        seconds: int,
        *,
        tick_seconds: float = 1.0,
        on_tick: Optional[Listener] = None,
        on_expire: Optional[Listener] = None,
    ) -> None:
        self.remaining = max(0, int(seconds))
        self._tick = tick_seconds
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._task: Optional[asyncio.Task[None]] = None
        self.expired = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "Countdown":
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> None:
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            while self.remaining > 0:
                await asyncio.sleep(self._tick)
                self.remaining -= 1
                if self._on_tick is not None:
                    await invoke(self._on_tick, self.remaining)
            self.expired = True
            if self._on_expire is not None:
                await invoke(self._on_expire)
        except asyncio.CancelledError:
            return
        except Exception:  # noqa: BLE001
            logger.exception("Countdown callback failed")
