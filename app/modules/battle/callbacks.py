from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union


Listener = Callable[..., Union[None, Awaitable[None]]]


async def invoke(listener: Listener, *args: Any) -> None:
    """Call a listener that may be either a plain function or a coroutine function."""
    result = listener(*args)
    if inspect.isawaitable(result):
        await result
