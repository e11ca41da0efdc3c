from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Debouncer(Generic[R]):
    """Coalesce calls arriving within ``wait_seconds`` into the last one.

    A call that is superseded before its wait elapses returns ``None`` without
    running ``func``. A call that already started running is allowed to finish,
    but its result is discarded (``None``) when a newer call arrived meanwhile.
    """

    def __init__(
        self,
        func: Callable[..., Awaitable[R]],
        *,
        wait_seconds: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._func = func
        self._wait_seconds = wait_seconds
        self._sleep = sleep
        self._generation = 0
        self._timer: asyncio.Future[None] | None = None

    async def __call__(self, *args: Any, **kwargs: Any) -> R | None:
        self._generation += 1
        generation = self._generation

        if self._timer is not None:
            self._timer.cancel()
        timer = asyncio.ensure_future(self._sleep(self._wait_seconds))
        self._timer = timer

        try:
            await asyncio.wait({timer})
        except asyncio.CancelledError:
            timer.cancel()
            raise

        if generation != self._generation:
            return None
        self._timer = None

        result = await self._func(*args, **kwargs)
        if generation != self._generation:
            logger.debug("Discarding result of superseded call %s", generation)
            return None
        return result

    def cancel(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
