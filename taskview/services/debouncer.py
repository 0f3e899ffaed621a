"""Debouncer - coalesce rapid input changes into one settled value."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from taskview.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

SettleCallback = Callable[[Any], Union[None, Awaitable[None]]]

_NOTHING = object()


class Debouncer:
    """
    Emit a value only after it has been stable for ``delay_seconds``.

    Every new value cancels the pending timer and starts a new one. There is
    no maximum wait: a value that keeps changing never settles.
    """

    def __init__(
        self,
        delay_seconds: float,
        on_settle: Optional[SettleCallback] = None,
        name: str = "debouncer",
        initial: Any = None,
    ):
        self.delay_seconds = delay_seconds
        self.on_settle = on_settle
        self.name = name
        self.value = initial
        self._pending: Any = _NOTHING
        self._timer: Optional[asyncio.Task] = None
        logger.debug("Debouncer initialized", debouncer=name, delay_seconds=delay_seconds)

    @property
    def pending(self) -> bool:
        return self._timer is not None

    async def push(self, value: Any) -> None:
        """Offer a new input value; restarts the settle timer."""
        if self._timer is not None:
            self._timer.cancel()
            logger.debug("Debounce timer reset", debouncer=self.name)

        self._pending = value
        self._timer = asyncio.create_task(self._settle_after_delay(value))

    async def _settle_after_delay(self, value: Any) -> None:
        await asyncio.sleep(self.delay_seconds)
        self._timer = None
        self._pending = _NOTHING
        await self._settle(value)

    async def _settle(self, value: Any) -> None:
        self.value = value
        if self.on_settle is None:
            return
        try:
            result = self.on_settle(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "Debounced callback failed",
                debouncer=self.name,
                error=str(e),
                exc_info=True
            )

    def cancel(self) -> None:
        """Drop a pending value. A callback already running is not affected."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = _NOTHING

    async def flush(self) -> None:
        """Settle a pending value immediately."""
        if self._timer is None:
            return
        value = self._pending
        self.cancel()
        await self._settle(value)

    async def wait(self) -> None:
        """Wait until no value is pending."""
        while self._timer is not None:
            await asyncio.wait({self._timer})
