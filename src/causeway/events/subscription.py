"""Waitable handle returned by ``emit``."""

from __future__ import annotations

import asyncio
from typing import Any, Generic, TypeVar

from causeway.core.errors import ErrorContext, WaitTimeoutError

T = TypeVar("T")


class EventSubscription(Generic[T]):
    """Handle for one emitted event.

    Settled by the provider with the first consumer's result, ``None`` when
    nobody handles the event, or the handler's error. Fire-and-forget callers
    may drop the handle; an unobserved failure is not reported by asyncio.

    Must be created inside a running event loop.

    Example::

        sub = coordinator.emit(ORDER_PLACED, {"order_id": "o-1", "total": 9.5})
        accepted = await sub.wait(timeout=5)
    """

    def __init__(self, event_id: str, correlation_id: str) -> None:
        self.event_id = event_id
        self.correlation_id = correlation_id
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._future.add_done_callback(_consume_exception)

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> None:
        if not self._future.done():
            self._future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)

    async def wait(self, timeout: float | None = None) -> T:
        """Wait for the result.

        Raises:
            WaitTimeoutError: if ``timeout`` elapses first; the event itself
                is not cancelled
        """
        if timeout is None:
            return await asyncio.shield(self._future)
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except TimeoutError:
            raise WaitTimeoutError(
                f'Event "{self.event_id}" did not complete within {timeout}s',
                context=ErrorContext(event_id=self.event_id, correlation_id=self.correlation_id),
            ) from None

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done else "pending"
        return f"EventSubscription(event_id={self.event_id!r}, {state})"


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


__all__ = ["EventSubscription"]
