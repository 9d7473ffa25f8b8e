"""Cooperative cancellation shared by every stage of an ingestion run."""

import asyncio
from typing import Awaitable, Callable, Optional, Set, TypeVar

from billtracker.core.exceptions import PipelineCancelled
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cancellation flag plus the external calls currently running under it.

    Stages call ``raise_if_cancelled`` at their boundaries and wrap
    external awaits in ``run`` so that tripping the token also cancels the
    call in flight.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Ingestion cancelled") -> None:
        """Trip the token and cancel any in-flight external call. Idempotent."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for task in list(self._tasks):
            task.cancel()
        LOGGER.info(f"Cancellation requested: {reason}", extra={"in_flight": len(self._tasks)})

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelled(self.reason or "Ingestion cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await an external call, cancelling it if the token trips meanwhile.

        Raises:
            PipelineCancelled: If the token was tripped before or during the call
        """
        if self.cancelled:
            # Close the coroutine so it is not reported as never awaited
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            # Our own task being cancelled takes precedence over the token
            if self.cancelled and not (current is not None and current.cancelling()):
                raise PipelineCancelled(self.reason or "Ingestion cancelled")
            raise
        finally:
            self._tasks.discard(task)

    async def watch(self, poll: Callable[[], Awaitable[bool]], interval: float) -> None:
        """Trip the token once ``poll`` reports a cancellation request.

        Runs until the token is cancelled or the watching task is cancelled.
        Poll errors are logged and retried on the next tick.
        """
        while not self.cancelled:
            await asyncio.sleep(interval)
            try:
                if await poll():
                    self.cancel("Cancellation requested")
            except Exception as e:
                LOGGER.warning(f"Cancellation poll failed: {e}")
