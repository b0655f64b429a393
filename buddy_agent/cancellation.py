"""Cooperative cancellation shared by the agent loop, backend calls and tools."""

import asyncio
from typing import Any, Awaitable, TypeVar

from buddy_agent.exceptions import AgentAbortedError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal for a single agent run.

    Setting the token never interrupts anything by itself; awaitables opt in
    through ``run()`` or by polling ``cancelled``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Task aborted") -> None:
        """Signal cancellation. Later calls are no-ops."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AgentAbortedError(self.reason or "Task aborted")

    async def wait(self) -> bool:
        return await self._event.wait()

    async def run(self, work: Awaitable[T]) -> T:
        """Await ``work`` unless the token fires first.

        On cancellation the work task is cancelled and awaited, then
        ``AgentAbortedError`` is raised.
        """
        self.raise_if_cancelled()
        work_task: asyncio.Future[T] = asyncio.ensure_future(work)
        cancel_task = asyncio.create_task(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work_task in done:
                return work_task.result()
            await _cancel_task(work_task)
            raise AgentAbortedError(self.reason or "Task aborted")
        except asyncio.CancelledError:
            await _cancel_task(work_task)
            raise
        finally:
            await _cancel_task(cancel_task)


async def _cancel_task(task: "asyncio.Future[Any] | None") -> None:
    """Cancel task and await it to avoid pending task warnings."""
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
