"""Background dispatch of create-image calls.

After a batch is committed, one remote create-image call is spawned per
(generation, task) pair. The request handler does not wait for these calls.
A call that fails is recorded on its task as a terminal error by a separate
fire-and-forget status write; a failing status write is only logged.

The dispatcher keeps a reference to each spawned asyncio.Task only until
its done-callback has run, so finished work does not accumulate.
"""

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Coroutine, Optional, Sequence
from uuid import UUID

import structlog

from imagegen.models.async_task import AsyncTaskErrorType, AsyncTaskStatus, build_task_error
from imagegen.services.image_generation.async_caller import AsyncCaller
from imagegen.uow import UnitOfWork

logger = structlog.get_logger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"
DISPATCH_FAILED_MESSAGE = "Failed to process async tasks"

CallerFactory = Callable[[str], Awaitable[AsyncCaller]]
UowFactory = Callable[[], Awaitable[UnitOfWork]]


@dataclass(frozen=True)
class DispatchItem:
    """One unit of background work: a generation and the task that tracks it."""

    generation_id: UUID
    async_task_id: UUID


class BackgroundDispatcher:
    """Spawns and supervises fire-and-forget create-image calls.

    One instance is constructed at startup and shared by all requests.
    """

    def __init__(self, uow_factory: UowFactory, caller_factory: CallerFactory):
        """Initialize dispatcher.

        Args:
            uow_factory: Factory producing UnitOfWork instances for status writes
            caller_factory: Async factory building an AsyncCaller for a user id
        """
        self.uow_factory = uow_factory
        self.caller_factory = caller_factory
        self.cancel_event = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Number of spawned calls and status writes not yet finished."""
        return len(self._in_flight)

    async def dispatch(
        self,
        *,
        user_id: str,
        provider: str,
        model: str,
        params: dict[str, Any],
        items: Sequence[DispatchItem],
    ) -> None:
        """Start one background create-image call per item and return immediately.

        If building the caller fails before any call is spawned, every task of
        the batch is marked as failed (best effort).

        Args:
            user_id: User the batch belongs to
            provider: Image provider id
            model: Provider model id
            params: Original, unmodified request params
            items: (generation, task) pairs in creation order
        """
        try:
            caller = await self.caller_factory(user_id)
            logger.info("dispatch.started", user_id=user_id, task_count=len(items))

            for item in items:
                self._spawn(
                    caller.create_image(
                        task_id=item.async_task_id,
                        generation_id=item.generation_id,
                        provider=provider,
                        model=model,
                        params=params,
                        cancel_event=self.cancel_event,
                    ),
                    partial(self._on_call_done, item, user_id),
                )

        except Exception as e:
            logger.error(
                "dispatch.setup_failed",
                user_id=user_id,
                task_count=len(items),
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._fail_all(items, user_id, str(e) or DISPATCH_FAILED_MESSAGE)

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Callable[[asyncio.Task], None],
    ) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        task.add_done_callback(on_done)
        return task

    def _on_call_done(self, item: DispatchItem, user_id: str, task: asyncio.Task) -> None:
        """Done-callback of one remote call."""
        if task.cancelled():
            error_message = "Dispatch cancelled during shutdown"
            logger.warning("dispatch.task.cancelled", async_task_id=str(item.async_task_id))
        else:
            exc = task.exception()
            if exc is None:
                # The async service marks the task as succeeded and attaches the asset
                logger.info("dispatch.task.completed", async_task_id=str(item.async_task_id))
                return

            error_message = str(exc) or UNKNOWN_ERROR_MESSAGE
            logger.error(
                "dispatch.task.failed",
                async_task_id=str(item.async_task_id),
                generation_id=str(item.generation_id),
                error=error_message,
                error_type=type(exc).__name__,
            )

        self._spawn(
            self.mark_task_error(item.async_task_id, user_id, error_message),
            partial(self._on_status_write_done, item),
        )

    def _on_status_write_done(self, item: DispatchItem, task: asyncio.Task) -> None:
        """Done-callback of a status write. Failures are logged, never retried."""
        if task.cancelled():
            logger.warning(
                "dispatch.task.status_write_cancelled", async_task_id=str(item.async_task_id)
            )
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "dispatch.task.status_write_failed",
                async_task_id=str(item.async_task_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def mark_task_error(self, task_id: UUID, user_id: str, message: str) -> bool:
        """Record a server error on a pending task.

        Returns:
            True if the task moved to error, False if it was missing or already terminal
        """
        async with await self.uow_factory() as uow:
            updated = await uow.async_tasks.update_status(
                task_id,
                AsyncTaskStatus.ERROR,
                user_id=user_id,
                error=build_task_error(AsyncTaskErrorType.SERVER_ERROR, message),
            )

        if updated:
            logger.info("dispatch.task.marked_error", async_task_id=str(task_id))
        else:
            logger.info("dispatch.task.status_unchanged", async_task_id=str(task_id))
        return updated

    async def _fail_all(self, items: Sequence[DispatchItem], user_id: str, message: str) -> None:
        """Mark every task of a batch as failed. Individual failures are logged only."""
        results = await asyncio.gather(
            *(self.mark_task_error(item.async_task_id, user_id, message) for item in items),
            return_exceptions=True,
        )
        for item, result in zip(items, results):
            if isinstance(result, Exception):
                logger.error(
                    "dispatch.fallback.status_write_failed",
                    async_task_id=str(item.async_task_id),
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until no background work is left.

        Status writes spawned by done-callbacks are waited for too.

        Args:
            timeout: Maximum seconds to wait, None waits indefinitely

        Returns:
            True if all background work finished, False on timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._in_flight:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._in_flight), timeout=remaining)
            # Let done-callbacks run and spawn their follow-up writes
            await asyncio.sleep(0)

        return True

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Stop accepting new remote work and wait for in-flight work.

        Calls that have not sent their request yet are skipped and recorded as
        errors. Work still running after the timeout is cancelled.
        """
        self.cancel_event.set()
        if await self.drain(timeout):
            return

        leftover = set(self._in_flight)
        logger.warning("dispatch.shutdown.cancelling", in_flight=len(leftover))
        for task in leftover:
            task.cancel()
        await asyncio.gather(*leftover, return_exceptions=True)
        # Status writes for the cancelled calls
        await self.drain(timeout)
