from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

import structlog

from ..models import Cast, Profile

logger = structlog.get_logger(__name__)

EventKind = Literal["member", "cast"]


@dataclass(slots=True)
class InboundEvent:
    kind: EventKind
    user: Profile
    channel_id: str
    cast: Optional[Cast] = None


EventHandler = Callable[[InboundEvent], Awaitable[Any]]
ResultCallback = Callable[[InboundEvent, Any], Awaitable[None]]


class EventWorker:
    """Drains an event queue, running up to ``concurrency`` handlers at once."""

    def __init__(
        self,
        handler: EventHandler,
        *,
        concurrency: int = 8,
        queue_size: int = 0,
        result_callback: Optional[ResultCallback] = None,
    ) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[InboundEvent] = asyncio.Queue(maxsize=queue_size)
        self._semaphore = asyncio.Semaphore(concurrency)
        self._result_callback = result_callback
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        self._main_task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._main_task = asyncio.create_task(self._run())
        logger.info("worker_started")

    async def stop(self) -> None:
        self._running = False
        if self._main_task:
            self._main_task.cancel()
            await asyncio.gather(self._main_task, return_exceptions=True)
            self._main_task = None
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("worker_stopped")

    async def submit(self, event: InboundEvent) -> None:
        await self._queue.put(event)
        logger.debug("worker_event_queued", kind=event.kind, channel_id=event.channel_id, size=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while self._running:
            event = await self._queue.get()
            await self._semaphore.acquire()
            task = asyncio.create_task(self._process(event))
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._semaphore.release()
        self._queue.task_done()
        if not task.cancelled() and task.exception():
            logger.error("event_task_failed", error=str(task.exception()))

    async def _process(self, event: InboundEvent) -> None:
        try:
            result = await self._handler(event)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "event_processing_failed",
                kind=event.kind,
                channel_id=event.channel_id,
                fid=event.user.fid,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return

        if self._result_callback:
            try:
                await self._result_callback(event, result)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("result_callback_failed", error=str(exc))
