"""
Single-consumer job queue that serializes access to one funding account.

Concurrent units that read and spend from the same wallet submit their
balance-check-then-spend step here; the worker runs one job at a time so no
two units act on the same balance reading.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[Any]]

_STOP = object()


class AccountMailbox:
    """Runs submitted jobs for one account strictly in submission order."""

    def __init__(self, account: str):
        self.account = account
        self.queue: "asyncio.Queue[Tuple[Any, Optional[asyncio.Future]]]" = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self.processed = 0
        self.logger = logger.bind(service="account_mailbox", account=account)

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def start(self):
        if self.running:
            return
        self._worker_task = asyncio.create_task(self._worker_loop())
        self.logger.debug("Mailbox started")

    async def stop(self):
        """Drain pending jobs, then stop the worker."""
        if not self.running:
            return
        await self.queue.put((_STOP, None))
        await self._worker_task
        self._worker_task = None
        self.logger.debug("Mailbox stopped", processed=self.processed)

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        """Queue `job` and wait for its result (or its exception)."""
        self.start()
        future = asyncio.get_running_loop().create_future()
        await self.queue.put((job, future))
        return await future

    async def _worker_loop(self):
        while True:
            job, future = await self.queue.get()
            if job is _STOP:
                break
            try:
                result = await job()
            except Exception as e:
                if not future.cancelled():
                    future.set_exception(e)
            except BaseException as e:
                # The worker dies with this job; nothing queued would ever run
                self._fail_pending(future, e)
                raise
            else:
                if not future.cancelled():
                    future.set_result(result)
            finally:
                self.processed += 1

    def _fail_pending(self, current: asyncio.Future, error: BaseException):
        futures = [current]
        while True:
            try:
                job, future = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if job is not _STOP:
                futures.append(future)

        self.logger.error("Mailbox worker stopped", error_type=type(error).__name__, pending=len(futures) - 1)
        for future in futures:
            if future.done():
                continue
            if isinstance(error, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(error)
