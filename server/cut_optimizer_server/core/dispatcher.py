"""Run optimizations on a worker pool without blocking the request's event loop.

Each job gets a `OneShot` channel: the pool's completion callback sends the
outcome exactly once, and the awaiting coroutine receives it. The send never
blocks and never raises, so a receiver that stopped waiting (timeout, client
gone) only costs a log line.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import os
import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable

from ..errors import ChannelClosed, NoFitError
from .engine import optimize
from .models import OptimizationRequest, Solution

logger = logging.getLogger(__name__)

Engine = Callable[[OptimizationRequest], Solution]

POOL_KINDS = ("process", "thread")


class OneShot:
    """Single-use channel from a worker-pool callback to one awaiting coroutine."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._waiter: asyncio.Future[Any] = loop.create_future()
        self._lock = threading.Lock()
        self._used = False

    def send(self, value: Any) -> bool:
        return self._post(self._deliver_result, value)

    def fail(self, exc: BaseException) -> bool:
        return self._post(self._deliver_exception, exc)

    def close(self, reason: str) -> bool:
        """Wake the receiver with `ChannelClosed` instead of a value."""
        return self._post(self._deliver_exception, ChannelClosed(reason))

    async def receive(self) -> Any:
        return await self._waiter

    def _post(self, deliver: Callable[[Any], bool], payload: Any) -> bool:
        """Hand the payload over to the receiver's loop.

        Returns False when the channel was already used or the receiver's loop
        is gone.
        """
        with self._lock:
            if self._used:
                return False
            self._used = True
        try:
            self._loop.call_soon_threadsafe(deliver, payload)
        except RuntimeError:
            # Loop closed: the request that created the channel has finished.
            return False
        return True

    def _deliver_result(self, value: Any) -> bool:
        if self._waiter.done():
            logger.warning("Receiver side of channel closed before the result could be sent.")
            return False
        self._waiter.set_result(value)
        return True

    def _deliver_exception(self, exc: BaseException) -> bool:
        if self._waiter.done():
            logger.warning("Receiver side of channel closed before the result could be sent.")
            return False
        self._waiter.set_exception(exc)
        return True


def _make_pool(kind: str, workers: int | None) -> Executor:
    workers = workers or os.cpu_count() or 1
    if kind == "process":
        # The server is multi-threaded; forking it can deadlock the children.
        return ProcessPoolExecutor(max_workers=workers, mp_context=multiprocessing.get_context("spawn"))
    if kind == "thread":
        return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="optimizer")
    raise ValueError(f"unknown worker pool kind {kind!r}, expected one of {POOL_KINDS}")


class JobDispatcher:
    """Offloads engine calls onto a fixed-size worker pool.

    Args:
        engine: the synchronous optimization function. Must be picklable
            (module-level) for the process pool.
        pool: "process" (default, CPU-bound work) or "thread".
        workers: pool size; defaults to the CPU count.
    """

    def __init__(self, engine: Engine = optimize, pool: str = "process", workers: int | None = None):
        self.engine = engine
        self._pool = _make_pool(pool, workers)

    async def dispatch(self, request: OptimizationRequest) -> Solution:
        """Run the engine for `request` off the event loop and await its outcome.

        Raises:
            NoFitError: the engine couldn't place a cut piece.
            ChannelClosed: the job ended without producing a result.
        """
        channel = OneShot(asyncio.get_running_loop())
        job = self._pool.submit(self.engine, request)
        job.add_done_callback(lambda done: self._forward(done, channel))
        try:
            return await channel.receive()
        except asyncio.CancelledError:
            # A queued job is dropped; a running one finishes and is discarded.
            job.cancel()
            raise

    @staticmethod
    def _forward(job: Future, channel: OneShot) -> None:
        if job.cancelled():
            channel.close("optimization job was cancelled before it ran")
            return

        exc = job.exception()
        if exc is None:
            delivered = channel.send(job.result())
        elif isinstance(exc, NoFitError):
            delivered = channel.fail(exc)
        else:
            logger.error("Optimization job failed", exc_info=exc)
            delivered = channel.close(f"worker exited before sending a result: {exc!r}")

        if not delivered:
            logger.warning("Receiver side of channel closed before the result could be sent.")

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=True)
