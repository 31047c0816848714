"""Serialized execution of blocking image work.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(1) -> ThreadPoolExecutor(1) -> decode/detect/composite/encode

One job runs at a time; the landmark detector is not safe to share across
threads. Each job carries a label ("render photo.jpg", "package archive")
that status reporting shows while it runs. Waiters beyond the configured
timeout get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from ovalmosaic.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Single-slot semaphore in front of the mosaic worker thread."""

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(1)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mosaic-worker")
        self._current_job: str | None = None
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, job: str, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on the worker thread under the label ``job``.

        Raises:
            TimeoutError: If the worker slot cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
            waiting = self._queue_depth
        logger.debug("Queued %s (%d waiting)", job, waiting)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("%s waited %.1fs for the mosaic worker, giving up", job, self._timeout)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._current_job = job
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            with self._counter_lock:
                self._current_job = None
            self._semaphore.release()

    @property
    def current_job(self) -> str | None:
        """Label of the job on the worker, if any."""
        with self._counter_lock:
            return self._current_job

    @property
    def active_count(self) -> int:
        """Number of currently running jobs (0 or 1)."""
        return 0 if self.current_job is None else 1

    @property
    def queue_depth(self) -> int:
        """Number of jobs waiting for the worker."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the worker thread."""
        self._executor.shutdown(wait=True)
