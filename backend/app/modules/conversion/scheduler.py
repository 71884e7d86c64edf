"""Admission control for transcoder processes.

The scheduler bounds how many transcoder processes run at once. Excess
requests are rejected immediately instead of being queued.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator

from app.core.logging import log_warning
from app.core.metrics import ADMISSION_REJECTIONS_TOTAL, CONVERSIONS_IN_PROGRESS
from app.modules.conversion.errors import AdmissionRejected
from app.modules.conversion.models import ConversionJob, JobState

logger = logging.getLogger(__name__)


class ConversionScheduler:
    """Counts in-flight conversions against a fixed limit.

    The counter is guarded by a lock so increments and decrements are
    atomic even when handlers run in a thread pool.
    """

    def __init__(self, max_concurrent: int, retry_after_seconds: int = 5):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.max_concurrent = max_concurrent
        self.retry_after_seconds = retry_after_seconds
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.max_concurrent - self._in_flight

    def try_acquire(self) -> bool:
        """Take a slot if one is free."""
        with self._lock:
            if self._in_flight >= self.max_concurrent:
                return False
            self._in_flight += 1
            CONVERSIONS_IN_PROGRESS.set(self._in_flight)
            return True

    def release(self) -> None:
        """Give a slot back.

        Raises:
            RuntimeError: If no slot is held
        """
        with self._lock:
            if self._in_flight <= 0:
                raise RuntimeError("release() called without a matching acquire")
            self._in_flight -= 1
            CONVERSIONS_IN_PROGRESS.set(self._in_flight)

    @asynccontextmanager
    async def admit(self, job: ConversionJob) -> AsyncIterator[ConversionJob]:
        """Hold a slot for the duration of the block.

        The slot is released exactly once when the block exits, whatever
        the job's outcome.

        Raises:
            AdmissionRejected: If the limit is reached
        """
        if not self.try_acquire():
            ADMISSION_REJECTIONS_TOTAL.inc()
            log_warning(
                logger,
                "Conversion rejected, concurrency limit reached",
                job_id=job.id,
                max_concurrent=self.max_concurrent,
            )
            raise AdmissionRejected(
                "Too many conversions in progress, please retry later",
                retry_after=self.retry_after_seconds,
            )
        try:
            job.advance(JobState.QUEUED)
            yield job
        finally:
            self.release()
