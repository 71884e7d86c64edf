"""Temporary file cleanup for conversion jobs."""

import logging
from pathlib import Path
from typing import Optional

from app.core.logging import log_warning
from app.core.metrics import CLEANUP_FAILURES_TOTAL
from app.modules.conversion.models import ConversionJob, JobState

logger = logging.getLogger(__name__)


def remove_file(path: Optional[Path]) -> bool:
    """Delete a file if it exists.

    Missing files are not an error. Failures on existing files are logged
    and reported through the return value, never raised.

    Returns:
        True if the path is gone afterwards
    """
    if path is None:
        return True
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        CLEANUP_FAILURES_TOTAL.inc()
        log_warning(logger, "Failed to delete temporary file", path=str(path), error=str(e))
        return False


class CleanupGuard:
    """Deletes a job's input and output files exactly once.

    Used as a context manager around the whole job lifecycle. When the
    response takes over the output file (streaming), the guard is detached
    and the response calls ``run()`` after the last byte is sent.

    Usage:
        with CleanupGuard(job) as guard:
            ...
            return streamer.stream(job, on_complete=guard.detach())
    """

    def __init__(self, job: ConversionJob):
        self.job = job
        self._done = False
        self._detached = False
        self.runs = 0

    @property
    def done(self) -> bool:
        return self._done

    def run(self) -> None:
        """Delete the job's files. Subsequent calls are no-ops."""
        if self._done:
            return
        self._done = True
        self.runs += 1

        remove_file(self.job.input_path)
        remove_file(self.job.output_path)

        # A job that never reached a terminal state was abandoned mid-flight
        self.job.fail()
        self.job.advance(JobState.CLEANED)

        logger.debug("Cleaned up job files", extra={"job_id": self.job.id})

    def detach(self):
        """Hand cleanup responsibility to the caller.

        Returns:
            The ``run`` callable, to be invoked exactly once by the new owner
        """
        self._detached = True
        return self.run

    def __enter__(self) -> "CleanupGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None or not self._detached:
            self.run()
