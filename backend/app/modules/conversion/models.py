"""In-memory models for conversion jobs.

Jobs live only for the duration of one request; there is no job store.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional


class JobState(str, Enum):
    """Lifecycle state of a conversion job. States only move forward."""
    RECEIVED = "received"
    VALIDATED = "validated"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLEANED = "cleaned"


# Position of each state in the lifecycle; terminal states share a rank
STATE_ORDER = {
    JobState.RECEIVED: 0,
    JobState.VALIDATED: 1,
    JobState.QUEUED: 2,
    JobState.RUNNING: 3,
    JobState.SUCCEEDED: 4,
    JobState.FAILED: 4,
    JobState.TIMED_OUT: 4,
    JobState.CLEANED: 5,
}

TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT})


class ProcessOutcome(str, Enum):
    """Terminal outcome of one external process run."""
    EXITED_ZERO = "exited_zero"
    EXITED_NON_ZERO = "exited_non_zero"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidStateTransition(Exception):
    """Raised when a job is moved backwards or out of a terminal state."""
    pass


@dataclass
class ConversionJob:
    """One conversion request, from upload to cleanup."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState = JobState.RECEIVED
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    input_extension: Optional[str] = None
    declared_mime_type: Optional[str] = None
    original_filename: Optional[str] = None
    requested_format: Optional[str] = None
    input_size: int = 0
    diagnostics: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_video_input(self) -> bool:
        return bool(self.declared_mime_type and self.declared_mime_type.startswith("video/"))

    def advance(self, new_state: JobState) -> None:
        """Move the job forward in its lifecycle.

        Terminal states can only be followed by CLEANED, and a job cannot
        move from one terminal state to another.

        Raises:
            InvalidStateTransition: If the transition goes backwards
        """
        if new_state == self.state:
            return
        if self.is_terminal and new_state != JobState.CLEANED:
            raise InvalidStateTransition(
                f"Job {self.id} is already {self.state.value}, cannot become {new_state.value}"
            )
        if STATE_ORDER[new_state] < STATE_ORDER[self.state]:
            raise InvalidStateTransition(
                f"Job {self.id} cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        if new_state == JobState.RUNNING:
            self.started_at = _utcnow()
        elif new_state in TERMINAL_STATES:
            self.completed_at = _utcnow()

    def fail(self, timed_out: bool = False) -> None:
        """Mark the job failed unless it already reached a terminal state."""
        if self.is_terminal or self.state == JobState.CLEANED:
            return
        self.advance(JobState.TIMED_OUT if timed_out else JobState.FAILED)

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0
