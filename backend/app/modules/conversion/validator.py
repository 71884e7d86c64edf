"""Output format validation.

The requested format is untrusted input. It is normalized and checked
against the allow-list; afterwards it is only used as a key into
FORMAT_PROFILES, never placed into a command line as given.
"""

import logging
import re
from typing import Iterable, Optional

from app.core.logging import log_info
from app.modules.conversion.errors import InvalidFormatError
from app.modules.conversion.models import ConversionJob, JobState
from app.modules.conversion.profiles import FORMAT_PROFILES

logger = logging.getLogger(__name__)

_FORMAT_RE = re.compile(r"^[a-z0-9]{1,10}$")


def normalize_format(value: Optional[str], default: str) -> str:
    """Normalize a requested format; empty values fall back to the default."""
    if value is None:
        return default
    value = value.strip().lower().lstrip(".")
    return value or default


def is_allowed_format(value: str, allowed: Iterable[str]) -> bool:
    """Check a normalized format against the allow-list."""
    return bool(_FORMAT_RE.match(value)) and value in set(allowed) and value in FORMAT_PROFILES


class RequestValidator:
    """Checks the requested output format of a job."""

    def __init__(self, allowed_formats: Iterable[str], default_format: str = "mp3"):
        self.allowed_formats = tuple(allowed_formats)
        self.default_format = default_format

    def validate(self, job: ConversionJob, requested: Optional[str]) -> str:
        """Validate and record the requested format on the job.

        Args:
            job: Job in RECEIVED state
            requested: Raw ``format`` form value, may be None

        Returns:
            The validated format name

        Raises:
            InvalidFormatError: If the format is not allow-listed
        """
        fmt = normalize_format(requested, self.default_format)
        if not is_allowed_format(fmt, self.allowed_formats):
            log_info(logger, "Rejected output format", job_id=job.id, requested=str(requested)[:32])
            raise InvalidFormatError(
                f"Invalid format. Allowed formats: {', '.join(self.allowed_formats)}"
            )

        job.requested_format = fmt
        job.advance(JobState.VALIDATED)
        return fmt
