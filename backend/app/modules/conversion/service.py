"""Service layer for conversion requests.

Drives one request through upload, validation, admission, transcoding and
streaming. A single CleanupGuard wraps the whole lifecycle.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import Request
from starlette.responses import Response

from app.core.config import Settings
from app.core.logging import log_info
from app.core.metrics import CONVERSIONS_TOTAL
from app.modules.conversion.cleanup import CleanupGuard
from app.modules.conversion.errors import ConversionError, ConversionTimeoutError
from app.modules.conversion.ffmpeg import TranscodeProcessManager
from app.modules.conversion.models import ConversionJob
from app.modules.conversion.process import ProcessRunner
from app.modules.conversion.profiles import get_format_profile
from app.modules.conversion.scheduler import ConversionScheduler
from app.modules.conversion.streaming import ResultStreamer
from app.modules.conversion.upload import UploadReceiver
from app.modules.conversion.validator import RequestValidator

logger = logging.getLogger(__name__)


class ConversionService:
    """Service for converting uploaded media files."""

    def __init__(
        self,
        receiver: UploadReceiver,
        validator: RequestValidator,
        scheduler: ConversionScheduler,
        manager: TranscodeProcessManager,
        streamer: Optional[ResultStreamer] = None,
    ):
        self.receiver = receiver
        self.validator = validator
        self.scheduler = scheduler
        self.manager = manager
        self.streamer = streamer or ResultStreamer()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        process_runner: Optional[ProcessRunner] = None,
        scheduler: Optional[ConversionScheduler] = None,
    ) -> "ConversionService":
        """Wire the service from application settings."""
        return cls(
            receiver=UploadReceiver(
                upload_dir=settings.UPLOAD_DIR,
                max_bytes=settings.max_upload_bytes,
                allowed_extensions=settings.ALLOWED_INPUT_EXTENSIONS,
                allowed_mime_prefixes=settings.ALLOWED_MIME_PREFIXES,
                generic_mime_types=settings.GENERIC_MIME_TYPES,
                field_name=settings.UPLOAD_FIELD_NAME,
            ),
            validator=RequestValidator(
                allowed_formats=settings.ALLOWED_OUTPUT_FORMATS,
                default_format=settings.DEFAULT_OUTPUT_FORMAT,
            ),
            scheduler=scheduler or ConversionScheduler(settings.MAX_CONCURRENT_CONVERSIONS),
            manager=TranscodeProcessManager(
                runner=process_runner,
                ffmpeg_path=settings.FFMPEG_BINARY,
                ffprobe_path=settings.FFPROBE_BINARY,
                timeout_seconds=settings.conversion_timeout_seconds,
                probe_timeout_seconds=settings.probe_timeout_seconds,
                diagnostics_max_bytes=settings.DIAGNOSTICS_MAX_BYTES,
                probe_video_inputs=settings.PROBE_VIDEO_INPUTS,
                video_extensions=settings.VIDEO_INPUT_EXTENSIONS,
            ),
        )

    @property
    def upload_dir(self) -> Path:
        return self.receiver.upload_dir

    def output_path_for(self, job: ConversionJob) -> Path:
        profile = get_format_profile(job.requested_format)
        return self.upload_dir / f"converted-{job.id}.{profile.extension}"

    async def convert(self, request: Request) -> Response:
        """Run one conversion request end to end.

        Returns:
            A streaming response that deletes the job's files once sent

        Raises:
            ConversionError: On any rejection or failure; the job's files
                are already deleted when it propagates
        """
        job = ConversionJob()

        with CleanupGuard(job) as guard:
            try:
                requested_format = await self.receiver.receive(request, job)
                self.validator.validate(job, requested_format)
                job.output_path = self.output_path_for(job)

                async with self.scheduler.admit(job):
                    await self.manager.run(job)

                response = self.streamer.stream(job, on_complete=guard.detach())
            except ConversionError as e:
                job.fail(timed_out=isinstance(e, ConversionTimeoutError))
                CONVERSIONS_TOTAL.labels(outcome=job.state.value).inc()
                log_info(
                    logger,
                    "Conversion rejected" if e.status_code < 500 else "Conversion failed",
                    job_id=job.id,
                    status_code=e.status_code,
                    error_type=type(e).__name__,
                )
                raise

            CONVERSIONS_TOTAL.labels(outcome=job.state.value).inc()
            return response
