"""FFmpeg transcoding.

Builds ffmpeg/ffprobe argument vectors for a validated job, runs them
under a timeout and translates process outcomes into conversion errors.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import CONVERSION_DURATION_SECONDS
from app.modules.conversion.errors import (
    ConversionTimeoutError,
    NoAudioTrackError,
    ProcessFailure,
    ProcessSpawnError,
)
from app.modules.conversion.models import ConversionJob, JobState, ProcessOutcome
from app.modules.conversion.process import (
    AsyncioProcessRunner,
    ProcessResult,
    ProcessRunner,
    run_process,
)
from app.modules.conversion.profiles import get_format_profile

logger = logging.getLogger(__name__)

# ffprobe prints a codec name per line; nothing more is needed
PROBE_OUTPUT_MAX_BYTES = 1024


class TranscodeProcessManager:
    """Runs the external transcoder for one job at a time per call."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout_seconds: float = 120.0,
        probe_timeout_seconds: float = 10.0,
        diagnostics_max_bytes: int = 4096,
        probe_video_inputs: bool = True,
        video_extensions: Iterable[str] = (),
    ):
        """Initialize transcoder.

        Args:
            runner: Process runner (asyncio subprocesses by default)
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            timeout_seconds: Wall-clock budget for one transcode
            probe_timeout_seconds: Wall-clock budget for the audio probe
            diagnostics_max_bytes: How much of stderr to keep
            probe_video_inputs: Check video uploads for an audio stream first
            video_extensions: Extensions treated as video containers
        """
        self.runner = runner or AsyncioProcessRunner()
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout_seconds = timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds
        self.diagnostics_max_bytes = diagnostics_max_bytes
        self.probe_video_inputs = probe_video_inputs
        self.video_extensions = frozenset(video_extensions)

    def build_transcode_command(self, job: ConversionJob) -> list[str]:
        """Build the ffmpeg argument vector for a validated job.

        Paths and options are discrete arguments; nothing is joined into a
        shell string.
        """
        profile = get_format_profile(job.requested_format)
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-y",  # Overwrite output
            "-i", str(job.input_path),
            *profile.output_options,
            str(job.output_path),
        ]

    def build_probe_command(self, input_path: Path) -> list[str]:
        """Build the ffprobe argument vector listing the first audio stream's codec."""
        return [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "stream=codec_name",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(input_path),
        ]

    def needs_probe(self, job: ConversionJob) -> bool:
        if not self.probe_video_inputs:
            return False
        return job.is_video_input or (job.input_extension or "") in self.video_extensions

    async def has_audio_stream(self, job: ConversionJob) -> Optional[bool]:
        """Probe the input for an audio stream.

        Returns:
            True or False when the probe answered, None when it could not
            run or did not finish in time
        """
        result = await run_process(
            self.runner,
            self.build_probe_command(job.input_path),
            timeout_seconds=self.probe_timeout_seconds,
            max_output_bytes=PROBE_OUTPUT_MAX_BYTES,
            capture_stdout=True,
        )

        if result.outcome != ProcessOutcome.EXITED_ZERO:
            log_warning(
                logger,
                "Audio probe inconclusive",
                job_id=job.id,
                outcome=result.outcome.value,
                returncode=result.returncode,
                diagnostics=result.diagnostics or result.spawn_error,
            )
            return None

        return bool(result.stdout.strip())

    async def run(self, job: ConversionJob) -> ProcessResult:
        """Transcode a validated, admitted job.

        On return the job is SUCCEEDED and its output file exists and is
        non-empty.

        Raises:
            NoAudioTrackError: Video input without an audio stream
            ProcessSpawnError: ffmpeg could not be started
            ConversionTimeoutError: ffmpeg exceeded the timeout and was killed
            ProcessFailure: ffmpeg failed or produced no output
        """
        job.advance(JobState.RUNNING)

        if self.needs_probe(job):
            has_audio = await self.has_audio_stream(job)
            if has_audio is False:
                log_info(logger, "Input has no audio track", job_id=job.id)
                raise NoAudioTrackError(
                    "The uploaded video has no audio track to convert"
                )

        cmd = self.build_transcode_command(job)
        log_info(logger, "Starting transcode", job_id=job.id, format=job.requested_format, argv=cmd)

        result = await run_process(
            self.runner,
            cmd,
            timeout_seconds=self.timeout_seconds,
            max_output_bytes=self.diagnostics_max_bytes,
        )
        job.diagnostics = result.diagnostics

        if result.outcome == ProcessOutcome.SPAWN_FAILED:
            log_error(logger, "Failed to start transcoder", job_id=job.id, error=result.spawn_error)
            raise ProcessSpawnError()

        CONVERSION_DURATION_SECONDS.labels(format=job.requested_format).observe(
            result.duration_seconds
        )

        if result.outcome == ProcessOutcome.TIMED_OUT:
            log_warning(
                logger,
                "Transcode timed out",
                job_id=job.id,
                timeout_seconds=self.timeout_seconds,
                diagnostics=result.diagnostics,
            )
            job.advance(JobState.TIMED_OUT)
            raise ConversionTimeoutError(
                "Conversion took too long. Try a shorter or smaller file."
            )

        if result.outcome == ProcessOutcome.EXITED_NON_ZERO:
            log_error(
                logger,
                "Transcoder exited with an error",
                job_id=job.id,
                returncode=result.returncode,
                diagnostics=result.diagnostics,
            )
            raise ProcessFailure(
                "Conversion failed. The file may be corrupt or unsupported.",
                returncode=result.returncode,
                diagnostics=result.diagnostics,
            )

        # Exit status zero is not trusted on its own
        if not _is_non_empty_file(job.output_path):
            log_error(
                logger,
                "Transcoder reported success without output",
                job_id=job.id,
                diagnostics=result.diagnostics,
            )
            raise ProcessFailure(
                "Conversion failed. No output was produced.",
                returncode=result.returncode,
                diagnostics=result.diagnostics,
            )

        job.advance(JobState.SUCCEEDED)
        log_info(
            logger,
            "Transcode finished",
            job_id=job.id,
            duration_seconds=round(result.duration_seconds, 3),
            output_bytes=job.output_path.stat().st_size,
        )
        return result


def _is_non_empty_file(path: Optional[Path]) -> bool:
    if path is None:
        return False
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False
