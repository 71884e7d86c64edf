"""Streaming converted files back to the client."""

import logging
from pathlib import Path
from typing import Callable

import anyio
from starlette.requests import ClientDisconnect
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from app.core.logging import log_info, log_warning
from app.modules.conversion.errors import ProcessFailure, StreamingError
from app.modules.conversion.models import ConversionJob
from app.modules.conversion.profiles import get_format_profile

logger = logging.getLogger(__name__)


class ConvertedFileResponse(Response):
    """Sends a file as an attachment, then calls ``on_complete``.

    ``on_complete`` runs exactly once whether the transfer finishes, the
    client disconnects or the task is cancelled.
    """

    chunk_size = 64 * 1024

    def __init__(
        self,
        path: Path,
        filename: str,
        media_type: str,
        content_length: int,
        on_complete: Callable[[], None],
        job_id: str = "",
    ):
        self.path = path
        self.status_code = 200
        self.media_type = media_type
        self.background = None
        self.on_complete = on_complete
        self.job_id = job_id
        self.bytes_sent = 0
        self.init_headers({
            "content-disposition": f'attachment; filename="{filename}"',
            "content-length": str(content_length),
            "cache-control": "no-store",
        })

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        completed = False
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })
            async with await anyio.open_file(self.path, mode="rb") as f:
                more_body = True
                while more_body:
                    chunk = await f.read(self.chunk_size)
                    more_body = len(chunk) == self.chunk_size
                    await send({
                        "type": "http.response.body",
                        "body": chunk,
                        "more_body": more_body,
                    })
                    self.bytes_sent += len(chunk)
            completed = True
        except (OSError, ClientDisconnect) as e:
            error = StreamingError()
            log_warning(
                logger,
                error.message,
                job_id=self.job_id,
                bytes_sent=self.bytes_sent,
                error=str(e) or type(e).__name__,
            )
        finally:
            if completed:
                log_info(logger, "Result streamed", job_id=self.job_id, bytes_sent=self.bytes_sent)
            self.on_complete()


class ResultStreamer:
    """Builds the download response for a succeeded job."""

    @staticmethod
    def attachment_filename(job: ConversionJob) -> str:
        # Built from trusted values only; the uploaded filename is never used
        profile = get_format_profile(job.requested_format)
        return f"converted-{job.id}.{profile.extension}"

    def stream(self, job: ConversionJob, on_complete: Callable[[], None]) -> ConvertedFileResponse:
        """Create a response streaming the job's output file.

        Raises:
            ProcessFailure: If the output file disappeared
        """
        profile = get_format_profile(job.requested_format)
        try:
            size = job.output_path.stat().st_size
        except OSError:
            raise ProcessFailure("Conversion failed. No output was produced.")

        return ConvertedFileResponse(
            path=job.output_path,
            filename=self.attachment_filename(job),
            media_type=profile.media_type,
            content_length=size,
            on_complete=on_complete,
            job_id=job.id,
        )
