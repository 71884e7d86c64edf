"""Multipart upload handling for conversion requests."""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

import anyio
from fastapi import Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.types import Message, Receive

from app.core.logging import log_info
from app.modules.conversion.cleanup import remove_file
from app.modules.conversion.errors import (
    InvalidFileTypeError,
    MissingFileError,
    UploadTooLargeError,
    ValidationError,
)
from app.modules.conversion.models import ConversionJob

logger = logging.getLogger(__name__)

# Allowance for multipart boundaries and the small text fields
MULTIPART_OVERHEAD_BYTES = 64 * 1024

CHUNK_SIZE = 1024 * 1024  # 1 MB


class BodySizeLimit:
    """ASGI receive wrapper that stops reading the body past ``limit`` bytes.

    Covers bodies sent without Content-Length (chunked transfer), which the
    header check cannot see.
    """

    def __init__(self, receive: Receive, limit: int, error: Callable[[], Exception]):
        self._receive = receive
        self.limit = limit
        self._error = error
        self.received = 0

    async def __call__(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request":
            self.received += len(message.get("body", b""))
            if self.received > self.limit:
                raise self._error()
        return message


class UploadReceiver:
    """Accepts one uploaded file per request and stores it under the job's id."""

    def __init__(
        self,
        upload_dir: Path,
        max_bytes: int,
        allowed_extensions: Iterable[str],
        allowed_mime_prefixes: Iterable[str] = ("audio/", "video/"),
        generic_mime_types: Iterable[str] = ("application/octet-stream",),
        field_name: str = "audioFile",
    ):
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes
        self.allowed_extensions = tuple(allowed_extensions)
        self.allowed_mime_prefixes = tuple(allowed_mime_prefixes)
        self.generic_mime_types = frozenset(generic_mime_types)
        self.field_name = field_name

    @property
    def max_size_mb(self) -> float:
        return self.max_bytes / (1024 * 1024)

    def _too_large(self) -> UploadTooLargeError:
        return UploadTooLargeError(f"File too large (max {self.max_size_mb:g} MB)")

    def check_content_length(self, request: Request) -> None:
        """Reject oversized bodies from the header alone, before reading them."""
        header = request.headers.get("content-length")
        if header is None:
            return
        try:
            length = int(header)
        except ValueError:
            raise ValidationError("Invalid Content-Length header")
        if length > self.max_bytes + MULTIPART_OVERHEAD_BYTES:
            raise self._too_large()

    def check_file_type(self, filename: str, content_type: Optional[str]) -> str:
        """Check extension and declared MIME type; both must pass.

        Returns:
            The lower-cased extension without the dot

        Raises:
            InvalidFileTypeError: If either check fails
        """
        extension = Path(filename).suffix.lower().lstrip(".")
        if not extension or extension not in self.allowed_extensions:
            raise InvalidFileTypeError(
                "Invalid file type. Allowed extensions: "
                + ", ".join(self.allowed_extensions)
            )

        mime = (content_type or "").split(";", 1)[0].strip().lower()
        mime_ok = mime.startswith(self.allowed_mime_prefixes) or mime in self.generic_mime_types
        if not mime_ok:
            raise InvalidFileTypeError("Invalid file type. Please upload an audio or video file.")

        return extension

    def input_path_for(self, job: ConversionJob, extension: str) -> Path:
        # ffmpeg infers the demuxer from the extension, so keep it
        return self.upload_dir / f"{job.id}-input.{extension}"

    async def persist(self, upload: UploadFile, job: ConversionJob) -> Path:
        """Copy the upload to the job's input path in chunks.

        The size limit is enforced while copying; a partially written file
        is removed before the error propagates.
        """
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        path = self.input_path_for(job, job.input_extension)
        job.input_path = path

        total = 0
        try:
            async with await anyio.open_file(path, "wb") as dst:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise self._too_large()
                    await dst.write(chunk)
        except BaseException:
            remove_file(path)
            raise

        job.input_size = total
        if total == 0:
            remove_file(path)
            raise MissingFileError("Uploaded file is empty")
        return path

    async def receive(self, request: Request, job: ConversionJob) -> Optional[str]:
        """Parse the multipart body, validate the file and persist it.

        Returns:
            The raw ``format`` form field, or None if absent

        Raises:
            UploadTooLargeError: Body or file exceeds the size limit
            MissingFileError: No file in the expected field
            InvalidFileTypeError: Extension or MIME type not allowed
            ValidationError: Malformed multipart body
        """
        self.check_content_length(request)

        limited = Request(
            request.scope,
            receive=BodySizeLimit(
                request.receive, self.max_bytes + MULTIPART_OVERHEAD_BYTES, self._too_large
            ),
        )
        try:
            form = await limited.form(max_files=1)
        except (MultiPartException, StarletteHTTPException) as e:
            raise ValidationError("Malformed upload") from e

        try:
            upload = form.get(self.field_name)
            if not isinstance(upload, UploadFile) or not upload.filename:
                raise MissingFileError()

            job.original_filename = upload.filename
            job.declared_mime_type = (upload.content_type or "").split(";", 1)[0].strip().lower()
            job.input_extension = self.check_file_type(upload.filename, upload.content_type)

            if upload.size is not None and upload.size > self.max_bytes:
                raise self._too_large()

            await self.persist(upload, job)

            requested_format = form.get("format")
            if requested_format is not None and not isinstance(requested_format, str):
                requested_format = None
        finally:
            await form.close()

        log_info(
            logger,
            "Upload accepted",
            job_id=job.id,
            input_bytes=job.input_size,
            extension=job.input_extension,
            mime_type=job.declared_mime_type,
        )
        return requested_format
