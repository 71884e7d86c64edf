"""Exception taxonomy for the conversion lifecycle.

Every error carries the HTTP status and the client-safe message that the
exception handlers render as ``{"message": ...}``. Internal detail such as
transcoder stderr stays on the exception for logging and is never rendered.
"""

from typing import Optional


class ConversionError(Exception):
    """Base exception for conversion errors."""

    status_code: int = 500
    default_message: str = "Conversion failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[dict[str, str]]:
        return None


class ValidationError(ConversionError):
    """Client sent something we refuse to process."""
    status_code = 400
    default_message = "Invalid request"


class MissingFileError(ValidationError):
    default_message = "No file uploaded"


class InvalidFileTypeError(ValidationError):
    default_message = "Invalid file type"


class InvalidFormatError(ValidationError):
    default_message = "Invalid output format"


class NoAudioTrackError(ValidationError):
    default_message = "The uploaded file has no audio track"


class UploadTooLargeError(ValidationError):
    status_code = 413
    default_message = "File too large"


class AdmissionRejected(ConversionError):
    """Concurrency limit reached; the client should retry later."""
    status_code = 429
    default_message = "Server busy, please retry later"

    def __init__(self, message: Optional[str] = None, retry_after: int = 5):
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def headers(self) -> Optional[dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class ProcessSpawnError(ConversionError):
    """The external binary could not be started."""
    status_code = 500
    default_message = "Conversion service unavailable"


class ProcessFailure(ConversionError):
    """The transcoder exited non-zero or produced no output."""
    status_code = 500
    default_message = "Conversion failed"

    def __init__(
        self,
        message: Optional[str] = None,
        returncode: Optional[int] = None,
        diagnostics: str = "",
    ):
        super().__init__(message)
        self.returncode = returncode
        self.diagnostics = diagnostics


class ConversionTimeoutError(ConversionError):
    """The transcoder exceeded its wall-clock budget and was killed."""
    status_code = 408
    default_message = "Conversion timed out"


class StreamingError(ConversionError):
    """The client went away while the result was being sent. Logged only."""
    status_code = 499
    default_message = "Client disconnected during download"
