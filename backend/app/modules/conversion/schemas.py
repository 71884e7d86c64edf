"""Pydantic schemas for the conversion API."""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every error response."""
    message: str = Field(..., description="Human readable error message")


class FormatInfo(BaseModel):
    """One supported output format."""
    name: str
    extension: str = Field(
        ...,
        description="Extension of the downloaded file; differs from name for alac (m4a)",
    )
    media_type: str
    lossless: bool


class FormatsResponse(BaseModel):
    """Output formats and upload constraints accepted by POST /convert."""
    output_formats: list[FormatInfo]
    default_format: str
    input_extensions: list[str]
    max_upload_size_mb: int
