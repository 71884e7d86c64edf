"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Every option has a safe default so the service starts without a .env file.
"""

import shutil
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.modules.conversion.profiles import FORMAT_PROFILES


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "Audio Converter"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ORIGINS: list[str] = []

    # Redirects non-canonical hosts (e.g. bare domain -> www). Empty disables it.
    CANONICAL_HOST: str = ""

    # Static front-end files, served at "/" when the directory exists
    STATIC_DIR: Optional[Path] = None

    # Upload limits
    MAX_UPLOAD_SIZE_MB: int = 100
    UPLOAD_DIR: Path = Path("./uploads")
    UPLOAD_FIELD_NAME: str = "audioFile"
    ALLOWED_INPUT_EXTENSIONS: list[str] = [
        "mp3", "wav", "flac", "aac", "m4a", "ogg", "oga", "wma", "opus",
        "aiff", "aif", "alac", "amr", "caf", "ac3", "webm",
        "mp4", "m4v", "mov", "mkv", "avi", "wmv", "flv", "3gp",
    ]
    VIDEO_INPUT_EXTENSIONS: list[str] = [
        "mp4", "m4v", "mov", "mkv", "avi", "wmv", "flv", "3gp", "webm",
    ]
    ALLOWED_MIME_PREFIXES: list[str] = ["audio/", "video/"]
    GENERIC_MIME_TYPES: list[str] = ["application/octet-stream"]

    # Conversion
    ALLOWED_OUTPUT_FORMATS: list[str] = [
        "mp3", "wav", "flac", "aac", "m4a", "ogg", "wma", "opus", "aiff", "alac",
    ]
    DEFAULT_OUTPUT_FORMAT: str = "mp3"
    MAX_CONCURRENT_CONVERSIONS: int = 3
    CONVERSION_TIMEOUT_MS: int = 120_000
    PROBE_TIMEOUT_MS: int = 10_000
    PROBE_VIDEO_INPUTS: bool = True
    DIAGNOSTICS_MAX_BYTES: int = 4096

    # External tools
    FFMPEG_BINARY: str = shutil.which("ffmpeg") or "ffmpeg"
    FFPROBE_BINARY: str = shutil.which("ffprobe") or "ffprobe"

    @field_validator(
        "ALLOWED_INPUT_EXTENSIONS",
        "VIDEO_INPUT_EXTENSIONS",
        "ALLOWED_OUTPUT_FORMATS",
        mode="after",
    )
    @classmethod
    def _normalize_names(cls, values: list[str]) -> list[str]:
        return [v.strip().lower().lstrip(".") for v in values if v.strip()]

    @field_validator("ALLOWED_MIME_PREFIXES", "GENERIC_MIME_TYPES", mode="after")
    @classmethod
    def _normalize_mime(cls, values: list[str]) -> list[str]:
        return [v.strip().lower() for v in values if v.strip()]

    @field_validator(
        "MAX_UPLOAD_SIZE_MB",
        "MAX_CONCURRENT_CONVERSIONS",
        "CONVERSION_TIMEOUT_MS",
        "PROBE_TIMEOUT_MS",
        "DIAGNOSTICS_MAX_BYTES",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _check_formats(self) -> "Settings":
        unknown = [f for f in self.ALLOWED_OUTPUT_FORMATS if f not in FORMAT_PROFILES]
        if unknown:
            raise ValueError(f"No encoder profile for output formats: {', '.join(unknown)}")
        default = self.DEFAULT_OUTPUT_FORMAT.strip().lower()
        if default not in self.ALLOWED_OUTPUT_FORMATS:
            raise ValueError(f"DEFAULT_OUTPUT_FORMAT '{default}' is not allow-listed")
        self.DEFAULT_OUTPUT_FORMAT = default
        return self

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def conversion_timeout_seconds(self) -> float:
        return self.CONVERSION_TIMEOUT_MS / 1000

    @property
    def probe_timeout_seconds(self) -> float:
        return self.PROBE_TIMEOUT_MS / 1000

    def ensure_dirs(self) -> None:
        """Creates the upload/output directory if it doesn't exist."""
        self.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


settings = Settings()
