"""Tests for settings validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestSettings:

    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.PORT == 3000
        assert settings.max_upload_bytes == 100 * 1024 * 1024
        assert settings.conversion_timeout_seconds == 120
        assert settings.MAX_CONCURRENT_CONVERSIONS == 3
        assert settings.DEFAULT_OUTPUT_FORMAT == "mp3"
        assert "alac" in settings.ALLOWED_OUTPUT_FORMATS

    def test_names_are_normalized(self) -> None:
        settings = Settings(
            ALLOWED_OUTPUT_FORMATS=[" MP3", ".Flac", ""],
            ALLOWED_INPUT_EXTENSIONS=[".WAV"],
            DEFAULT_OUTPUT_FORMAT="FLAC",
        )

        assert settings.ALLOWED_OUTPUT_FORMATS == ["mp3", "flac"]
        assert settings.ALLOWED_INPUT_EXTENSIONS == ["wav"]
        assert settings.DEFAULT_OUTPUT_FORMAT == "flac"

    def test_format_without_profile_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(ALLOWED_OUTPUT_FORMATS=["mp3", "xyz"])

    def test_default_must_be_allow_listed(self) -> None:
        with pytest.raises(ValidationError):
            Settings(ALLOWED_OUTPUT_FORMATS=["wav"], DEFAULT_OUTPUT_FORMAT="mp3")

    @pytest.mark.parametrize("field", [
        "MAX_UPLOAD_SIZE_MB",
        "MAX_CONCURRENT_CONVERSIONS",
        "CONVERSION_TIMEOUT_MS",
        "PROBE_TIMEOUT_MS",
    ])
    def test_limits_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_CONCURRENT_CONVERSIONS", "7")
        monkeypatch.setenv("CONVERSION_TIMEOUT_MS", "1500")

        settings = Settings()

        assert settings.MAX_CONCURRENT_CONVERSIONS == 7
        assert settings.conversion_timeout_seconds == 1.5

    def test_ensure_dirs(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        Settings(UPLOAD_DIR=target).ensure_dirs()
        assert target.is_dir()
