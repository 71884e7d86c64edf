"""Shared fixtures for converter tests."""

from pathlib import Path

import pytest

from app.core.config import Settings
from fakes import FakeProcessRunner


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(upload_dir: Path) -> Settings:
    return Settings(
        UPLOAD_DIR=upload_dir,
        MAX_UPLOAD_SIZE_MB=1,
        CONVERSION_TIMEOUT_MS=300,
        PROBE_TIMEOUT_MS=300,
        MAX_CONCURRENT_CONVERSIONS=2,
        FFMPEG_BINARY="ffmpeg",
        FFPROBE_BINARY="ffprobe",
        LOG_JSON=False,
        CANONICAL_HOST="",
        STATIC_DIR=None,
        CORS_ORIGINS=[],
    )


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()
