"""Tests for streaming the converted file and the cleanup hand-off."""

import logging
from pathlib import Path
from typing import Optional

import pytest
from starlette.requests import ClientDisconnect

from app.modules.conversion.cleanup import CleanupGuard
from app.modules.conversion.errors import ProcessFailure
from app.modules.conversion.models import ConversionJob, JobState
from app.modules.conversion.streaming import ConvertedFileResponse, ResultStreamer

CHUNK = ConvertedFileResponse.chunk_size


def make_succeeded_job(directory: Path, fmt: str = "mp3", size: int = CHUNK * 3) -> ConversionJob:
    job = ConversionJob(state=JobState.RUNNING)
    job.requested_format = fmt
    job.input_path = directory / f"{job.id}-input.wav"
    job.input_path.write_bytes(b"RIFF")
    job.output_path = directory / f"converted-{job.id}.mp3"
    job.output_path.write_bytes(b"\x01" * size)
    job.advance(JobState.SUCCEEDED)
    return job


class Receiver:
    """Collects ASGI messages and optionally fails on the Nth body chunk."""

    def __init__(self, fail_on_body: int = 0, error: Optional[Exception] = None):
        self.fail_on_body = fail_on_body
        self.error = error
        self.messages: list[dict] = []
        self.bodies = 0

    async def send(self, message: dict) -> None:
        if message["type"] == "http.response.body":
            self.bodies += 1
            if self.bodies == self.fail_on_body:
                raise self.error
        self.messages.append(message)


async def no_receive() -> dict:
    return {"type": "http.disconnect"}


SCOPE = {"type": "http", "method": "POST", "path": "/convert", "headers": []}


class TestConvertedFileResponse:

    @pytest.mark.asyncio
    async def test_full_download_then_cleanup(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path)
        guard = CleanupGuard(job)
        response = ResultStreamer().stream(job, on_complete=guard.detach())
        client = Receiver()

        await response(SCOPE, no_receive, client.send)

        body = b"".join(m["body"] for m in client.messages if m["type"] == "http.response.body")
        assert len(body) == CHUNK * 3
        assert client.messages[-1]["more_body"] is False
        assert guard.runs == 1
        assert list(tmp_path.iterdir()) == []
        assert job.state == JobState.CLEANED

    @pytest.mark.parametrize("error", [
        OSError("Broken pipe"),
        ClientDisconnect(),
    ])
    @pytest.mark.asyncio
    async def test_disconnect_mid_download_still_cleans_once(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture, error: Exception
    ) -> None:
        job = make_succeeded_job(tmp_path)
        guard = CleanupGuard(job)
        response = ResultStreamer().stream(job, on_complete=guard.detach())
        client = Receiver(fail_on_body=2, error=error)

        with caplog.at_level(logging.WARNING, logger="app.modules.conversion.streaming"):
            await response(SCOPE, no_receive, client.send)

        assert response.bytes_sent == CHUNK
        assert guard.runs == 1
        assert list(tmp_path.iterdir()) == []
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].job_id == job.id
        assert warnings[0].bytes_sent == CHUNK

    @pytest.mark.asyncio
    async def test_on_complete_runs_when_start_fails(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path)
        calls = []
        response = ResultStreamer().stream(job, on_complete=lambda: calls.append(1))

        async def refuse(message: dict) -> None:
            raise OSError("connection reset")

        await response(SCOPE, no_receive, refuse)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_other_errors_propagate_after_cleanup(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path)
        guard = CleanupGuard(job)
        response = ResultStreamer().stream(job, on_complete=guard.detach())
        client = Receiver(fail_on_body=1, error=RuntimeError("bug"))

        with pytest.raises(RuntimeError):
            await response(SCOPE, no_receive, client.send)

        assert guard.runs == 1


class TestResultStreamer:

    def test_headers(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path, size=10)

        response = ResultStreamer().stream(job, on_complete=lambda: None)

        assert response.headers["content-disposition"] == f'attachment; filename="converted-{job.id}.mp3"'
        assert response.headers["content-length"] == "10"
        assert response.headers["cache-control"] == "no-store"
        assert response.media_type == "audio/mpeg"

    def test_alac_downloads_with_m4a_extension(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path, fmt="alac", size=10)

        assert ResultStreamer.attachment_filename(job) == f"converted-{job.id}.m4a"

    def test_missing_output_is_failure(self, tmp_path: Path) -> None:
        job = make_succeeded_job(tmp_path)
        job.output_path.unlink()

        with pytest.raises(ProcessFailure):
            ResultStreamer().stream(job, on_complete=lambda: None)
