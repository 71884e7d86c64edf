"""Tests for process execution: timeout race, kill, bounded capture."""

import asyncio
import sys

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.conversion.models import ProcessOutcome
from app.modules.conversion.process import (
    AsyncioProcessRunner,
    DiagnosticsBuffer,
    run_process,
)
from fakes import FakeProcessRunner, ProcessScript


class TestDiagnosticsBuffer:
    """Property tests for the bounded stderr tail."""

    @given(
        max_bytes=st.integers(min_value=1, max_value=512),
        chunks=st.lists(st.binary(max_size=300), max_size=30),
    )
    @settings(max_examples=200)
    def test_keeps_only_the_tail(self, max_bytes: int, chunks: list[bytes]) -> None:
        buffer = DiagnosticsBuffer(max_bytes)
        for chunk in chunks:
            buffer.write(chunk)

        everything = b"".join(chunks)
        assert len(buffer) <= max_bytes
        assert len(buffer) == min(len(everything), max_bytes)
        assert buffer.total_bytes == len(everything)
        assert buffer.truncated == (len(everything) > max_bytes)
        if everything:
            assert everything.endswith(bytes(buffer._buffer))

    def test_invalid_utf8_is_replaced(self) -> None:
        buffer = DiagnosticsBuffer(16)
        buffer.write(b"\xff\xfeerror")
        assert buffer.getvalue().endswith("error")


class TestRunProcessWithFakes:

    @pytest.mark.asyncio
    async def test_exit_zero(self) -> None:
        runner = FakeProcessRunner(transcode=ProcessScript(stderr=b"progress", output=None))

        result = await run_process(runner, ["ffmpeg", "out.mp3"], timeout_seconds=1, max_output_bytes=64)

        assert result.outcome == ProcessOutcome.EXITED_ZERO
        assert result.returncode == 0
        assert result.diagnostics == "progress"

    @pytest.mark.asyncio
    async def test_exit_non_zero(self) -> None:
        runner = FakeProcessRunner(
            transcode=ProcessScript(returncode=1, stderr=b"Invalid data found", output=None)
        )

        result = await run_process(runner, ["ffmpeg", "out.mp3"], timeout_seconds=1, max_output_bytes=64)

        assert result.outcome == ProcessOutcome.EXITED_NON_ZERO
        assert result.returncode == 1
        assert "Invalid data" in result.diagnostics

    @pytest.mark.asyncio
    async def test_spawn_failure(self) -> None:
        runner = FakeProcessRunner(
            transcode=ProcessScript(spawn_error=FileNotFoundError(2, "No such file", "ffmpeg"))
        )

        result = await run_process(runner, ["ffmpeg"], timeout_seconds=1, max_output_bytes=64)

        assert result.outcome == ProcessOutcome.SPAWN_FAILED
        assert result.returncode is None
        assert result.spawn_error

    @pytest.mark.asyncio
    async def test_hanging_process_is_killed(self) -> None:
        runner = FakeProcessRunner(transcode=ProcessScript(hang=True, stderr=b"stuck"))

        result = await run_process(runner, ["ffmpeg", "out.mp3"], timeout_seconds=0.05, max_output_bytes=64)

        assert result.outcome == ProcessOutcome.TIMED_OUT
        assert runner.processes[0].killed
        assert result.diagnostics == "stuck"

    @pytest.mark.asyncio
    async def test_diagnostics_are_bounded(self) -> None:
        runner = FakeProcessRunner(
            transcode=ProcessScript(returncode=1, stderr=b"x" * 10_000 + b"tail", output=None)
        )

        result = await run_process(runner, ["ffmpeg"], timeout_seconds=1, max_output_bytes=100)

        assert len(result.diagnostics) == 100
        assert result.diagnostics.endswith("tail")

    @pytest.mark.asyncio
    async def test_stdout_captured_on_request(self) -> None:
        runner = FakeProcessRunner(probe=ProcessScript(stdout=b"aac\n", output=None))

        result = await run_process(
            runner, ["ffprobe", "in.mp4"], timeout_seconds=1, max_output_bytes=64, capture_stdout=True
        )

        assert result.stdout == "aac\n"

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self) -> None:
        runner = FakeProcessRunner(transcode=ProcessScript(hang=True))

        task = asyncio.create_task(
            run_process(runner, ["ffmpeg"], timeout_seconds=60, max_output_bytes=64)
        )
        while not runner.processes:
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert runner.processes[0].killed


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
class TestAsyncioProcessRunner:
    """Runs the real subprocess runner against the Python interpreter."""

    @pytest.mark.asyncio
    async def test_real_process_exit_status(self) -> None:
        result = await run_process(
            AsyncioProcessRunner(),
            [sys.executable, "-c", "import sys; sys.stderr.write('oops'); sys.exit(3)"],
            timeout_seconds=30,
            max_output_bytes=64,
        )

        assert result.outcome == ProcessOutcome.EXITED_NON_ZERO
        assert result.returncode == 3
        assert result.diagnostics == "oops"

    @pytest.mark.asyncio
    async def test_real_process_timeout_kills_tree(self) -> None:
        result = await run_process(
            AsyncioProcessRunner(),
            [sys.executable, "-c", "import time; time.sleep(60)"],
            timeout_seconds=0.5,
            max_output_bytes=64,
        )

        assert result.outcome == ProcessOutcome.TIMED_OUT
        assert result.duration_seconds < 30

    @pytest.mark.asyncio
    async def test_missing_binary_is_spawn_failure(self) -> None:
        result = await run_process(
            AsyncioProcessRunner(),
            ["/nonexistent/ffmpeg-binary", "-version"],
            timeout_seconds=5,
            max_output_bytes=64,
        )

        assert result.outcome == ProcessOutcome.SPAWN_FAILED
