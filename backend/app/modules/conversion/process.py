"""External process execution with timeout and bounded output capture.

Processes are always started from an argument vector, never through a
shell. A run is modelled as an awaitable for the process exit raced
against a timeout; the loser of the race is killed.
"""

import asyncio
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from app.modules.conversion.models import ProcessOutcome

logger = logging.getLogger(__name__)

# How long to wait for pipes to close after a forced kill
KILL_GRACE_SECONDS = 5.0

READ_CHUNK_SIZE = 4096


class RunningProcess(ABC):
    """Handle on a started process."""

    pid: Optional[int] = None
    stdout: Optional[asyncio.StreamReader] = None
    stderr: Optional[asyncio.StreamReader] = None

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        pass

    @abstractmethod
    def kill_tree(self) -> None:
        """Forcibly kill the process and any children it spawned."""
        pass


class ProcessRunner(ABC):
    """Starts external processes. Replaced by a fake in tests."""

    @abstractmethod
    async def start(self, argv: Sequence[str], capture_stdout: bool = False) -> RunningProcess:
        """Start a process.

        Raises:
            OSError: If the executable is missing or cannot be run
        """
        pass


class AsyncioProcess(RunningProcess):
    """RunningProcess backed by asyncio.subprocess."""

    def __init__(self, process: asyncio.subprocess.Process, own_group: bool):
        self._process = process
        self._own_group = own_group
        self.pid = process.pid
        self.stdout = process.stdout
        self.stderr = process.stderr

    async def wait(self) -> int:
        return await self._process.wait()

    def kill_tree(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            if self._own_group:
                os.killpg(self._process.pid, signal.SIGKILL)
            else:
                self._process.kill()
        except ProcessLookupError:
            pass


class AsyncioProcessRunner(ProcessRunner):
    """Runs processes with asyncio so waiting never blocks the event loop."""

    async def start(self, argv: Sequence[str], capture_stdout: bool = False) -> RunningProcess:
        # A new session makes the process a group leader so kill_tree
        # reaches anything it forks
        own_group = hasattr(os, "killpg")
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=own_group,
        )
        return AsyncioProcess(process, own_group)


class DiagnosticsBuffer:
    """Keeps the last ``max_bytes`` bytes written to it."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self.total_bytes = 0

    @property
    def truncated(self) -> bool:
        return self.total_bytes > self.max_bytes

    def write(self, data: bytes) -> None:
        self.total_bytes += len(data)
        self._buffer += data
        overflow = len(self._buffer) - self.max_bytes
        if overflow > 0:
            del self._buffer[:overflow]

    def getvalue(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self._buffer)


@dataclass
class ProcessResult:
    """Terminal outcome of one process run."""
    outcome: ProcessOutcome
    returncode: Optional[int] = None
    stdout: str = ""
    diagnostics: str = ""
    duration_seconds: float = 0.0
    spawn_error: Optional[str] = None


async def _drain(stream: asyncio.StreamReader, sink: DiagnosticsBuffer) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        sink.write(chunk)


async def _communicate(
    process: RunningProcess,
    stdout: DiagnosticsBuffer,
    stderr: DiagnosticsBuffer,
) -> int:
    readers = []
    if process.stderr is not None:
        readers.append(_drain(process.stderr, stderr))
    if process.stdout is not None:
        readers.append(_drain(process.stdout, stdout))
    await asyncio.gather(*readers)
    return await process.wait()


async def run_process(
    runner: ProcessRunner,
    argv: Sequence[str],
    timeout_seconds: float,
    max_output_bytes: int,
    capture_stdout: bool = False,
) -> ProcessResult:
    """Run a process to completion or until the timeout expires.

    The timeout clock starts once the process has been spawned. On expiry
    the whole process tree is killed and TIMED_OUT is reported regardless
    of any partial output.

    Args:
        runner: Process runner
        argv: Executable followed by its arguments
        timeout_seconds: Wall-clock budget
        max_output_bytes: Cap on captured stdout/stderr, each
        capture_stdout: Capture standard output (stderr is always captured)

    Returns:
        ProcessResult
    """
    try:
        process = await runner.start(argv, capture_stdout=capture_stdout)
    except OSError as e:
        return ProcessResult(outcome=ProcessOutcome.SPAWN_FAILED, spawn_error=str(e))

    started = time.monotonic()
    stdout = DiagnosticsBuffer(max_output_bytes)
    stderr = DiagnosticsBuffer(max_output_bytes)
    exit_task = asyncio.ensure_future(_communicate(process, stdout, stderr))

    try:
        done, _ = await asyncio.wait({exit_task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        process.kill_tree()
        exit_task.cancel()
        raise

    if exit_task in done:
        returncode = exit_task.result()
        outcome = ProcessOutcome.EXITED_ZERO if returncode == 0 else ProcessOutcome.EXITED_NON_ZERO
    else:
        logger.warning(
            "Process exceeded timeout, killing",
            extra={"pid": process.pid, "timeout_seconds": timeout_seconds},
        )
        process.kill_tree()
        returncode = None
        try:
            returncode = await asyncio.wait_for(exit_task, timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.error("Process did not exit after kill", extra={"pid": process.pid})
        outcome = ProcessOutcome.TIMED_OUT

    return ProcessResult(
        outcome=outcome,
        returncode=returncode,
        stdout=stdout.getvalue(),
        diagnostics=stderr.getvalue(),
        duration_seconds=time.monotonic() - started,
    )
