"""
Subprocess execution with streaming output, timeouts and retry.

Spawns the external CLI without a shell, streams stdout chunks to an
optional progress callback, caps total output size, escalates from
SIGTERM to SIGKILL on timeout, and retries configured failure classes
with exponential backoff.
"""

import asyncio
import codecs
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 600_000
DEFAULT_MAX_OUTPUT_BYTES = 50 * 1024 * 1024
KILL_GRACE_SECONDS = 5.0
READ_CHUNK_BYTES = 64 * 1024

RETRY_TRIGGERS = frozenset({"timeout", "exit_nonzero", "spawn_error"})

ProgressCallback = Callable[[str], None]


@dataclass
class RetryPolicy:
    """
    Retry configuration for a process run.

    Attributes:
        attempts: Total number of tries (including the first)
        backoff_ms: Base delay; attempt N waits backoff_ms * 2^(N-1)
        retry_on: Failure classes that trigger a retry
    """

    attempts: int = 1
    backoff_ms: int = 1000
    retry_on: FrozenSet[str] = frozenset({"timeout"})

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must not be negative")
        self.retry_on = frozenset(self.retry_on)
        unknown = self.retry_on - RETRY_TRIGGERS
        if unknown:
            raise ValueError(
                f"Invalid retry trigger(s): {', '.join(sorted(unknown))}. "
                f"Must be one of: {', '.join(sorted(RETRY_TRIGGERS))}"
            )

    def should_retry(self, result: "ProcessResult") -> bool:
        """Return True if a failed result matches one of the configured triggers."""
        if result.ok:
            return False
        if result.timed_out and "timeout" in self.retry_on:
            return True
        if result.exit_code not in (None, 0) and "exit_nonzero" in self.retry_on:
            return True
        if result.exit_code is None and result.signal is None and "spawn_error" in self.retry_on:
            return True
        return False

    def delay_seconds(self, attempt: int) -> float:
        return self.backoff_ms * (2 ** (attempt - 1)) / 1000.0


@dataclass
class ProcessResult:
    """Outcome of a single process run (after any retries)."""

    ok: bool
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    signal: Optional[str] = None
    timed_out: bool = False
    partial_stdout: Optional[str] = None
    duration_ms: int = 0
    attempts: int = 1

    @property
    def output_exceeded(self) -> bool:
        return self.partial_stdout is not None


class CommandFailedError(RuntimeError):
    """Raised by run_simple when a command does not succeed."""

    def __init__(self, message: str, result: ProcessResult):
        super().__init__(message)
        self.result = result


def _signal_name(returncode: Optional[int]) -> Optional[str]:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def _send(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        process.send_signal(sig)
    except ProcessLookupError:
        pass


async def _run_once(
    command: str,
    args: List[str],
    on_progress: Optional[ProgressCallback],
    timeout_ms: int,
    max_output_bytes: int,
    cwd: Optional[Union[str, Path]],
    env: Optional[Dict[str, str]],
) -> ProcessResult:
    started = time.monotonic()
    logger.info(f"Executing: {command} {' '.join(args)}")

    child_env = None
    if env:
        child_env = {**os.environ, **env}

    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=child_env,
        )
    except FileNotFoundError as e:
        if cwd is not None and e.filename == str(cwd):
            message = f"Working directory not found: {cwd}"
        else:
            message = f"Command '{command}' not found. Is it installed and in PATH?"
        logger.error(f"Failed to spawn {command}: {message}")
        return ProcessResult(ok=False, exit_code=None, stderr=message)
    except OSError as e:
        logger.error(f"Failed to spawn {command}: {e}")
        return ProcessResult(ok=False, exit_code=None, stderr=str(e))

    stdout_chunks: List[bytes] = []
    stderr_chunks: List[bytes] = []
    captured = 0
    exceeded = False
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def pump_stdout():
        nonlocal captured, exceeded
        while True:
            chunk = await process.stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            if exceeded:
                # keep draining so the child never blocks on a full pipe
                continue
            if captured + len(chunk) > max_output_bytes:
                exceeded = True
                logger.warning(f"Output exceeded {max_output_bytes} bytes, stopping collection")
                _send(process, signal.SIGTERM)
                continue
            stdout_chunks.append(chunk)
            captured += len(chunk)
            if on_progress is not None:
                try:
                    on_progress(decoder.decode(chunk))
                except Exception:
                    logger.exception("Progress callback failed")

    async def pump_stderr():
        while True:
            chunk = await process.stderr.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            stderr_chunks.append(chunk)

    readers = asyncio.ensure_future(asyncio.gather(pump_stdout(), pump_stderr()))
    timed_out = False

    try:
        await asyncio.wait_for(process.wait(), timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning(f"Process timeout after {timeout_ms}ms, sending SIGTERM")
        _send(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.error("Process did not terminate, sending SIGKILL")
            _send(process, signal.SIGKILL)
            await process.wait()

    try:
        await asyncio.wait_for(readers, KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        # a grandchild may still hold the pipes open
        logger.warning(f"Output pipes still open after {command} exited")

    returncode = process.returncode
    sig = _signal_name(returncode)
    exit_code = None if sig else returncode
    raw_stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
    stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
    duration_ms = int((time.monotonic() - started) * 1000)

    outcome = exit_code if exit_code is not None else sig
    logger.info(
        f"Command completed in {duration_ms}ms with exit code {outcome} ({captured} bytes of output)"
    )

    return ProcessResult(
        ok=exit_code == 0 and not exceeded and not timed_out,
        exit_code=exit_code,
        signal=sig,
        stdout=raw_stdout.strip(),
        stderr=stderr.strip(),
        timed_out=timed_out,
        partial_stdout=raw_stdout if exceeded else None,
        duration_ms=duration_ms,
    )


async def run(
    command: str,
    args: Iterable[str],
    *,
    on_progress: Optional[ProgressCallback] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    retry: Optional[RetryPolicy] = None,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> ProcessResult:
    """
    Run an external command and collect its output.

    Never raises for process failures; the outcome is described by the
    returned ProcessResult.

    Args:
        command: Executable name or path
        args: Argument list (passed without shell interpolation)
        on_progress: Called synchronously with each decoded stdout chunk
        timeout_ms: Time before SIGTERM (SIGKILL follows after a 5s grace)
        max_output_bytes: stdout cap; exceeding it terminates the child
        retry: Optional retry policy
        cwd: Working directory for the child
        env: Extra environment variables merged over os.environ

    Returns:
        ProcessResult of the last attempt
    """
    arg_list = list(args)
    max_attempts = retry.attempts if retry else 1
    started = time.monotonic()
    attempt = 0

    while True:
        attempt += 1
        result = await _run_once(
            command, arg_list, on_progress, timeout_ms, max_output_bytes, cwd, env
        )
        result.attempts = attempt

        if result.ok or retry is None or attempt >= max_attempts or not retry.should_retry(result):
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

        delay = retry.delay_seconds(attempt)
        logger.warning(
            f"Retrying {command} after {delay * 1000:.0f}ms (attempt {attempt + 1}/{max_attempts})"
        )
        await asyncio.sleep(delay)


async def run_simple(
    command: str,
    args: Iterable[str],
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    on_progress: Optional[ProgressCallback] = None,
    runner=None,
) -> str:
    """
    Run a command and return its stdout.

    ``runner`` replaces ``run`` for the single call (same signature).

    Raises:
        CommandFailedError: If the command fails, times out or cannot start
    """
    if runner is None:
        runner = run
    result = await runner(command, args, on_progress=on_progress, timeout_ms=timeout_ms)
    if not result.ok:
        if result.timed_out:
            message = f"Command timed out after {timeout_ms}ms"
        else:
            message = (
                f"Command failed with exit code {result.exit_code}: "
                f"{result.stderr or 'Unknown error'}"
            )
        raise CommandFailedError(message, result)
    return result.stdout
