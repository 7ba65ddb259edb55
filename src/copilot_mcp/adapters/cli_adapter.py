"""Copilot CLI adapter for MCP tool invocation."""

import asyncio
import dataclasses
import logging
import os
import re
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, Optional

from copilot_mcp.cli_args import MODEL_ENV_VAR, CopilotOptions, Flag, build_copilot_args
from copilot_mcp.errors import ClassifiedError, create_error, log_error
from copilot_mcp.runner import (
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TIMEOUT_MS,
    CommandFailedError,
    ProcessResult,
    ProgressCallback,
    RetryPolicy,
    run,
    run_simple,
)
from copilot_mcp.session import SessionStore
from copilot_mcp.workdir import WorkingDirectoryResolver

from . import OperationResult

logger = logging.getLogger(__name__)

# Partial output shorter than this is not worth returning on failure
MIN_SALVAGE_CHARS = 1000

VERSION_TIMEOUT_MS = 10_000
HELP_TIMEOUT_MS = 15_000

KNOWN_MODELS = ["gpt-5", "claude-sonnet-4", "claude-sonnet-4.5", "claude-haiku-4.5"]

_VERSION_PATTERN = re.compile(r"(\d+\.\d+\.\d+)")
_MODEL_CHOICES_PATTERN = re.compile(r"--model.*?choices:\s*([^)]+)\)", re.IGNORECASE | re.DOTALL)
_AUTH_KEYWORDS = ("authentication", "login", "unauthorized", "credentials")


def handle_tool_errors(handler):
    """Decorator converting exceptions raised by an async tool handler into error results."""
    @wraps(handler)
    async def wrapper(*args, **kwargs):
        try:
            return await handler(*args, **kwargs)
        except ClassifiedError as e:
            return OperationResult.error_result(
                message=f"{e.title}: {e.message}",
                errors=[e.message, e.description, f"Suggestion: {e.suggestion}"],
                data={"error": e.to_dict()},
            ).to_dict()
        except ValueError as e:
            return OperationResult.error_result(message=str(e)).to_dict()
        except Exception as e:
            logger.exception(f"Tool error in {handler.__name__}")
            return OperationResult.error_result(
                message=f"Operation failed: {str(e)}",
                errors=[
                    str(e),
                    f"Tool: {handler.__name__}",
                    "See logs for full traceback",
                ],
            ).to_dict()
    return wrapper


@dataclass
class ExecutionResult:
    """Output of a Copilot invocation plus the session bookkeeping around it."""

    output: str
    working_dir: str
    session_id: Optional[str] = None
    workspace_id: Optional[str] = None
    conversation_id: Optional[str] = None
    partial: bool = False
    duration_ms: int = 0
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class CopilotAdapter:
    """
    Runs prompts through the Copilot CLI.

    Resolves the working directory, tracks the workspace session, builds
    the command line, runs it and classifies failures.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        resolver: Optional[WorkingDirectoryResolver] = None,
        command: str = "copilot",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        retry: Optional[RetryPolicy] = None,
        runner=run,
    ):
        self.store = store if store is not None else SessionStore()
        self.resolver = resolver if resolver is not None else WorkingDirectoryResolver()
        self.command = command
        self.timeout_ms = timeout_ms
        self.max_output_bytes = max_output_bytes
        self.retry = retry
        self._run = runner

    async def execute(
        self,
        prompt: str,
        options: Optional[CopilotOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExecutionResult:
        """
        Run a prompt and return its output.

        Raises:
            ValueError: If the prompt is empty
            ClassifiedError: If the CLI fails and no usable partial output exists
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")

        options = options or CopilotOptions()
        working_dir = self.resolver.resolve(options.working_dir, prompt)

        session = None
        if options.enable_session_tracking:
            session = self.store.get_or_create_session(
                working_dir, options.session_id, options.model
            )
            with self.store.locks.hold(session.id):
                self.store.add_to_history(session.id, "user", prompt)
            if session.conversation_id and not (options.resume or options.continue_session):
                options = dataclasses.replace(options, resume=True)
                logger.debug(
                    f"Resuming conversation for session {session.id} "
                    f"(tracked id {session.conversation_id})"
                )
            # session model only stands in for an unset COPILOT_MODEL
            if not options.model and session.model and not os.environ.get(MODEL_ENV_VAR):
                options = dataclasses.replace(options, model=session.model)

        args = build_copilot_args(prompt, options, working_dir)
        timeout_ms = options.timeout_ms or self.timeout_ms
        max_output_bytes = options.max_output_bytes or self.max_output_bytes

        # the accepted race: another call on this workspace may interleave here
        result = await self._run(
            self.command,
            args,
            on_progress=on_progress,
            timeout_ms=timeout_ms,
            max_output_bytes=max_output_bytes,
            retry=options.retry or self.retry,
            cwd=working_dir,
        )

        partial = False
        if result.ok:
            output = result.stdout
        elif result.partial_stdout and len(result.partial_stdout) > MIN_SALVAGE_CHARS:
            logger.warning("Copilot CLI failed but partial output is available, using it")
            output = result.partial_stdout
            partial = True
        else:
            error = create_error(
                self._failure_message(result, timeout_ms, max_output_bytes),
                {
                    "command": self.command,
                    "exit_code": result.exit_code,
                    "signal": result.signal,
                    "timed_out": result.timed_out,
                    "attempts": result.attempts,
                    "working_dir": str(working_dir),
                    "session_id": session.id if session else None,
                },
            )
            log_error(error)
            raise error

        conversation_id = None
        if session is not None:
            with self.store.locks.hold(session.id):
                self.store.add_to_history(session.id, "assistant", output)
                conversation_id = self.store.record_conversation_id(session.id, output)
            conversation_id = conversation_id or session.conversation_id

        return ExecutionResult(
            output=output,
            working_dir=str(working_dir),
            session_id=session.id if session else None,
            workspace_id=session.workspace_id if session else None,
            conversation_id=conversation_id,
            partial=partial,
            duration_ms=result.duration_ms,
            attempts=result.attempts,
        )

    def _failure_message(self, result: ProcessResult, timeout_ms: int, max_output_bytes: int) -> str:
        if result.timed_out:
            return f"Copilot CLI timed out after {timeout_ms}ms"
        if result.output_exceeded:
            return f"Copilot CLI output exceeded {max_output_bytes} bytes"
        if result.exit_code is None and result.signal:
            detail = result.stderr or "no diagnostic output"
            return f"Copilot CLI was terminated by {result.signal}: {detail}"
        if result.exit_code is None:
            return result.stderr or f"Failed to start {self.command}"
        return f"Copilot CLI failed with exit code {result.exit_code}: {result.stderr or 'Unknown error'}"

    # ========================================================================
    # Diagnostics
    # ========================================================================

    async def get_version(self) -> Optional[str]:
        """Return the CLI version, or None if the CLI is not installed."""
        try:
            stdout = await run_simple(
                self.command, [Flag.VERSION], timeout_ms=VERSION_TIMEOUT_MS, runner=self._run
            )
        except CommandFailedError as e:
            logger.debug(f"CLI version check failed: {e}")
            return None
        match = _VERSION_PATTERN.search(stdout)
        return match.group(1) if match else stdout.strip()

    async def get_help(self) -> ProcessResult:
        return await self._run(self.command, [Flag.HELP], timeout_ms=HELP_TIMEOUT_MS)

    async def check_authentication(self) -> Dict[str, Any]:
        """Run ``--help`` and look for authentication complaints."""
        result = await self.get_help()
        if result.ok:
            return {"authenticated": True, "error": None, "help": result.stdout}
        stderr = result.stderr.lower()
        if any(keyword in stderr for keyword in _AUTH_KEYWORDS):
            return {
                "authenticated": False,
                "error": 'Authentication required. Run "copilot" interactively to login.',
                "help": None,
            }
        # no auth complaint, assume credentials are fine
        return {"authenticated": True, "error": None, "help": None}

    @staticmethod
    def parse_models(help_text: Optional[str]) -> list:
        """Extract ``--model`` choices from help output, falling back to known models."""
        if help_text:
            match = _MODEL_CHOICES_PATTERN.search(help_text)
            if match:
                models = [m.strip().strip('"') for m in match.group(1).split(",")]
                models = [m for m in models if m]
                if models:
                    return models
        return list(KNOWN_MODELS)

    async def health(self) -> Dict[str, Any]:
        version = await self.get_version()
        installed = version is not None
        if installed:
            auth = await self.check_authentication()
        else:
            auth = {"authenticated": False, "error": "CLI not installed", "help": None}
        return {
            "installed": installed,
            "version": version,
            "authenticated": auth["authenticated"],
            "auth_error": auth["error"],
            "available_models": self.parse_models(auth["help"]) if installed else [],
        }


async def gather_limited(coroutines, limit: int):
    """Run coroutines concurrently, at most ``limit`` at a time, preserving order."""
    semaphore = asyncio.Semaphore(limit)

    async def guarded(coro):
        async with semaphore:
            return await coro

    return await asyncio.gather(*(guarded(c) for c in coroutines), return_exceptions=True)
