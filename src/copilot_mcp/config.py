"""
Server configuration and PID file management.

Handles configuration loading (~/.config/copilot-mcp/config.yaml, or the
file named by $COPILOT_MCP_CONFIG) and PID file operations for server
lifecycle management.
"""

import logging
import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from filelock import FileLock, Timeout as FilelockTimeout

from copilot_mcp.persistence import atomic_write
from copilot_mcp.runner import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_TIMEOUT_MS, RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "COPILOT_MCP_CONFIG"
DEFAULT_CONFIG_DIR = Path("~/.config/copilot-mcp")
CONFIG_FILE_NAME = "config.yaml"
PID_FILE_NAME = "server.pid"

# env var -> (field, type)
_ENV_OVERRIDES = {
    "MCP_SERVER_HOST": ("host", str),
    "MCP_SERVER_PORT": ("port", int),
    "MCP_SERVER_TRANSPORT": ("transport", str),
    "COPILOT_CLI_PATH": ("cli_command", str),
    "COPILOT_TIMEOUT_MS": ("timeout_ms", int),
    "COPILOT_MAX_OUTPUT_BYTES": ("max_output_bytes", int),
    "COPILOT_MAX_RETRIES": ("retry_attempts", int),
    "COPILOT_RETRY_DELAY_MS": ("retry_backoff_ms", int),
    "LOG_LEVEL": ("log_level", str),
}


def default_config_path() -> Path:
    if CONFIG_ENV_VAR in os.environ:
        return Path(os.environ[CONFIG_ENV_VAR]).expanduser()
    return DEFAULT_CONFIG_DIR.expanduser() / CONFIG_FILE_NAME


@dataclass
class MCPConfig:
    """
    Bridge server configuration.

    Attributes:
        host: Server bind address (SSE only)
        port: Server port (SSE only)
        transport: Transport mode ("stdio" or "sse")
        cli_command: Copilot CLI executable
        timeout_ms: Default CLI timeout
        max_output_bytes: Default stdout cap
        retry_attempts: Total tries per CLI run (1 disables retry)
        retry_backoff_ms: Base retry delay
        retry_on: Failure classes that trigger a retry
        log_level: Python logging level name
        pid_file: Path to PID file (defaults next to the config file)
    """

    host: str = "127.0.0.1"
    port: int = 8000
    transport: Literal["stdio", "sse"] = "stdio"
    cli_command: str = "copilot"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    retry_attempts: int = 1
    retry_backoff_ms: int = 1000
    retry_on: List[str] = field(default_factory=lambda: ["timeout"])
    log_level: str = "INFO"
    pid_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "MCPConfig":
        """
        Load configuration from YAML.

        Falls back to defaults if the file doesn't exist. Environment
        variables override config file values.

        Args:
            config_path: Config file (defaults to $COPILOT_MCP_CONFIG or
                ~/.config/copilot-mcp/config.yaml)

        Returns:
            MCPConfig instance with loaded/default values

        Raises:
            ValueError: If the config file or an override has an invalid format
        """
        config_file = Path(config_path) if config_path else default_config_path()
        config_dict = {}

        if config_file.exists():
            try:
                with open(config_file) as f:
                    config_dict = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid {config_file.name}: {e}") from e
            if not isinstance(config_dict, dict):
                raise ValueError(f"Invalid {config_file.name}: expected a mapping")
            logger.debug(f"Loaded configuration from {config_file}")

        for env_var, (key, cast) in _ENV_OVERRIDES.items():
            if env_var not in os.environ:
                continue
            raw = os.environ[env_var]
            try:
                config_dict[key] = cast(raw)
            except ValueError:
                raise ValueError(f"Invalid {env_var}: {raw}. Must be an integer.")

        if config_dict.get("pid_file"):
            config_dict["pid_file"] = Path(config_dict["pid_file"]).expanduser()
        else:
            config_dict["pid_file"] = config_file.parent / PID_FILE_NAME

        config = cls(**{k: v for k, v in config_dict.items() if k in cls.__annotations__})
        config.validate()
        return config

    def validate(self) -> None:
        if self.transport not in ("stdio", "sse"):
            raise ValueError(f"Invalid transport '{self.transport}'. Must be 'stdio' or 'sse'.")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        # RetryPolicy validates attempts, backoff and triggers
        self.retry_policy()

    def retry_policy(self) -> Optional[RetryPolicy]:
        """Build the default RetryPolicy, or None when retries are disabled."""
        policy = RetryPolicy(
            attempts=max(self.retry_attempts, 1),
            backoff_ms=self.retry_backoff_ms,
            retry_on=frozenset(self.retry_on or []),
        )
        return policy if policy.attempts > 1 else None

    def save(self, config_path: Optional[Path] = None):
        """Save configuration as YAML (atomically)."""
        config_file = Path(config_path) if config_path else default_config_path()
        config_dict = {
            "host": self.host,
            "port": self.port,
            "transport": self.transport,
            "cli_command": self.cli_command,
            "timeout_ms": self.timeout_ms,
            "max_output_bytes": self.max_output_bytes,
            "retry_attempts": self.retry_attempts,
            "retry_backoff_ms": self.retry_backoff_ms,
            "retry_on": list(self.retry_on),
            "log_level": self.log_level,
        }
        atomic_write(config_file, yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=False))


class PIDFileManager:
    """
    Manages PID file for server lifecycle.

    Prevents multiple server instances and enables graceful shutdown.
    """

    def __init__(self, pid_file: Path, lock_timeout: float = 5.0):
        self.pid_file = pid_file
        self.lock_timeout = lock_timeout

    @property
    def lock_file(self) -> Path:
        return self.pid_file.with_name(self.pid_file.name + ".lock")

    def write(self) -> None:
        """
        Write current process PID to PID file.

        Raises:
            RuntimeError: If another server is running or the PID file is locked
        """
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with FileLock(self.lock_file, timeout=self.lock_timeout):
                existing_pid = self.read()
                if existing_pid and existing_pid != os.getpid() and self._is_process_running(existing_pid):
                    raise RuntimeError(
                        f"MCP server already running (PID: {existing_pid}). "
                        f"Stop it first with: copilot-mcp stop"
                    )
                atomic_write(self.pid_file, str(os.getpid()))
        except FilelockTimeout:
            raise RuntimeError(
                f"PID file {self.pid_file} is locked by another process. Retry in a moment."
            )

    def read(self) -> Optional[int]:
        """
        Read PID from PID file.

        Returns:
            Process ID if file exists and is valid, None otherwise
        """
        if not self.pid_file.exists():
            return None

        try:
            return int(self.pid_file.read_text().strip())
        except (ValueError, OSError):
            return None

    def remove(self) -> None:
        """Remove PID file. Safe to call even if file doesn't exist."""
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass

    def _is_process_running(self, pid: int) -> bool:
        try:
            # signal 0 only checks existence
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists but owned by another user
            return True
        except OSError:
            return False

    def stop_server(self, timeout: int = 10) -> bool:
        """
        Stop the server gracefully by sending SIGTERM.

        Args:
            timeout: Seconds to wait for graceful shutdown before giving up

        Returns:
            True if server stopped successfully, False otherwise

        Raises:
            RuntimeError: If no server is running
        """
        pid = self.read()
        if not pid:
            raise RuntimeError("No MCP server running. PID file not found or invalid.")

        if not self._is_process_running(pid):
            self.remove()
            raise RuntimeError(
                f"MCP server (PID: {pid}) is not running. Cleaned up stale PID file."
            )

        try:
            os.kill(pid, signal.SIGTERM)
            for _ in range(timeout * 2):
                if not self._is_process_running(pid):
                    self.remove()
                    return True
                time.sleep(0.5)
            return False
        except PermissionError:
            raise RuntimeError(
                f"Permission denied: Cannot stop server (PID: {pid}). "
                "It may be owned by another user."
            )
        except OSError as e:
            raise RuntimeError(f"Failed to stop server (PID: {pid}): {e}") from e

    def get_status(self) -> dict:
        """
        Get server status information.

        Returns:
            Dictionary with keys running, pid and pid_file
        """
        pid = self.read()
        running = pid is not None and self._is_process_running(pid)

        return {
            "running": running,
            "pid": pid if running else None,
            "pid_file": str(self.pid_file),
        }
