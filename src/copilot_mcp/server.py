"""
FastMCP server initialization and configuration.

Main server class that wires the Copilot adapter and session store into
a FastMCP app and registers the tools. Supports stdio and SSE transports.
"""

import logging
import os
import socket
from dataclasses import dataclass, field
from typing import Literal, Optional

from fastmcp import FastMCP

from copilot_mcp.adapters import CopilotAdapter
from copilot_mcp.config import MCPConfig
from copilot_mcp.runner import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_TIMEOUT_MS, RetryPolicy
from copilot_mcp.session import SessionStore
from copilot_mcp.tools import register_copilot_tools, register_session_tools, register_system_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Copilot MCP Bridge"


@dataclass
class MCPServer:
    """
    MCP server exposing GitHub Copilot CLI as tools.

    Attributes:
        host: Server bind address (default: "127.0.0.1")
        port: Server port (default: 8000, SSE only)
        transport: Transport mode ("stdio" or "sse")
        cli_command: Copilot CLI executable
        timeout_ms: Default CLI timeout
        max_output_bytes: Default stdout cap
        retry: Default retry policy for CLI runs
        store: Session store shared by all tools
        adapter: Copilot adapter used by the tools (built from the above if omitted)
    """

    host: str = "127.0.0.1"
    port: int = 8000
    transport: Literal["stdio", "sse"] = "stdio"
    cli_command: str = "copilot"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    retry: Optional[RetryPolicy] = None
    store: SessionStore = field(default_factory=SessionStore)
    adapter: Optional[CopilotAdapter] = None
    _app: Optional[FastMCP] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.transport not in ("stdio", "sse"):
            raise ValueError(
                f"Invalid transport '{self.transport}'. "
                "Must be 'stdio' or 'sse'."
            )

        if self.host == "127.0.0.1" and "MCP_SERVER_HOST" in os.environ:
            self.host = os.environ["MCP_SERVER_HOST"]

        if self.port == 8000 and "MCP_SERVER_PORT" in os.environ:
            try:
                self.port = int(os.environ["MCP_SERVER_PORT"])
            except ValueError:
                raise ValueError(
                    f"Invalid MCP_SERVER_PORT: {os.environ['MCP_SERVER_PORT']}. "
                    "Must be an integer."
                )

        if self.adapter is None:
            self.adapter = CopilotAdapter(
                store=self.store,
                command=self.cli_command,
                timeout_ms=self.timeout_ms,
                max_output_bytes=self.max_output_bytes,
                retry=self.retry,
            )
        else:
            self.store = self.adapter.store

        self._app = FastMCP(SERVER_NAME)
        self._register_tools()

    @classmethod
    def from_config(cls, config: MCPConfig) -> "MCPServer":
        return cls(
            host=config.host,
            port=config.port,
            transport=config.transport,
            cli_command=config.cli_command,
            timeout_ms=config.timeout_ms,
            max_output_bytes=config.max_output_bytes,
            retry=config.retry_policy(),
        )

    @property
    def app(self) -> FastMCP:
        return self._app

    def _check_port_available(self, host: str, port: int) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return True
        except OSError:
            return False

    def _register_tools(self):
        register_copilot_tools(self._app, self.adapter)
        register_system_tools(self._app, self.adapter)
        register_session_tools(self._app, self.store)

    def start(self):
        """
        Start the MCP server with configured transport.

        Raises:
            RuntimeError: If port unavailable (SSE) or FastMCP fails to start
        """
        if not self._app:
            raise RuntimeError("FastMCP app not initialized. This should not happen.")

        logger.info(f"Starting {SERVER_NAME} ({self.transport}, cli: {self.cli_command})")

        if self.transport == "stdio":
            # stdout carries JSON-RPC; all logging goes to stderr
            try:
                self._app.run()
            except Exception as e:
                raise RuntimeError(f"Failed to start MCP server with stdio transport: {e}") from e

        elif self.transport == "sse":
            if not self._check_port_available(self.host, self.port):
                raise RuntimeError(
                    f"Port {self.port} already in use. "
                    f"Choose a different port or stop the conflicting service."
                )

            try:
                self._app.run(transport="sse", host=self.host, port=self.port)
            except Exception as e:
                raise RuntimeError(
                    f"Failed to start MCP server on {self.host}:{self.port}: {e}"
                ) from e
