"""
System MCP tools.

Provides connectivity checks, CLI help and version information, and a
health report covering the Copilot CLI installation, authentication and
session store.
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from copilot_mcp import __version__
from copilot_mcp.adapters import CopilotAdapter, OperationResult, handle_tool_errors

# Server startup timestamp for uptime calculation
_SERVER_START_TIME = time.time()

TOOL_SUMMARY = {
    "ask": "Execute GitHub Copilot CLI with file analysis and tool management",
    "batch": "Batch process multiple tasks with Copilot CLI",
    "review": "Code review using Copilot CLI",
    "brainstorm": "Brainstorming with structured methodologies",
    "ping": "Test connectivity and echo messages",
    "help": "Show help information",
    "version": "Display system and version information",
    "health": "Check CLI installation, authentication and session status",
    "list_sessions": "List, delete or clear conversation sessions",
}

INSTALL_HINT = "npm install -g @github/copilot"


def build_recommendations(cli: Dict[str, Any], near_capacity: bool) -> list:
    recommendations = []
    if not cli["installed"]:
        recommendations.append(f"Install GitHub Copilot CLI: `{INSTALL_HINT}`")
    if not cli["authenticated"]:
        recommendations.append("Authenticate by running `copilot` interactively")
    if near_capacity:
        recommendations.append("Session storage is near capacity. Consider clearing old sessions.")
    return recommendations


def register_system_tools(mcp, adapter: CopilotAdapter) -> None:
    """Register ping, help, version and health on a FastMCP app."""

    @mcp.tool(name="ping", description="Echo a message back to test connectivity")
    def ping(prompt: str = "") -> Dict[str, Any]:
        message = prompt or "Pong!"
        return OperationResult.success_result(message=message, data={"message": message}).to_dict()

    @mcp.tool(name="help", description="Show GitHub Copilot CLI help and the available MCP tools")
    @handle_tool_errors
    async def help_tool() -> Dict[str, Any]:
        result = await adapter.get_help()
        data = {"tools": TOOL_SUMMARY, "cli_installed": result.ok}
        if result.ok:
            data["cli_help"] = result.stdout
            return OperationResult.success_result(message="GitHub Copilot CLI help", data=data).to_dict()
        data["install"] = INSTALL_HINT
        return OperationResult.success_result(
            message="GitHub Copilot CLI is not installed or not accessible",
            data=data,
            warnings=[result.stderr or "copilot --help failed"],
        ).to_dict()

    @mcp.tool(name="version", description="Display version and system information")
    @handle_tool_errors
    async def version() -> Dict[str, Any]:
        cli_version = await adapter.get_version()
        return OperationResult.success_result(
            message="Version information",
            data={
                "copilot_cli": cli_version or "Not installed",
                "server": __version__,
                "python": sys.version.split()[0],
                "platform": platform.platform(),
            },
        ).to_dict()

    @mcp.tool(
        name="health",
        description=(
            "Check Copilot CLI health including installation, authentication, "
            "and session management"
        ),
    )
    @handle_tool_errors
    async def health(session_id: Optional[str] = None, verbose: bool = False) -> Dict[str, Any]:
        cli = await adapter.health()
        store = adapter.store
        near_capacity = store.is_near_capacity()

        data: Dict[str, Any] = {
            "status": "healthy" if cli["installed"] and cli["authenticated"] else "degraded",
            "uptime_seconds": int(time.time() - _SERVER_START_TIME),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "cli": {
                "installed": cli["installed"],
                "version": cli["version"],
                "authenticated": cli["authenticated"],
                "auth_error": cli["auth_error"],
            },
            "features": {
                "resume": cli["installed"],
                "model_count": len(cli["available_models"]),
            },
            "sessions": store.get_stats().to_dict(),
            "recommendations": build_recommendations(cli, near_capacity),
        }
        if verbose:
            data["features"]["available_models"] = cli["available_models"]

        warnings = []
        if session_id:
            session = store.get_session(session_id)
            if session is not None:
                data["session"] = session.to_dict(include_history=verbose)
            else:
                warnings.append(f"Session not found or expired: {session_id}")

        return OperationResult.success_result(
            message=f"Server is {data['status']}", data=data, warnings=warnings
        ).to_dict()
