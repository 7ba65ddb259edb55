"""MCP tools for the Copilot bridge."""

from .copilot_tools import register_copilot_tools
from .session_tools import list_sessions_operation, register_session_tools
from .system_tools import register_system_tools

__all__ = [
    "list_sessions_operation",
    "register_copilot_tools",
    "register_session_tools",
    "register_system_tools",
]
