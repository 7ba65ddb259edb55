"""
Adapter layer between MCP tools and the Copilot CLI.

Gives MCP tools one narrow entry point (CopilotAdapter.execute) for
running prompts, and a standardized result format for tool responses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OperationResult:
    """Standardized result format for MCP tool operations."""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for MCP response."""
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @classmethod
    def success_result(
        cls,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        warnings: Optional[List[str]] = None,
    ) -> "OperationResult":
        """Create success result."""
        return cls(success=True, message=message, data=data, warnings=warnings or [])

    @classmethod
    def error_result(
        cls,
        message: str,
        errors: Optional[List[str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> "OperationResult":
        """Create error result."""
        return cls(success=False, message=message, data=data, errors=errors or [message])


from .cli_adapter import CopilotAdapter, ExecutionResult, handle_tool_errors

__all__ = ["OperationResult", "CopilotAdapter", "ExecutionResult", "handle_tool_errors"]
