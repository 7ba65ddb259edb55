"""MCP tool for inspecting and managing conversation sessions."""

import logging
from typing import Any, Dict, Optional

from copilot_mcp.adapters import OperationResult
from copilot_mcp.session import SessionStore

logger = logging.getLogger(__name__)

SESSION_ACTIONS = ("list", "delete", "clear")


def list_sessions_operation(
    store: SessionStore, action: str = "list", session_id: Optional[str] = None
) -> OperationResult:
    """
    Run a session management action.

    Args:
        store: Session store to operate on
        action: "list", "delete" or "clear"
        session_id: Session to delete (required for "delete")

    Returns:
        OperationResult with session data
    """
    if action not in SESSION_ACTIONS:
        return OperationResult.error_result(
            message=f"Unknown action '{action}'. Must be one of: {', '.join(SESSION_ACTIONS)}"
        )

    if action == "delete":
        if not session_id:
            return OperationResult.error_result(message="session_id is required for delete action")
        if store.delete_session(session_id):
            return OperationResult.success_result(
                message=f"Deleted session {session_id}", data={"deleted": session_id}
            )
        return OperationResult.error_result(message=f"Session not found: {session_id}")

    if action == "clear":
        count = store.clear_all()
        logger.info(f"Cleared {count} sessions")
        return OperationResult.success_result(
            message=f"Cleared {count} sessions", data={"cleared": count}
        )

    sessions = store.get_all_sessions()
    return OperationResult.success_result(
        message=f"{len(sessions)} active sessions",
        data={
            "stats": store.get_stats().to_dict(),
            "sessions": [s.to_dict() for s in sessions],
        },
    )


def register_session_tools(mcp, store: SessionStore) -> None:
    @mcp.tool(
        name="list_sessions",
        description="List, delete, or clear Copilot conversation sessions",
    )
    def list_sessions(action: str = "list", session_id: Optional[str] = None) -> Dict[str, Any]:
        return list_sessions_operation(store, action, session_id).to_dict()
