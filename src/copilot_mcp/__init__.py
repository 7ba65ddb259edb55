"""MCP server bridging MCP clients to the GitHub Copilot CLI."""

__version__ = "0.1.0"
