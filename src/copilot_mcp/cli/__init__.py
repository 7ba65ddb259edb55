"""Command-line interface for the Copilot MCP bridge."""

from .commands import app


def main():
    app()


__all__ = ["app", "main"]
