"""Swarm MCP: parallel task orchestration over git worktrees."""

__version__ = "0.1.0"

__all__ = ["__version__"]
