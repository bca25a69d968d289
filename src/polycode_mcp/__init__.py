"""Polycode MCP: instance lifecycle and state synchronization for agent threads and commands."""

__version__ = "0.1.0"

__all__ = ["__version__"]
