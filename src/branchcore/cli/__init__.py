"""
BranchCore CLI - Command Line Interface for the BranchCore thought graph

Provides terminal commands for:
- Serving the MCP tool over stdio
- Replaying tool payloads from a file
- Listing persisted tasks
- Showing the effective configuration
"""

from .main import cli

__all__ = ["cli"]
