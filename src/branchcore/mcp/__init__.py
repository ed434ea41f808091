"""
BranchCore MCP (Model Context Protocol) Module
==============================================
Protocol layer for AI agent integration.

Components:
    - schemas: pydantic models for tool payloads (thoughts and commands)
    - dispatcher: CommandDispatcher mapping payloads onto a ThoughtSession,
      plus the Mermaid renderer for visualizations
    - workflow: AutoExecutionPolicy, CommandSafetyValidator, WorkflowPlanner
    - server: FastMCP stdio server exposing the ``branch_thinking`` tool
      (requires the optional 'mcp' package)

Usage:
    from branchcore.mcp import CommandDispatcher

    dispatcher = CommandDispatcher(session)
    await dispatcher.process({"content": "TODO: outline the parser", "branchId": "design"})
    await dispatcher.process({"command": {"type": "visualize", "branchId": "design"}})
"""

from .dispatcher import CommandDispatcher, render_mermaid
from .schemas import COMMAND_TYPES, BranchThinkingInput, CommandSchema, ThoughtInputSchema, ToolResult
from .workflow import AutoExecutionPolicy, CommandSafetyValidator, PolicyRule, WorkflowPlanner, WorkflowStep

__all__ = [
    "CommandDispatcher",
    "render_mermaid",
    "COMMAND_TYPES",
    "BranchThinkingInput",
    "CommandSchema",
    "ThoughtInputSchema",
    "ToolResult",
    "AutoExecutionPolicy",
    "CommandSafetyValidator",
    "PolicyRule",
    "WorkflowPlanner",
    "WorkflowStep",
]
