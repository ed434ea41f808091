"""
BranchCore - Branching Thought Graph Engine
===========================================

Organizes "thoughts" into branches, cross-references them by semantic
similarity (direct, bidirectional and multi-hop), scores thoughts and
branches, extracts tasks from their text and projects the graph for
visualization.

Main Packages:
    - core: Graph store, cross-reference engine, caches, tasks, visualization,
      session facade
    - mcp: Command schemas, dispatcher, workflow planner and FastMCP server
    - cli: Command-line interface

Quick Start:
    from branchcore.core import ThoughtInput, session_context

    async with session_context() as session:
        await session.create_branch("design")
        await session.add_thought(ThoughtInput(content="TODO(alice): draft the API by 2025-06-01"))
        tasks = await session.extract_tasks("design")

Version: 0.1.0
"""

__version__ = "0.1.0"
