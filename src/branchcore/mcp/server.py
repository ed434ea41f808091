"""
BranchCore MCP Server
=====================
FastMCP bridge exposing the thought graph as one ``branch_thinking`` tool
over stdio.
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from branchcore.core.config import BranchCoreConfig, get_config
from branchcore.core.exceptions import DependencyMissingError
from branchcore.core.logging_config import configure_logging
from branchcore.core.session import ThoughtSession
from branchcore.mcp.dispatcher import CommandDispatcher

TOOL_DESCRIPTION = (
    "Organize thoughts into branches, cross-reference them by semantic "
    "similarity, extract tasks and visualize the graph. Send a thought "
    "(content, type, branchId, keyPoints, crossRefs, ...), a batch under "
    "'thoughts', or a 'command' object such as {type: 'focus', branchId: 'b1'}."
)


def build_server(config: Optional[BranchCoreConfig] = None, session: Optional[ThoughtSession] = None):
    """Return ``(server, session)``; the caller owns the session and closes it."""
    cfg = config or get_config()

    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError as exc:
        raise DependencyMissingError(
            dependency="mcp",
            message="Install package 'mcp' (extra 'branchcore[mcp]') to run the MCP server."
        ) from exc

    session = session or ThoughtSession(config=cfg)
    dispatcher = CommandDispatcher(session)
    server = FastMCP("BranchCore MCP")

    @server.tool(name="branch_thinking", description=TOOL_DESCRIPTION)
    async def branch_thinking(
        content: str | None = None,
        type: str = "thought",
        branchId: str | None = None,
        parentBranchId: str | None = None,
        profileId: str | None = None,
        confidence: float | None = None,
        keyPoints: List[str] | None = None,
        relatedInsights: List[str] | None = None,
        crossRefs: List[Dict[str, Any]] | None = None,
        thoughtCrossRefs: List[Dict[str, Any]] | None = None,
        skipExtractTasks: bool = False,
        thoughts: List[Dict[str, Any]] | None = None,
        command: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload = {
            "content": content,
            "type": type,
            "branchId": branchId,
            "parentBranchId": parentBranchId,
            "profileId": profileId,
            "confidence": confidence,
            "keyPoints": keyPoints,
            "relatedInsights": relatedInsights,
            "crossRefs": crossRefs or [],
            "thoughtCrossRefs": thoughtCrossRefs or [],
            "skipExtractTasks": skipExtractTasks,
            "thoughts": thoughts,
            "command": command,
        }
        return await dispatcher.process({k: v for k, v in payload.items() if v is not None})

    return server, session


def main() -> None:
    cfg = get_config()
    configure_logging(cfg.observability.log_level, cfg.observability.json_logs)

    server, session = build_server(cfg)
    logger.info(f"Starting BranchCore MCP server (data_dir={cfg.paths.data_dir})")
    try:
        server.run(transport="stdio")
    finally:
        asyncio.run(session.close())


if __name__ == "__main__":
    main()
