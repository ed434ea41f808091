"""
BranchCore CLI - Main Entry Point

Command-line interface for the BranchCore thought graph.

Usage:
    branchcore serve                          # Run the MCP server over stdio
    branchcore replay session.json            # Feed tool payloads through the dispatcher
    branchcore tasks --status open            # List persisted tasks
    branchcore config                         # Show the effective configuration
"""

import asyncio
import dataclasses
import json
from pathlib import Path
from typing import Any, List, Optional

import click
from loguru import logger

from branchcore.cli.formatters import Colors, format_config, format_result, format_task_table
from branchcore.core.config import BranchCoreConfig, load_config
from branchcore.core.exceptions import BranchCoreError
from branchcore.core.logging_config import configure_logging


def _effective_config(ctx: click.Context) -> BranchCoreConfig:
    config_path = ctx.obj.get("config_path")
    config = load_config(Path(config_path) if config_path else None)
    data_dir = ctx.obj.get("data_dir")
    if data_dir:
        config = dataclasses.replace(config, paths=dataclasses.replace(config.paths, data_dir=data_dir))
    if ctx.obj.get("offline"):
        config = dataclasses.replace(config, embedding=dataclasses.replace(config.embedding, provider="hashing"))
    return config


def _payload_label(payload: Any) -> str:
    if isinstance(payload, dict) and isinstance(payload.get("command"), dict):
        return f"command:{payload['command'].get('type', '?')}"
    if isinstance(payload, dict) and payload.get("thoughts"):
        return f"thoughts x{len(payload['thoughts'])}"
    return "thought"


# ============================================================================
# CLI Group and Main Entry
# ============================================================================

@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to config.yaml file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(),
    default=None,
    help="Data directory path (overrides config)",
)
@click.option(
    "--offline",
    is_flag=True,
    help="Use the hashing embedding gateway instead of loading models",
)
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool, data_dir: Optional[str], offline: bool):
    """
    BranchCore - Branching thought graph

    Organizes thoughts into branches, cross-references them by semantic
    similarity and extracts tasks from their text.
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config
    ctx.obj["data_dir"] = data_dir
    ctx.obj["offline"] = offline

    configure_logging("DEBUG" if verbose else "INFO")


# ============================================================================
# CLI Commands
# ============================================================================

@cli.command()
@click.pass_context
def serve(ctx):
    """
    Run the MCP server over stdio.

    Example:
        branchcore --data-dir ./data serve
    """
    from branchcore.mcp.server import build_server

    config = _effective_config(ctx)
    try:
        server, session = build_server(config)
    except BranchCoreError as e:
        raise click.ClickException(str(e))

    logger.info(f"Serving branch_thinking over stdio (data_dir={config.paths.data_dir})")
    try:
        server.run(transport="stdio")
    finally:
        asyncio.run(session.close())


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as a JSON array",
)
@click.option(
    "--stop-on-error",
    is_flag=True,
    help="Stop at the first failed payload",
)
@click.pass_context
def replay(ctx, file: str, output_json: bool, stop_on_error: bool):
    """
    Replay branch_thinking payloads from a JSON file.

    The file holds one payload object or a list of them, in the same shape
    the MCP tool accepts.

    Example:
        branchcore --offline replay session.json
    """
    try:
        raw = json.loads(Path(file).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Cannot read payloads from {file}: {e}")
    payloads: List[Any] = raw if isinstance(raw, list) else [raw]

    config = _effective_config(ctx)

    async def _replay() -> List[dict]:
        from branchcore.core.session import session_context
        from branchcore.mcp.dispatcher import CommandDispatcher

        results = []
        async with session_context(config) as session:
            dispatcher = CommandDispatcher(session)
            for payload in payloads:
                if not isinstance(payload, dict):
                    result = {"ok": False, "error": "payload must be an object", "code": "VALIDATION_ERROR"}
                else:
                    result = await dispatcher.process(payload)
                results.append(result)
                if stop_on_error and not result["ok"]:
                    break
        return results

    try:
        results = asyncio.run(_replay())
    except BranchCoreError as e:
        raise click.ClickException(str(e))

    if output_json:
        click.echo(json.dumps(results, indent=2, default=str))
    else:
        for index, (payload, result) in enumerate(zip(payloads, results), start=1):
            click.echo(format_result(index, _payload_label(payload), result))
        failed = sum(1 for r in results if not r["ok"])
        summary = f"{len(results)} payloads, {failed} failed"
        click.echo(Colors.red(summary) if failed else Colors.green(summary))

    if any(not r["ok"] for r in results):
        ctx.exit(1)


@cli.command()
@click.option("--branch", "-b", "branch_id", help="Only tasks from this branch")
@click.option(
    "--status",
    "-s",
    type=click.Choice(["open", "in_progress", "closed"]),
    help="Filter by status",
)
@click.option("--assignee", "-a", help="Filter by assignee")
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output as JSON",
)
@click.pass_context
def tasks(ctx, branch_id: Optional[str], status: Optional[str], assignee: Optional[str], output_json: bool):
    """
    List tasks persisted in the data directory.

    Example:
        branchcore tasks --status open
    """
    from branchcore.core.persistence import JsonFileStore
    from branchcore.core.tasks import TaskStore

    config = _effective_config(ctx)
    store = TaskStore(JsonFileStore(config.paths.data_dir), config.paths.task_store)

    async def _query():
        found = await store.query(branch_id=branch_id, status=status, assignee=assignee)
        return [t.to_dict() for t in found]

    try:
        found = asyncio.run(_query())
    except BranchCoreError as e:
        raise click.ClickException(str(e))

    if output_json:
        click.echo(json.dumps(found, indent=2))
    else:
        click.echo(format_task_table(found))


@cli.command(name="config")
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output as JSON",
)
@click.pass_context
def show_config(ctx, output_json: bool):
    """
    Show the effective configuration (defaults, YAML and environment overrides).
    """
    try:
        config = _effective_config(ctx)
    except BranchCoreError as e:
        raise click.ClickException(str(e))

    if output_json:
        click.echo(json.dumps(dataclasses.asdict(config), indent=2))
    else:
        click.echo(format_config(config))


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
