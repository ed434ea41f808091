"""
CLI Output Formatters

Provides formatted output for CLI commands: tagged results, task tables
and the effective configuration.
"""

import json
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, List, Sequence

from tabulate import tabulate


# Color codes for terminal output
class Colors:
    """ANSI color codes for terminal output."""
    HEADER = "\033[95m"
    OKBLUE = "\033[94m"
    OKGREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"

    @staticmethod
    def green(text: str) -> str:
        return f"{Colors.OKGREEN}{text}{Colors.ENDC}"

    @staticmethod
    def red(text: str) -> str:
        return f"{Colors.FAIL}{text}{Colors.ENDC}"

    @staticmethod
    def yellow(text: str) -> str:
        return f"{Colors.WARNING}{text}{Colors.ENDC}"

    @staticmethod
    def bold(text: str) -> str:
        return f"{Colors.BOLD}{text}{Colors.ENDC}"


STATUS_COLORS = {
    "open": Colors.yellow,
    "in_progress": Colors.bold,
    "closed": Colors.green,
}


def format_result(index: int, label: str, result: Dict[str, Any]) -> str:
    """
    Format one tagged result for display.

    String payloads (history, status cards, summaries) print as-is; other
    payloads print as indented JSON.
    """
    marker = Colors.green("OK") if result.get("ok") else Colors.red("ERROR")
    header = f"[{index}] {Colors.bold(label)} {marker}"
    if not result.get("ok"):
        return f"{header}\n  {result.get('code', 'ERROR')}: {result.get('error', '')}"
    data = result.get("data")
    if isinstance(data, str):
        return f"{header}\n{data}"
    return f"{header}\n{json.dumps(data, indent=2, default=str)}"


def format_task_table(tasks: Sequence[Dict[str, Any]], show_headers: bool = True) -> str:
    if not tasks:
        return "No tasks found."

    headers = ["ID", "Branch", "Type", "Status", "Assignee", "Due", "Content"]
    rows = []
    for task in tasks:
        status = task.get("status", "open")
        color = STATUS_COLORS.get(status, str)
        content = task.get("content", "")
        rows.append([
            task.get("id", "")[:24],
            task.get("branch_id", ""),
            task.get("type", ""),
            color(status),
            task.get("assignee") or "",
            task.get("due") or "",
            content[:50] + "..." if len(content) > 50 else content,
        ])
    return tabulate(rows, headers=headers if show_headers else [], tablefmt="grid")


def _flatten(prefix: str, value: Any, rows: List[List[str]]) -> None:
    if isinstance(value, dict):
        for key, sub in value.items():
            _flatten(f"{prefix}.{key}" if prefix else key, sub, rows)
    else:
        rows.append([prefix, repr(value)])


def format_config(config: Any) -> str:
    """Format a (dataclass) configuration as a two-column key/value table."""
    data = asdict(config) if is_dataclass(config) else dict(config)
    rows: List[List[str]] = []
    _flatten("", data, rows)
    return tabulate(rows, headers=["Key", "Value"], tablefmt="simple")
