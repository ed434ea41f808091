"""
Plain-text renderings of a branch (history timeline and status card).

Output is uncoloured; terminal styling belongs to the CLI.
"""

from typing import Sequence

from branchcore.core.models import Branch, ReviewSuggestion, Snippet, Task

RULE = "─" * 45


def format_branch_history(branch: Branch, tasks: Sequence[Task] = (), insights_window: int = 10) -> str:
    lines = [
        f"┌{RULE}",
        f"│ History for branch: {branch.id} ({branch.state.value})",
        f"├{RULE}",
    ]
    for thought in branch.thoughts:
        lines.append(f"│ [{thought.timestamp.strftime('%H:%M:%S')}] {thought.content}")
    recent = branch.insights[-insights_window:] if insights_window > 0 else []
    if recent:
        lines.append(f"├{RULE}")
        lines.extend(f"│ [Insight] {i.content}" for i in recent)
    if tasks:
        lines.append(f"├{RULE}")
        lines.extend(f"│ [Task] {t.content}" for t in tasks)
    lines.append(f"└{RULE}")
    return "\n".join(lines)


def format_branch_status(
    branch: Branch,
    is_active: bool = False,
    snippets: Sequence[Snippet] = (),
    tasks: Sequence[Task] = (),
    reviews: Sequence[ReviewSuggestion] = (),
) -> str:
    header = f"Branch: {branch.id} ({branch.state.value})" + (" [ACTIVE]" if is_active else "")
    lines = [
        f"┌{RULE}",
        f"│ {header}",
        f"│ Priority: {branch.priority:.2f} | Confidence: {branch.confidence:.2f} | Score: {branch.score:.2f}",
        f"├{RULE}",
        "│ Thoughts:",
    ]
    lines.extend(f"  • {t.content} ({t.metadata.type})" for t in branch.thoughts)
    if snippets:
        lines.append("│ Snippets:")
        lines.extend(f"  - {s.content[:40]} [{', '.join(s.tags)}]" for s in snippets)
    if tasks:
        lines.append("│ Tasks:")
        lines.extend(f"  - {t.content}" for t in tasks)
    if reviews:
        lines.append("│ Reviews:")
        lines.extend(f"  - {r.content}" for r in reviews)
    lines.append("│ Insights:")
    lines.extend(f"  → {i.content}" for i in branch.insights)
    lines.append("│ Cross References:")
    lines.extend(f"  ↔ {r.to_branch}: {r.reason} ({r.strength:.2f})" for r in branch.cross_refs)
    lines.append(f"└{RULE}")
    return "\n".join(lines)
