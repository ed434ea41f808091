"""
Task Extraction & Store
=======================
Actionable markers in thought text become persisted ``Task`` records.

Marker grammar, scanned line by line, case-insensitive::

    TYPE [ "(" assignee ")" ] [ ":" ] description [ "by" YYYY-MM-DD ]

    TYPE     := TODO | FIXME | ACTION | TASK   (whole word)
    assignee := word characters only

The first well-formed marker on a line wins and its description runs to
the end of the line. A task id is ``task-<branch>-<thought>-<offset>``
where offset is the marker's character position in the thought, so
extracting unchanged content twice finds the same ids and adds nothing.

The store never deletes or rewrites a task during extraction; markers
that disappear from a thought leave their task in place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple, Union

from loguru import logger

from branchcore.core.exceptions import TaskNotFoundError, ValidationError
from branchcore.core.models import AuditEntry, Task, TaskStatus, TaskType, Thought
from branchcore.core.persistence import KeyValueStore, best_effort

_KEYWORD_RE = re.compile(r"\b(TODO|FIXME|ACTION|TASK)\b", re.IGNORECASE)
_ASSIGNEE_RE = re.compile(r"\((\w+)\)")
_DUE_RE = re.compile(r"\s+by\s+(\d{4}-\d{2}-\d{2})\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class TaskMarker:
    offset: int
    type: TaskType
    description: str
    assignee: Optional[str] = None
    due: Optional[str] = None


def _parse_at(line: str, keyword_end: int) -> Optional[Tuple[Optional[str], str, Optional[str]]]:
    """Parse what follows a keyword; None when the description is empty."""
    pos = keyword_end
    assignee = None
    m = _ASSIGNEE_RE.match(line, pos)
    if m:
        assignee = m.group(1)
        pos = m.end()
    if pos < len(line) and line[pos] == ":":
        pos += 1
    rest = line[pos:].rstrip()
    due = None
    m = _DUE_RE.search(rest)
    if m and rest[:m.start()].strip():
        due = m.group(1)
        rest = rest[:m.start()]
    description = rest.strip()
    if not description:
        return None
    return assignee, description, due


def parse_task_markers(text: str) -> List[TaskMarker]:
    """Find every task marker in ``text``; offsets are relative to ``text``."""
    markers: List[TaskMarker] = []
    line_start = 0
    for line in text.split("\n"):
        for kw in _KEYWORD_RE.finditer(line):
            parsed = _parse_at(line, kw.end())
            if parsed is None:
                continue
            assignee, description, due = parsed
            markers.append(
                TaskMarker(
                    offset=line_start + kw.start(),
                    type=TaskType(kw.group(1).upper()),
                    description=description,
                    assignee=assignee,
                    due=due,
                )
            )
            break
        line_start += len(line) + 1
    return markers


def task_id_for(branch_id: str, thought_id: str, offset: int) -> str:
    return f"task-{branch_id}-{thought_id}-{offset}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TaskStore:
    """
    Persisted task list.

    Loaded lazily from the key-value store on first use and saved after
    every change. Load/save failures degrade to an empty list / unsaved
    change with a warning.
    """

    def __init__(self, store: KeyValueStore, key: str = "tasks"):
        self._store = store
        self._key = key
        self._tasks: List[Task] = []
        self._loaded = False

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        raw = await best_effort(self._store.load(self._key), default=None, what="load tasks")
        tasks: List[Task] = []
        if isinstance(raw, dict):
            for entry in raw.get("tasks", []):
                try:
                    tasks.append(Task.from_dict(entry))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping malformed task record: {e}")
        self._tasks = tasks
        self._loaded = True

    async def _save(self) -> None:
        await best_effort(
            self._store.save(self._key, {"tasks": [t.to_dict() for t in self._tasks]}),
            default=None,
            what="save tasks",
        )

    def _find(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    # ==================================================================
    # Extraction
    # ==================================================================

    async def extract(self, scope: Iterable[Tuple[str, Thought]]) -> List[Task]:
        """
        Extract tasks from ``(branch_id, thought)`` pairs.

        Returns every task found in scope, in scan order. Tasks already in
        the store are returned as stored (status and audit trail intact).
        """
        await self._ensure_loaded()
        found: List[Task] = []
        added = 0
        for branch_id, thought in scope:
            for marker in parse_task_markers(thought.content):
                tid = task_id_for(branch_id, thought.id, marker.offset)
                existing = self._find(tid)
                if existing is not None:
                    found.append(existing)
                    continue
                now = _now_iso()
                task = Task(
                    id=tid,
                    branch_id=branch_id,
                    thought_id=thought.id,
                    type=marker.type,
                    content=marker.description,
                    assignee=marker.assignee,
                    due=marker.due,
                    created_at=now,
                    updated_at=now,
                    creator=thought.profile_id or "",
                )
                self._tasks.append(task)
                found.append(task)
                added += 1
        if added:
            await self._save()
        logger.info(f"Task extraction found {len(found)} tasks ({added} new)")
        return found

    # ==================================================================
    # Queries
    # ==================================================================

    async def all(self, branch_id: Optional[str] = None) -> List[Task]:
        await self._ensure_loaded()
        if branch_id is None:
            return list(self._tasks)
        return [t for t in self._tasks if t.branch_id == branch_id]

    async def query(
        self,
        branch_id: Optional[str] = None,
        status: Optional[Union[TaskStatus, str]] = None,
        assignee: Optional[str] = None,
        due: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> List[Task]:
        """Filter tasks, ordered by priority then due date (undated first)."""
        tasks = await self.all(branch_id)
        if status is not None:
            try:
                wanted = TaskStatus(status)
            except ValueError:
                raise ValidationError("status", f"expected one of {[s.value for s in TaskStatus]}", status)
            tasks = [t for t in tasks if t.status == wanted]
        if assignee is not None:
            tasks = [t for t in tasks if t.assignee == assignee]
        if due is not None:
            tasks = [t for t in tasks if t.due == due]
        if priority is not None:
            tasks = [t for t in tasks if t.priority == priority]
        return sorted(tasks, key=lambda t: (t.priority, t.due or ""))

    async def summarize(self, branch_id: Optional[str] = None) -> str:
        tasks = await self.all(branch_id)
        counts = {status: sum(1 for t in tasks if t.status == status) for status in TaskStatus}
        return "\n".join([
            f"Total tasks: {len(tasks)}",
            f"Open: {counts[TaskStatus.OPEN]}",
            f"In Progress: {counts[TaskStatus.IN_PROGRESS]}",
            f"Closed: {counts[TaskStatus.CLOSED]}",
            f"Stale: {sum(1 for t in tasks if t.stale)}",
        ])

    async def next_task(self, branch_id: Optional[str] = None) -> Optional[Task]:
        """Oldest open task."""
        open_tasks = [t for t in await self.all(branch_id) if t.status == TaskStatus.OPEN]
        if not open_tasks:
            return None
        return min(open_tasks, key=lambda t: t.created_at)

    # ==================================================================
    # Mutations
    # ==================================================================

    async def update_status(self, task_id: str, status: Union[TaskStatus, str], user: str = "") -> Task:
        try:
            new_status = TaskStatus(status)
        except ValueError:
            raise ValidationError("status", f"expected one of {[s.value for s in TaskStatus]}", status)
        await self._ensure_loaded()
        task = self._find(task_id)
        if task is None:
            raise ValidationError("task_id", "unknown task id", task_id)
        old_status = task.status
        now = _now_iso()
        task.status = new_status
        task.updated_at = now
        task.last_editor = user
        task.audit_trail.append(
            AuditEntry(action=f"Status changed from {old_status.value} to {new_status.value}", user=user, timestamp=now)
        )
        await self._save()
        logger.info(f"Task {task_id}: {old_status.value} -> {new_status.value}")
        return task

    async def assign(self, task_id: str, assignee: str) -> Task:
        if not assignee:
            raise ValidationError("assignee", "must be a non-empty string")
        await self._ensure_loaded()
        task = self._find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        now = _now_iso()
        task.assignee = assignee
        task.last_editor = assignee
        task.updated_at = now
        task.audit_trail.append(AuditEntry(action=f"Assigned to {assignee}", user=assignee, timestamp=now))
        await self._save()
        return task


__all__ = ["TaskMarker", "TaskStore", "parse_task_markers", "task_id_for"]
