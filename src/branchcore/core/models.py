"""
Graph Models
============
Data classes for the branching thought graph: branches, thoughts, their
computed cross-references and explicit links, insights, branch-level
cross-references, and the task/snippet/profile records that hang off them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return _utcnow()


# ═══════════════════════════════════════════════════════════════════════
# Enumerations
# ═══════════════════════════════════════════════════════════════════════

class BranchState(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    DEAD_END = "dead_end"


class InsightType(str, Enum):
    BEHAVIORAL_PATTERN = "behavioral_pattern"
    FEATURE_INTEGRATION = "feature_integration"
    OBSERVATION = "observation"
    CONNECTION = "connection"


class BranchCrossRefType(str, Enum):
    COMPLEMENTARY = "complementary"
    CONTRADICTORY = "contradictory"
    BUILDS_UPON = "builds_upon"
    ALTERNATIVE = "alternative"


class ThoughtLinkType(str, Enum):
    SUPPORTS = "supports"
    CONTRADICTS = "contradicts"
    RELATED = "related"
    EXPANDS = "expands"
    REFINES = "refines"


class CrossRefKind(str, Enum):
    """How a computed thought cross-reference was found."""
    RELATED = "direct-related"
    VERY_SIMILAR = "direct-very-similar"
    MULTI_HOP = "multi-hop"


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class TaskType(str, Enum):
    TODO = "TODO"
    FIXME = "FIXME"
    ACTION = "ACTION"
    TASK = "TASK"


# ═══════════════════════════════════════════════════════════════════════
# Thought-level
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ThoughtMetadata:
    type: str = "thought"
    confidence: float = 1.0
    key_points: List[str] = field(default_factory=list)


@dataclass
class CrossRef:
    """A computed, similarity-derived reference from one thought to another."""
    to_thought_id: str
    score: float
    kind: CrossRefKind

    @property
    def is_direct(self) -> bool:
        return self.kind is not CrossRefKind.MULTI_HOP

    def to_dict(self) -> dict:
        return {"to_thought_id": self.to_thought_id, "score": self.score, "kind": self.kind.value}


@dataclass
class ThoughtLink:
    """An explicit, caller-asserted link between two thoughts."""
    to_thought_id: str
    type: ThoughtLinkType
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"to_thought_id": self.to_thought_id, "type": self.type.value, "reason": self.reason}


@dataclass
class Thought:
    """
    A single thought inside a branch.

    ``id``, ``content``, ``branch_id`` and ``timestamp`` are fixed at
    creation. ``score`` and ``cross_refs`` are owned by the cross-reference
    engine and rewritten on every full pass; ``linked_thoughts`` only grows.
    """
    id: str
    content: str
    branch_id: str
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: ThoughtMetadata = field(default_factory=ThoughtMetadata)
    profile_id: Optional[str] = None
    score: float = 0.0
    cross_refs: List[CrossRef] = field(default_factory=list)
    linked_thoughts: List[ThoughtLink] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        return self.metadata.confidence

    @property
    def key_points(self) -> List[str]:
        return self.metadata.key_points

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "branch_id": self.branch_id,
            "profile_id": self.profile_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": {
                "type": self.metadata.type,
                "confidence": self.metadata.confidence,
                "key_points": list(self.metadata.key_points),
            },
            "score": self.score,
            "cross_refs": [cr.to_dict() for cr in self.cross_refs],
            "linked_thoughts": [link.to_dict() for link in self.linked_thoughts],
        }


# ═══════════════════════════════════════════════════════════════════════
# Branch-level
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Insight:
    id: str
    type: InsightType
    content: str
    context: List[str] = field(default_factory=list)
    parent_insights: Optional[List[str]] = None
    applicability_score: float = 1.0
    supporting_evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "context": list(self.context),
            "parent_insights": list(self.parent_insights) if self.parent_insights else None,
            "applicability_score": self.applicability_score,
            "supporting_evidence": dict(self.supporting_evidence),
        }


@dataclass
class Touchpoint:
    from_thought: str
    to_thought: str
    connection: str


@dataclass
class BranchCrossReference:
    """A typed reference between two branches, distinct from thought cross-refs."""
    id: str
    from_branch: str
    to_branch: str
    type: BranchCrossRefType
    reason: str
    strength: float
    touchpoints: List[Touchpoint] = field(default_factory=list)
    related_insights: Optional[List[str]] = None
    auto_generated: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_branch": self.from_branch,
            "to_branch": self.to_branch,
            "type": self.type.value,
            "reason": self.reason,
            "strength": self.strength,
            "touchpoints": [
                {"from_thought": t.from_thought, "to_thought": t.to_thought, "connection": t.connection}
                for t in self.touchpoints
            ],
            "related_insights": self.related_insights,
            "auto_generated": self.auto_generated,
        }


@dataclass
class Branch:
    """
    A named container of thoughts sharing a reasoning thread.

    ``thoughts`` and ``insights`` are append-only; ``priority`` and
    ``confidence`` are recomputed after every mutation, ``score`` by the
    cross-reference engine.
    """
    id: str
    parent_branch_id: Optional[str] = None
    state: BranchState = BranchState.ACTIVE
    priority: float = 1.0
    confidence: float = 1.0
    thoughts: List[Thought] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)
    cross_refs: List[BranchCrossReference] = field(default_factory=list)
    score: float = 0.0

    def to_dict(self, include_thoughts: bool = True) -> dict:
        data = {
            "id": self.id,
            "parent_branch_id": self.parent_branch_id,
            "state": self.state.value,
            "priority": self.priority,
            "confidence": self.confidence,
            "score": self.score,
            "num_thoughts": len(self.thoughts),
            "num_insights": len(self.insights),
            "num_cross_refs": len(self.cross_refs),
        }
        if include_thoughts:
            data["thoughts"] = [t.to_dict() for t in self.thoughts]
            data["insights"] = [i.to_dict() for i in self.insights]
            data["cross_refs"] = [c.to_dict() for c in self.cross_refs]
        return data


# ═══════════════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class BranchCrossRefInput:
    to_branch: str
    type: BranchCrossRefType = BranchCrossRefType.COMPLEMENTARY
    reason: str = ""
    strength: float = 0.5


@dataclass
class ThoughtInput:
    """Caller-supplied description of a thought to add."""
    content: str
    type: str = "thought"
    branch_id: Optional[str] = None
    parent_branch_id: Optional[str] = None
    profile_id: Optional[str] = None
    confidence: Optional[float] = None
    key_points: Optional[List[str]] = None
    related_insights: Optional[List[str]] = None
    cross_refs: List[BranchCrossRefInput] = field(default_factory=list)
    thought_cross_refs: List[ThoughtLink] = field(default_factory=list)
    skip_extract_tasks: bool = False


# ═══════════════════════════════════════════════════════════════════════
# Tasks, snippets, profiles, reviews
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class AuditEntry:
    action: str
    user: str
    timestamp: str

    def to_dict(self) -> dict:
        return {"action": self.action, "user": self.user, "timestamp": self.timestamp}


@dataclass
class Task:
    """
    An actionable item extracted from thought text.

    The id is derived from (branch, thought, match offset), so repeated
    extraction of unchanged content is idempotent.
    """
    id: str
    branch_id: str
    thought_id: str
    type: TaskType
    content: str
    status: TaskStatus = TaskStatus.OPEN
    assignee: Optional[str] = None
    due: Optional[str] = None
    priority: int = 3
    created_at: str = field(default_factory=lambda: _utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: _utcnow().isoformat())
    creator: str = ""
    last_editor: str = ""
    audit_trail: List[AuditEntry] = field(default_factory=list)
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "thought_id": self.thought_id,
            "type": self.type.value,
            "content": self.content,
            "status": self.status.value,
            "assignee": self.assignee,
            "due": self.due,
            "priority": self.priority,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "creator": self.creator,
            "last_editor": self.last_editor,
            "audit_trail": [entry.to_dict() for entry in self.audit_trail],
            "stale": self.stale,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Task":
        return cls(
            id=d["id"],
            branch_id=d.get("branch_id", ""),
            thought_id=d.get("thought_id", ""),
            type=TaskType(str(d.get("type", "TASK")).upper()),
            content=d.get("content", ""),
            status=TaskStatus(d.get("status", "open")),
            assignee=d.get("assignee") or None,
            due=d.get("due") or None,
            priority=int(d.get("priority", 3)),
            created_at=d.get("created_at") or _utcnow().isoformat(),
            updated_at=d.get("updated_at") or _utcnow().isoformat(),
            creator=d.get("creator", ""),
            last_editor=d.get("last_editor", ""),
            audit_trail=[
                AuditEntry(action=e.get("action", ""), user=e.get("user", ""), timestamp=e.get("timestamp", ""))
                for e in d.get("audit_trail", [])
            ],
            stale=bool(d.get("stale", False)),
        )


@dataclass
class Snippet:
    id: str
    content: str
    tags: List[str] = field(default_factory=list)
    created: datetime = field(default_factory=_utcnow)
    author: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "tags": list(self.tags),
            "created": self.created.isoformat(),
            "author": self.author,
        }


@dataclass
class Profile:
    id: str
    name: str
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "settings": dict(self.settings)}


@dataclass
class ReviewSuggestion:
    id: str
    branch_id: str
    content: str
    type: str = "improvement"
    thought_id: Optional[str] = None
    created: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "thought_id": self.thought_id,
            "content": self.content,
            "type": self.type,
            "created": self.created.isoformat(),
        }


__all__ = [
    "BranchState",
    "InsightType",
    "BranchCrossRefType",
    "ThoughtLinkType",
    "CrossRefKind",
    "TaskStatus",
    "TaskType",
    "ThoughtMetadata",
    "CrossRef",
    "ThoughtLink",
    "Thought",
    "Insight",
    "Touchpoint",
    "BranchCrossReference",
    "Branch",
    "BranchCrossRefInput",
    "ThoughtInput",
    "AuditEntry",
    "Task",
    "Snippet",
    "Profile",
    "ReviewSuggestion",
]
