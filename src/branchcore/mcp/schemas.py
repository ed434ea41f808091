from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from branchcore.core.exceptions import ValidationError
from branchcore.core.models import (
    BranchCrossRefInput,
    BranchCrossRefType,
    ThoughtInput,
    ThoughtLink,
    ThoughtLinkType,
)

COMMAND_TYPES = (
    "list",
    "focus",
    "history",
    "insights",
    "crossrefs",
    "hub-thoughts",
    "semantic-search",
    "link-thoughts",
    "add-snippet",
    "snippet-search",
    "summarize-branch",
    "doc-thought",
    "extract-tasks",
    "list-tasks",
    "update-task-status",
    "assign-task",
    "summarize-tasks",
    "review-branch",
    "visualize",
    "cache-stats",
    "clear-cache",
    "complex-task",
)

_COMMAND_PATTERN = "^(" + "|".join(COMMAND_TYPES) + ")$"


class _CamelModel(BaseModel):
    """Accepts both ``branch_id`` and the wire spelling ``branchId``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BranchCrossRefSchema(_CamelModel):
    to_branch: str = Field(..., min_length=1, max_length=256)
    type: BranchCrossRefType = BranchCrossRefType.COMPLEMENTARY
    reason: str = Field(default="", max_length=4096)
    strength: float = Field(default=0.5, ge=0.0, le=1.0)


class ThoughtLinkSchema(_CamelModel):
    to_thought_id: str = Field(..., min_length=1, max_length=256)
    type: ThoughtLinkType = ThoughtLinkType.RELATED
    reason: Optional[str] = Field(default=None, max_length=4096)


class ThoughtInputSchema(_CamelModel):
    content: str = Field(..., min_length=1, max_length=100_000)
    type: str = Field(default="thought", max_length=64)
    branch_id: Optional[str] = Field(default=None, max_length=256)
    parent_branch_id: Optional[str] = Field(default=None, max_length=256)
    profile_id: Optional[str] = Field(default=None, max_length=256)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    key_points: Optional[List[str]] = None
    related_insights: Optional[List[str]] = None
    cross_refs: List[BranchCrossRefSchema] = Field(default_factory=list)
    thought_cross_refs: List[ThoughtLinkSchema] = Field(default_factory=list)
    skip_extract_tasks: bool = False

    def to_input(self) -> ThoughtInput:
        return ThoughtInput(
            content=self.content,
            type=self.type,
            branch_id=self.branch_id,
            parent_branch_id=self.parent_branch_id,
            profile_id=self.profile_id,
            confidence=self.confidence,
            key_points=self.key_points,
            related_insights=self.related_insights,
            cross_refs=[
                BranchCrossRefInput(to_branch=r.to_branch, type=r.type, reason=r.reason, strength=r.strength)
                for r in self.cross_refs
            ],
            thought_cross_refs=[
                ThoughtLink(to_thought_id=link.to_thought_id, type=link.type, reason=link.reason)
                for link in self.thought_cross_refs
            ],
            skip_extract_tasks=self.skip_extract_tasks,
        )


class CommandSchema(_CamelModel):
    type: str = Field(..., pattern=_COMMAND_PATTERN, description="Command to run")
    branch_id: Optional[str] = Field(default=None, max_length=256)
    query: Optional[str] = Field(default=None, max_length=10_000)
    top_n: int = Field(default=5, ge=1, le=100)
    from_thought_id: Optional[str] = None
    to_thought_id: Optional[str] = None
    link_type: Optional[str] = None
    reason: Optional[str] = None
    tags: Optional[List[str]] = None
    author: Optional[str] = None
    content: Optional[str] = Field(default=None, max_length=100_000)
    thought_id: Optional[str] = None
    task_id: Optional[str] = None
    status: Optional[str] = None
    assignee: Optional[str] = None
    due: Optional[str] = None
    user: str = ""
    # visualize options
    branches: Optional[List[str]] = None
    show_clusters: bool = True
    edge_bundling: bool = False
    focus_node: Optional[str] = None
    level_of_detail: str = Field(default="auto", pattern="^(auto|low|medium|high)$")


class BranchThinkingInput(_CamelModel):
    """
    One request to the ``branch_thinking`` tool.

    Either ``command`` is set, or the payload describes thoughts: a single
    thought in the top-level fields, or a batch as a list in ``thoughts``.
    """
    command: Optional[CommandSchema] = None
    thoughts: Optional[List[ThoughtInputSchema]] = None
    content: Optional[str] = Field(default=None, max_length=100_000)
    type: str = Field(default="thought", max_length=64)
    branch_id: Optional[str] = Field(default=None, max_length=256)
    parent_branch_id: Optional[str] = Field(default=None, max_length=256)
    profile_id: Optional[str] = Field(default=None, max_length=256)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    key_points: Optional[List[str]] = None
    related_insights: Optional[List[str]] = None
    cross_refs: List[BranchCrossRefSchema] = Field(default_factory=list)
    thought_cross_refs: List[ThoughtLinkSchema] = Field(default_factory=list)
    skip_extract_tasks: bool = False

    @model_validator(mode="after")
    def check_payload(self) -> "BranchThinkingInput":
        if self.command is None and not self.thoughts and not self.content:
            raise ValueError("either 'command', 'thoughts' or 'content' is required")
        return self

    def thought_inputs(self) -> List[ThoughtInput]:
        if self.thoughts:
            return [t.to_input() for t in self.thoughts]
        single = ThoughtInputSchema.model_validate(
            self.model_dump(exclude={"command", "thoughts"}, exclude_none=True)
        )
        return [single.to_input()]


class ToolResult(BaseModel):
    ok: bool
    data: Optional[Union[Dict[str, Any], List[Any], str]] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @field_validator("error")
    @classmethod
    def validate_error(cls, value: Optional[str], info):
        if info.data.get("ok") and value:
            raise ValidationError(
                field="error",
                reason="error must be empty when ok is true",
                value=value,
            )
        return value
