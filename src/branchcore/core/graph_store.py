"""
Graph Store
===========
Owns branches, thoughts, insights, explicit links and branch-level
cross-references. Every mutation goes through this class.

The store is an explicit object owned by a session; there is no
process-wide state. The active branch is store state as well: the first
branch ever created becomes active, and only ``set_active_branch`` or a
merge of the active branch moves it.

Change notification:
    Callers that keep derived per-branch state (formatting caches,
    summaries, insight windows) register a callback with ``subscribe``.
    It is invoked with the branch id after each mutation of that branch,
    including deletion by merge.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger

from branchcore.core._utils import generate_id, utc_now
from branchcore.core.exceptions import (
    BranchNotFoundError,
    ThoughtNotFoundError,
    ValidationError,
)
from branchcore.core.insights import frequent_key_points, sentiment_tally
from branchcore.core.models import (
    Branch,
    BranchCrossReference,
    BranchCrossRefType,
    Insight,
    InsightType,
    Profile,
    Thought,
    ThoughtInput,
    ThoughtLink,
    ThoughtLinkType,
    ThoughtMetadata,
)

# Mirrored reverse cross-references carry a fraction of the original strength.
MIRROR_STRENGTH_FACTOR = 0.5

ChangeListener = Callable[[str], None]


def compute_branch_metrics(branch: Branch, now: Optional[datetime] = None) -> Tuple[float, float]:
    """
    Return ``(priority, confidence)`` for a branch.

    priority = avg confidence + 0.1 * sum(insight applicability)
               + 0.1 * sum(cross-ref strength) + recency + 0.05 * unique key points

    Recency decays linearly from 1 to 0 over the hour following the last
    thought. An empty branch has confidence 0.
    """
    now = now or utc_now()
    if branch.thoughts:
        avg_confidence = sum(t.confidence for t in branch.thoughts) / len(branch.thoughts)
        hours = (now - branch.thoughts[-1].timestamp).total_seconds() / 3600.0
        recency = max(0.0, 1.0 - hours)
    else:
        avg_confidence = 0.0
        recency = 0.0
    insight_score = 0.1 * sum(i.applicability_score for i in branch.insights)
    crossref_score = 0.1 * sum(r.strength for r in branch.cross_refs)
    unique_key_points = {kp for t in branch.thoughts for kp in t.key_points}
    diversity = 0.05 * len(unique_key_points)
    priority = avg_confidence + insight_score + crossref_score + recency + diversity
    return priority, avg_confidence


class GraphStore:
    """In-memory branch/thought graph."""

    def __init__(self, insights_window: int = 10):
        self.insights_window = insights_window
        self._branches: Dict[str, Branch] = {}
        self._active_branch_id: Optional[str] = None
        self._profiles: Dict[str, Profile] = {}
        self._thought_index: Dict[str, Thought] = {}
        self._thought_branch: Dict[str, str] = {}
        self._listeners: List[ChangeListener] = []
        self._insight_counter = 0
        self._crossref_counter = 0
        self._profile_counter = 0
        # Set by add_thought when any item asks to skip task extraction;
        # consumed by the next history/status rendering.
        self.skip_next_task_extraction = False

    # ==================================================================
    # Notification
    # ==================================================================

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, branch_id: str) -> None:
        for listener in self._listeners:
            listener(branch_id)

    # ==================================================================
    # Branches
    # ==================================================================

    @property
    def active_branch_id(self) -> Optional[str]:
        return self._active_branch_id

    def create_branch(self, branch_id: str, parent_branch_id: Optional[str] = None) -> Branch:
        """
        Create ``branch_id`` if absent and return it.

        An existing branch is returned unchanged. The first branch created
        becomes the active branch.
        """
        if not branch_id or not branch_id.strip():
            raise ValidationError("branch_id", "must be a non-empty string", branch_id)
        existing = self._branches.get(branch_id)
        if existing is not None:
            return existing
        branch = Branch(id=branch_id, parent_branch_id=parent_branch_id)
        self._branches[branch_id] = branch
        if self._active_branch_id is None:
            self._active_branch_id = branch_id
        logger.info(f"Created branch {branch_id}" + (f" (parent {parent_branch_id})" if parent_branch_id else ""))
        return branch

    def get_branch(self, branch_id: str) -> Optional[Branch]:
        return self._branches.get(branch_id)

    def require_branch(self, branch_id: str) -> Branch:
        branch = self._branches.get(branch_id)
        if branch is None:
            raise BranchNotFoundError(branch_id)
        return branch

    def get_all_branches(self) -> List[Branch]:
        return list(self._branches.values())

    def get_active_branch(self) -> Optional[Branch]:
        if self._active_branch_id is None:
            return None
        return self._branches.get(self._active_branch_id)

    def set_active_branch(self, branch_id: str) -> Branch:
        branch = self.require_branch(branch_id)
        self._active_branch_id = branch_id
        logger.debug(f"Active branch set to {branch_id}")
        return branch

    def merge_branches(self, source_id: str, target_id: str) -> Branch:
        """
        Move all thoughts, insights and cross-references from source into target.

        The source branch is deleted; if it was active, the target becomes active.
        """
        source = self.require_branch(source_id)
        target = self.require_branch(target_id)
        if source_id == target_id:
            raise ValidationError("target_id", "cannot merge a branch into itself", target_id)

        target.thoughts.extend(source.thoughts)
        target.insights.extend(source.insights)
        target.cross_refs.extend(source.cross_refs)
        for thought in source.thoughts:
            self._thought_branch[thought.id] = target_id
        self._refresh_metrics(target)

        del self._branches[source_id]
        if self._active_branch_id == source_id:
            self._active_branch_id = target_id

        logger.info(
            f"Merged branch {source_id} into {target_id} "
            f"({len(source.thoughts)} thoughts, {len(source.insights)} insights)"
        )
        self._notify(source_id)
        self._notify(target_id)
        return target

    # ==================================================================
    # Thoughts
    # ==================================================================

    def add_thought(self, data: Union[ThoughtInput, Sequence[ThoughtInput]]) -> Thought:
        """
        Add one or more thoughts and return the last one added.

        Every item is validated before any item is applied, so an invalid
        item leaves the graph untouched.
        """
        items: List[ThoughtInput] = [data] if isinstance(data, ThoughtInput) else list(data)
        if not items:
            raise ValidationError("thoughts", "at least one thought is required")
        for index, item in enumerate(items):
            self._validate_input(item, index)

        self.skip_next_task_extraction = any(item.skip_extract_tasks for item in items)

        last: Optional[Thought] = None
        for item in items:
            last = self._apply_input(item)
        return last  # type: ignore[return-value]

    def _validate_input(self, item: ThoughtInput, index: int) -> None:
        prefix = f"thoughts[{index}]"
        if not isinstance(item.content, str) or not item.content.strip():
            raise ValidationError(f"{prefix}.content", "thought content cannot be empty")
        if item.profile_id and item.profile_id not in self._profiles:
            raise ValidationError(f"{prefix}.profile_id", "profile not found", item.profile_id)
        if item.confidence is not None and not 0.0 <= item.confidence <= 1.0:
            raise ValidationError(f"{prefix}.confidence", "must be within [0, 1]", item.confidence)
        for ref in item.cross_refs:
            if not 0.0 <= ref.strength <= 1.0:
                raise ValidationError(f"{prefix}.cross_refs.strength", "must be within [0, 1]", ref.strength)
            if not ref.to_branch:
                raise ValidationError(f"{prefix}.cross_refs.to_branch", "must be a non-empty string")

    def _resolve_branch(self, item: ThoughtInput) -> Branch:
        branch_id = item.branch_id or self._active_branch_id or generate_id("branch")
        branch = self._branches.get(branch_id)
        if branch is None:
            branch = self.create_branch(branch_id, item.parent_branch_id)
        return branch

    def _apply_input(self, item: ThoughtInput) -> Thought:
        branch = self._resolve_branch(item)
        confidence = 1.0 if item.confidence is None else float(item.confidence)
        key_points = list(item.key_points or [])

        thought = Thought(
            id=generate_id("thought"),
            content=item.content,
            branch_id=branch.id,
            profile_id=item.profile_id,
            metadata=ThoughtMetadata(type=item.type, confidence=confidence, key_points=key_points),
        )
        # Provisional score until the first cross-reference pass
        thought.score = (
            confidence
            + 0.1 * len(key_points)
            + 0.2 * len(item.cross_refs)
            + 0.2 * len(item.thought_cross_refs)
        )
        for link in item.thought_cross_refs:
            self._append_link(thought, link)

        branch.insights.append(
            self._new_insight(
                InsightType.OBSERVATION,
                f"Auto-generated insight from thought: {thought.content[:50]}",
                [thought.id],
            )
        )
        branch.thoughts.append(thought)
        self._thought_index[thought.id] = thought
        self._thought_branch[thought.id] = branch.id

        if key_points:
            branch.insights.append(
                self._new_insight(
                    InsightType.OBSERVATION,
                    f"Identified key points: {', '.join(key_points)}",
                    [item.type],
                    parent_insights=list(item.related_insights) if item.related_insights else None,
                )
            )

        for ref in item.cross_refs:
            branch.cross_refs.append(
                self._new_crossref(branch.id, ref.to_branch, ref.type, ref.reason, ref.strength)
            )
            target = self._branches.get(ref.to_branch)
            if target is not None and target is not branch:
                target.cross_refs.append(
                    self._new_crossref(
                        ref.to_branch,
                        branch.id,
                        ref.type,
                        f"[Auto] {ref.reason}",
                        ref.strength * MIRROR_STRENGTH_FACTOR,
                        auto_generated=True,
                    )
                )
                self._refresh_metrics(target)
                self._notify(target.id)

        self._generate_advanced_insights(branch)
        self._refresh_metrics(branch)
        logger.debug(f"Added thought {thought.id} to branch {branch.id}")
        self._notify(branch.id)
        return thought

    def _generate_advanced_insights(self, branch: Branch) -> None:
        parent_ids = [i.id for i in branch.insights[-self.insights_window:]]

        frequent = frequent_key_points(branch)
        if frequent:
            insight = self._new_insight(
                InsightType.BEHAVIORAL_PATTERN,
                f"Frequent key points detected: {', '.join(frequent)}",
                frequent,
                parent_insights=list(parent_ids),
            )
            branch.insights.append(insight)
            self._link_insight_to_parents(branch, insight, parent_ids)
            parent_ids = (parent_ids + [insight.id])[-self.insights_window:]

        tally = sentiment_tally(branch)
        if tally.has_signal:
            insight = self._new_insight(
                InsightType.OBSERVATION,
                tally.describe(),
                [],
                parent_insights=list(parent_ids),
            )
            branch.insights.append(insight)
            self._link_insight_to_parents(branch, insight, parent_ids)

    def _link_insight_to_parents(self, branch: Branch, insight: Insight, parent_ids: Iterable[str]) -> None:
        for pid in parent_ids:
            branch.cross_refs.append(
                self._new_crossref(
                    branch.id,
                    branch.id,
                    BranchCrossRefType.BUILDS_UPON,
                    f"Insight {insight.id} builds on {pid}",
                    1.0,
                    auto_generated=True,
                )
            )

    def link_thoughts(
        self,
        from_id: str,
        to_id: str,
        link_type: Union[ThoughtLinkType, str] = ThoughtLinkType.RELATED,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Add an explicit link from one thought to another.

        Returns False when either thought is unknown. Linking the same
        (target, type) pair twice keeps a single link. Links are not mirrored.
        """
        source = self._thought_index.get(from_id)
        if source is None or to_id not in self._thought_index:
            return False
        link = ThoughtLink(to_thought_id=to_id, type=ThoughtLinkType(link_type), reason=reason)
        if self._append_link(source, link):
            self._notify(self._thought_branch[from_id])
        return True

    @staticmethod
    def _append_link(thought: Thought, link: ThoughtLink) -> bool:
        for existing in thought.linked_thoughts:
            if existing.to_thought_id == link.to_thought_id and existing.type == link.type:
                return False
        thought.linked_thoughts.append(link)
        return True

    def find_thought(self, thought_id: str) -> Optional[Thought]:
        return self._thought_index.get(thought_id)

    def require_thought(self, thought_id: str) -> Thought:
        thought = self._thought_index.get(thought_id)
        if thought is None:
            raise ThoughtNotFoundError(thought_id)
        return thought

    def branch_of(self, thought_id: str) -> Optional[str]:
        """Id of the branch currently holding the thought (changes on merge)."""
        return self._thought_branch.get(thought_id)

    def get_linked_thoughts(self, thought_id: str) -> List[Tuple[Thought, ThoughtLink]]:
        thought = self.require_thought(thought_id)
        resolved = []
        for link in thought.linked_thoughts:
            target = self._thought_index.get(link.to_thought_id)
            if target is not None:
                resolved.append((target, link))
        return resolved

    def all_thoughts(self) -> List[Thought]:
        """Every thought, branch by branch in creation order, then insertion order."""
        return [t for branch in self._branches.values() for t in branch.thoughts]

    def thoughts_in(self, branch_id: Optional[str] = None) -> List[Thought]:
        if branch_id is None:
            return self.all_thoughts()
        return list(self.require_branch(branch_id).thoughts)

    # ==================================================================
    # Profiles
    # ==================================================================

    def create_profile(self, name: str, settings: Optional[dict] = None) -> Profile:
        if not name or not name.strip():
            raise ValidationError("name", "profile name cannot be empty")
        self._profile_counter += 1
        profile = Profile(id=f"profile-{self._profile_counter}", name=name, settings=dict(settings or {}))
        self._profiles[profile.id] = profile
        return profile

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        return self._profiles.get(profile_id)

    # ==================================================================
    # Internals
    # ==================================================================

    def _refresh_metrics(self, branch: Branch) -> None:
        branch.priority, branch.confidence = compute_branch_metrics(branch)

    def _new_insight(
        self,
        insight_type: InsightType,
        content: str,
        context: List[str],
        parent_insights: Optional[List[str]] = None,
    ) -> Insight:
        self._insight_counter += 1
        return Insight(
            id=f"insight-{self._insight_counter}",
            type=insight_type,
            content=content,
            context=context,
            parent_insights=parent_insights,
        )

    def _new_crossref(
        self,
        from_branch: str,
        to_branch: str,
        ref_type: BranchCrossRefType,
        reason: str,
        strength: float,
        auto_generated: bool = False,
    ) -> BranchCrossReference:
        self._crossref_counter += 1
        return BranchCrossReference(
            id=f"xref-{self._crossref_counter}",
            from_branch=from_branch,
            to_branch=to_branch,
            type=BranchCrossRefType(ref_type),
            reason=reason,
            strength=strength,
            auto_generated=auto_generated,
        )


__all__ = ["GraphStore", "compute_branch_metrics", "MIRROR_STRENGTH_FACTOR"]
