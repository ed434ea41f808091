"""
Cross-Reference & Scoring Engine
================================
Full-graph batch pass that rewrites every thought's ``cross_refs`` and
``score`` and every branch's ``score``.

Pass structure (``recompute_all``):
  1. Ensure embeddings for every thought through the embedding cache.
  2. Direct pass: cosine similarity over every ordered pair of distinct
     thoughts across all branches; keep pairs above ``direct_threshold``,
     classify as very-similar above ``very_similar_threshold``, keep the
     top ``max_direct`` per thought (stable sort, enumeration order breaks ties).
  3. Bidirectional repair: if A references B and B lacks A, add A to B
     and re-truncate B's direct set.
  4. Multi-hop propagation: 2-hop then 3-hop walks over the repaired
     direct lists; a path scores the minimum of its edge similarities and
     is admitted above ``multi_hop_threshold``. Each thought then keeps its
     top ``max_total`` references overall.
  5. Scoring (see ``score_thought``) and branch score = mean thought score.

Steps 2-5 run on local structures and are committed in one synchronous
block, so a failure while embedding leaves the previous pass intact and
no partially rewritten cross-reference list is ever observable.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from branchcore.core._utils import similarity_matrix, utc_now
from branchcore.core.cache import EmbeddingCache
from branchcore.core.config import CrossRefConfig, ScoringConfig
from branchcore.core.graph_store import GraphStore
from branchcore.core.models import CrossRef, CrossRefKind, Thought


@dataclass
class RecomputeStats:
    thoughts: int = 0
    direct_edges: int = 0
    repaired_edges: int = 0
    multi_hop_edges: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "thoughts": self.thoughts,
            "direct_edges": self.direct_edges,
            "repaired_edges": self.repaired_edges,
            "multi_hop_edges": self.multi_hop_edges,
            "duration_ms": round(self.duration_ms, 2),
        }


# ======================================================================
# Pure passes
# ======================================================================

def _classify(similarity: float, cfg: CrossRefConfig) -> CrossRefKind:
    if similarity > cfg.very_similar_threshold:
        return CrossRefKind.VERY_SIMILAR
    return CrossRefKind.RELATED


def _by_score(refs: List[CrossRef]) -> List[CrossRef]:
    # sorted() is stable: equal scores keep enumeration order
    return sorted(refs, key=lambda cr: cr.score, reverse=True)


def direct_pass(ids: Sequence[str], sims: np.ndarray, cfg: CrossRefConfig) -> Dict[str, List[CrossRef]]:
    """Top ``max_direct`` above-threshold neighbours per thought."""
    direct: Dict[str, List[CrossRef]] = {}
    n = len(ids)
    for i in range(n):
        candidates = []
        for j in range(n):
            if i == j:
                continue
            sim = float(sims[i, j])
            if sim > cfg.direct_threshold:
                candidates.append(CrossRef(ids[j], sim, _classify(sim, cfg)))
        direct[ids[i]] = _by_score(candidates)[:cfg.max_direct]
    return direct


def repair_pass(
    ids: Sequence[str],
    sims: np.ndarray,
    direct: Dict[str, List[CrossRef]],
    cfg: CrossRefConfig,
) -> int:
    """
    Add missing reciprocal direct references in place.

    Returns how many reciprocals survived re-truncation to ``max_direct``.
    """
    index = {tid: i for i, tid in enumerate(ids)}
    added = 0
    for a in ids:
        for cr in list(direct[a]):
            b = cr.to_thought_id
            if any(x.to_thought_id == a for x in direct[b]):
                continue
            sim = float(sims[index[a], index[b]])
            if sim > cfg.direct_threshold:
                reciprocal = CrossRef(a, sim, _classify(sim, cfg))
                direct[b] = _by_score(direct[b] + [reciprocal])[:cfg.max_direct]
                if any(x is reciprocal for x in direct[b]):
                    added += 1
    return added


def multi_hop_pass(
    ids: Sequence[str],
    direct: Dict[str, List[CrossRef]],
    cfg: CrossRefConfig,
) -> Dict[str, List[CrossRef]]:
    """
    Extend each direct list with 2-hop and 3-hop references.

    Walks only direct edges, so the result does not depend on the order
    in which thoughts are processed.
    """
    result: Dict[str, List[CrossRef]] = {}
    for a in ids:
        own = direct[a]
        direct_ids = {cr.to_thought_id for cr in own}
        refs = list(own)
        multi: set = set()

        # 2-hop
        for cr1 in own:
            for cr2 in direct[cr1.to_thought_id]:
                c = cr2.to_thought_id
                if c == a or c in direct_ids or c in multi:
                    continue
                path_score = min(cr1.score, cr2.score)
                if path_score > cfg.multi_hop_threshold:
                    refs.append(CrossRef(c, path_score, CrossRefKind.MULTI_HOP))
                    multi.add(c)

        # 3-hop
        for cr1 in own:
            for cr2 in direct[cr1.to_thought_id]:
                c = cr2.to_thought_id
                if c == a:
                    continue
                for cr3 in direct[c]:
                    d = cr3.to_thought_id
                    if d == a or d in direct_ids or d in multi:
                        continue
                    path_score = min(cr1.score, cr2.score, cr3.score)
                    if path_score > cfg.multi_hop_threshold:
                        refs.append(CrossRef(d, path_score, CrossRefKind.MULTI_HOP))
                        multi.add(d)

        result[a] = _by_score(refs)[:cfg.max_total]
    return result


def recency_bonus(timestamp: datetime, now: datetime) -> float:
    age_days = (now - timestamp).total_seconds() / 86400.0
    if age_days < 1:
        return 1.0
    if age_days < 7:
        return 0.5
    return 0.0


def score_thought(
    thought: Thought,
    refs: Sequence[CrossRef],
    branch_of: Callable[[str], Optional[str]],
    now: datetime,
    weights: ScoringConfig,
) -> float:
    """
    score = w_direct * sum(direct scores) + w_multi * sum(multi-hop scores)
            + w_degree * degree + w_recency * recency + w_diversity * diversity
            + w_confidence * confidence + w_key_points * |key points|

    diversity = min(|distinct branches among targets| / cap, 1).
    """
    direct_sum = sum(cr.score for cr in refs if cr.is_direct)
    multi_sum = sum(cr.score for cr in refs if not cr.is_direct)
    branches = {branch_of(cr.to_thought_id) for cr in refs}
    branches.discard(None)
    diversity = min(len(branches) / weights.diversity_branch_cap, 1.0)
    return (
        weights.direct_weight * direct_sum
        + weights.multi_hop_weight * multi_sum
        + weights.degree_weight * len(refs)
        + weights.recency_weight * recency_bonus(thought.timestamp, now)
        + weights.diversity_weight * diversity
        + weights.confidence_weight * thought.confidence
        + weights.key_points_weight * len(thought.key_points)
    )


# ======================================================================
# Engine
# ======================================================================

class CrossRefEngine:
    """Runs the full cross-reference and scoring pass against a graph store."""

    def __init__(
        self,
        store: GraphStore,
        embeddings: EmbeddingCache,
        crossref: Optional[CrossRefConfig] = None,
        scoring: Optional[ScoringConfig] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.crossref = crossref or CrossRefConfig()
        self.scoring = scoring or ScoringConfig()
        self.last_stats: Optional[RecomputeStats] = None

    async def ensure_embeddings(self, thoughts: Optional[Sequence[Thought]] = None) -> Dict[str, np.ndarray]:
        thoughts = list(thoughts) if thoughts is not None else self.store.all_thoughts()
        vectors = await self.embeddings.embed_many([t.content for t in thoughts])
        return {t.id: v for t, v in zip(thoughts, vectors)}

    async def recompute_all(self, now: Optional[datetime] = None) -> RecomputeStats:
        thoughts = self.store.all_thoughts()
        vectors = await self.ensure_embeddings(thoughts)

        started = time.perf_counter()
        ids = [t.id for t in thoughts]
        if ids:
            matrix = np.vstack([vectors[tid] for tid in ids]).astype(np.float64)
            sims = similarity_matrix(matrix)
            sims = (sims + sims.T) / 2.0
        else:
            sims = np.zeros((0, 0))

        direct = direct_pass(ids, sims, self.crossref)
        direct_edges = sum(len(v) for v in direct.values())
        repaired = repair_pass(ids, sims, direct, self.crossref)
        final = multi_hop_pass(ids, direct, self.crossref)

        now = now or utc_now()
        scores = {
            t.id: score_thought(t, final[t.id], self.store.branch_of, now, self.scoring)
            for t in thoughts
        }

        # Commit
        for t in thoughts:
            t.cross_refs = final[t.id]
            t.score = scores[t.id]
        for branch in self.store.get_all_branches():
            branch.score = (
                sum(t.score for t in branch.thoughts) / len(branch.thoughts) if branch.thoughts else 0.0
            )

        stats = RecomputeStats(
            thoughts=len(ids),
            direct_edges=direct_edges,
            repaired_edges=repaired,
            multi_hop_edges=sum(1 for refs in final.values() for cr in refs if not cr.is_direct),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        self.last_stats = stats
        logger.debug(f"Cross-reference pass complete: {stats.to_dict()}")
        return stats

    async def similarity_to(self, text: str) -> List[tuple]:
        """
        Cosine similarity of ``text`` against every thought, highest first.

        Embeddings come from the cache; call ``recompute_all`` first to
        refresh cross-references as well.
        """
        thoughts = self.store.all_thoughts()
        vectors = await self.ensure_embeddings(thoughts)
        query = await self.embeddings.embed(text)
        if not thoughts:
            return []
        matrix = np.vstack([vectors[t.id] for t in thoughts]).astype(np.float64)
        stacked = np.vstack([matrix, np.asarray(query, dtype=np.float64)[np.newaxis, :]])
        sims = similarity_matrix(stacked)[-1, :-1]
        ranked = sorted(zip(thoughts, (float(s) for s in sims)), key=lambda pair: pair[1], reverse=True)
        return ranked


__all__ = [
    "CrossRefEngine",
    "RecomputeStats",
    "direct_pass",
    "repair_pass",
    "multi_hop_pass",
    "recency_bonus",
    "score_thought",
]
