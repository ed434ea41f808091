"""
Tests for the cross-reference and scoring engine.
"""

import math
from datetime import timedelta

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from branchcore.core._utils import similarity_matrix, utc_now
from branchcore.core.config import CrossRefConfig, ScoringConfig
from branchcore.core.crossref_engine import (
    CrossRefEngine,
    direct_pass,
    multi_hop_pass,
    recency_bonus,
    repair_pass,
    score_thought,
)
from branchcore.core.exceptions import TransientGatewayError
from branchcore.core.models import CrossRef, CrossRefKind, Thought, ThoughtInput, ThoughtMetadata

THETA = math.acos(0.8)


def _at(angle: float):
    return [math.cos(angle), math.sin(angle)]


# Unit vectors spaced so that neighbours have similarity 0.8 and
# anything two steps apart falls below the direct threshold.
CHAIN = {
    "alpha": _at(0.0),
    "beta": _at(THETA),
    "gamma": _at(2 * THETA),
    "delta": _at(3 * THETA),
}


@pytest.fixture
def engine(graph, embedding_cache):
    return CrossRefEngine(graph, embedding_cache, CrossRefConfig(), ScoringConfig())


def _refs_by_content(graph, thought):
    return {graph.find_thought(cr.to_thought_id).content: cr for cr in thought.cross_refs}


class TestRecomputeAll:
    @pytest.mark.asyncio
    async def test_near_identical_thoughts_are_very_similar(self, graph, engine):
        a = graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse", branch_id="a"))
        b = graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse later", branch_id="a"))
        c = graph.add_thought(ThoughtInput(content="Quarterly budget review meeting agenda", branch_id="b"))

        await engine.recompute_all()

        [ref_ab] = [cr for cr in a.cross_refs if cr.to_thought_id == b.id]
        assert ref_ab.kind == CrossRefKind.VERY_SIMILAR
        assert ref_ab.score > 0.85
        assert any(cr.to_thought_id == a.id for cr in b.cross_refs)
        assert all(cr.to_thought_id != c.id for cr in a.cross_refs)
        assert c.cross_refs == []

    @pytest.mark.asyncio
    async def test_two_and_three_hop_propagation(self, graph, embedding_cache):
        embedding_cache.gateway.vectors.update({k: np.asarray(v, dtype=np.float32) for k, v in CHAIN.items()})
        engine = CrossRefEngine(graph, embedding_cache)
        thoughts = {name: graph.add_thought(ThoughtInput(content=name, branch_id="chain")) for name in CHAIN}

        await engine.recompute_all()

        alpha = _refs_by_content(graph, thoughts["alpha"])
        assert set(alpha) == {"beta", "gamma", "delta"}
        assert alpha["beta"].kind == CrossRefKind.RELATED
        assert alpha["beta"].score == pytest.approx(0.8, abs=1e-5)
        assert alpha["gamma"].kind == CrossRefKind.MULTI_HOP
        assert alpha["gamma"].score == pytest.approx(0.8, abs=1e-5)
        assert alpha["delta"].kind == CrossRefKind.MULTI_HOP

        beta = _refs_by_content(graph, thoughts["beta"])
        assert beta["alpha"].is_direct and beta["gamma"].is_direct

    @pytest.mark.asyncio
    async def test_scores_and_branch_mean(self, graph, engine):
        graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse", branch_id="a"))
        graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse later", branch_id="a"))
        graph.add_thought(ThoughtInput(content="Unrelated gardening notes", branch_id="b"))

        stats = await engine.recompute_all()

        assert stats.thoughts == 3
        assert stats.direct_edges == 2
        for branch in graph.get_all_branches():
            mean = sum(t.score for t in branch.thoughts) / len(branch.thoughts)
            assert branch.score == pytest.approx(mean)
        linked, lonely = graph.get_branch("a").thoughts[0], graph.get_branch("b").thoughts[0]
        assert linked.score > lonely.score

    @pytest.mark.asyncio
    async def test_identical_content_embedded_once(self, graph, engine, gateway):
        graph.add_thought(ThoughtInput(content="same words", branch_id="a"))
        graph.add_thought(ThoughtInput(content="same words", branch_id="b"))

        await engine.recompute_all()
        await engine.recompute_all()

        assert gateway.embed_calls == 1

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_previous_pass_intact(self, graph, engine, gateway):
        a = graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse", branch_id="a"))
        graph.add_thought(ThoughtInput(content="The cache stores embeddings for reuse later", branch_id="a"))
        await engine.recompute_all()
        refs_before = list(a.cross_refs)
        score_before = a.score

        graph.add_thought(ThoughtInput(content="brand new content needing a model call", branch_id="a"))
        gateway.fail = True
        with pytest.raises(TransientGatewayError):
            await engine.recompute_all()

        assert a.cross_refs == refs_before
        assert a.score == score_before

    @pytest.mark.asyncio
    async def test_empty_graph(self, engine):
        stats = await engine.recompute_all()
        assert stats.thoughts == 0
        assert stats.direct_edges == 0

    @pytest.mark.asyncio
    async def test_similarity_to_ranks_exact_match_first(self, graph, engine):
        graph.add_thought(ThoughtInput(content="vector search over thoughts", branch_id="a"))
        graph.add_thought(ThoughtInput(content="weekly grocery list", branch_id="a"))

        ranked = await engine.similarity_to("vector search over thoughts")

        assert ranked[0][0].content == "vector search over thoughts"
        assert ranked[0][1] == pytest.approx(1.0, abs=1e-5)
        assert ranked[0][1] >= ranked[1][1]


# =============================================================================
# Pure passes
# =============================================================================

vectors_strategy = st.lists(
    st.lists(st.floats(min_value=-1.0, max_value=1.0, allow_nan=False), min_size=4, max_size=4),
    min_size=2,
    max_size=8,
)


def _symmetric_sims(rows):
    sims = similarity_matrix(np.asarray(rows, dtype=np.float64))
    return (sims + sims.T) / 2.0


def _run_passes(rows, cfg):
    ids = [f"t{i}" for i in range(len(rows))]
    sims = _symmetric_sims(rows)
    direct = direct_pass(ids, sims, cfg)
    repair_pass(ids, sims, direct, cfg)
    return ids, direct, multi_hop_pass(ids, direct, cfg)


def _assert_listed_on_one_side(ids, sims, direct, cfg):
    """
    Every pair above the direct threshold is listed by A or by B, unless
    both lists are already full of references at least as strong.
    """
    def saturated(tid, sim):
        refs = direct[tid]
        return len(refs) == cfg.max_direct and min(cr.score for cr in refs) >= sim

    for i, a in enumerate(ids):
        for j in range(i + 1, len(ids)):
            b = ids[j]
            sim = float(sims[i, j])
            if sim <= cfg.direct_threshold:
                continue
            a_lists_b = any(cr.to_thought_id == b for cr in direct[a])
            b_lists_a = any(cr.to_thought_id == a for cr in direct[b])
            assert a_lists_b or b_lists_a or (saturated(a, sim) and saturated(b, sim)), (a, b, sim)


class TestPasses:
    @settings(max_examples=60, deadline=None)
    @given(vectors_strategy)
    def test_top_k_bounds(self, rows):
        cfg = CrossRefConfig()
        ids, direct, final = _run_passes(rows, cfg)
        for tid in ids:
            assert len(direct[tid]) <= cfg.max_direct
            assert len(final[tid]) <= cfg.max_total
            targets = [cr.to_thought_id for cr in final[tid]]
            assert tid not in targets
            assert len(targets) == len(set(targets))
            assert all(cr.score > cfg.multi_hop_threshold for cr in final[tid])

    @settings(max_examples=80, deadline=None)
    @given(st.lists(
        st.lists(st.floats(min_value=-0.4, max_value=0.4, allow_nan=False), min_size=4, max_size=4),
        min_size=2,
        max_size=10,
    ))
    def test_pairs_above_threshold_listed_on_one_side(self, noise):
        # rows scattered around a shared base so most pairs clear the threshold
        cfg = CrossRefConfig()
        rows = np.asarray(noise, dtype=np.float64) + 1.0
        ids, direct, _ = _run_passes(rows, cfg)
        _assert_listed_on_one_side(ids, _symmetric_sims(rows), direct, cfg)

    def test_dense_cluster_truncates_and_keeps_pairs_listed(self):
        cfg = CrossRefConfig()
        rng = np.random.default_rng(7)
        rows = 1.0 + rng.uniform(-0.1, 0.1, size=(8, 4))
        ids, direct, final = _run_passes(rows, cfg)

        assert all(len(direct[tid]) == cfg.max_direct for tid in ids)
        _assert_listed_on_one_side(ids, _symmetric_sims(rows), direct, cfg)
        assert all(len(final[tid]) <= cfg.max_total for tid in ids)

    def test_thresholds_are_exclusive(self):
        cfg = CrossRefConfig(direct_threshold=0.8)
        sims = np.array([[1.0, 0.8], [0.8, 1.0]])
        direct = direct_pass(["a", "b"], sims, cfg)
        assert direct == {"a": [], "b": []}

    def test_repair_adds_missing_reciprocal(self):
        cfg = CrossRefConfig(max_direct=1)
        ids = ["a", "b", "c"]
        # b prefers c, so a->b is one-sided until repaired
        sims = np.array([
            [1.0, 0.75, 0.1],
            [0.75, 1.0, 0.9],
            [0.1, 0.9, 1.0],
        ])
        direct = direct_pass(ids, sims, cfg)
        assert [cr.to_thought_id for cr in direct["b"]] == ["c"]
        added = repair_pass(ids, sims, direct, cfg)
        # re-truncated to max_direct keeps the stronger neighbour, so nothing counts
        assert added == 0
        assert [cr.to_thought_id for cr in direct["b"]] == ["c"]

    def test_repair_counts_surviving_reciprocals(self):
        cfg = CrossRefConfig()
        sims = np.array([[1.0, 0.75], [0.75, 1.0]])
        direct = {"a": [CrossRef("b", 0.75, CrossRefKind.RELATED)], "b": []}

        added = repair_pass(["a", "b"], sims, direct, cfg)

        assert added == 1
        assert [cr.to_thought_id for cr in direct["b"]] == ["a"]

    def test_multi_hop_ties_keep_enumeration_order(self):
        cfg = CrossRefConfig()
        direct = {
            "a": [CrossRef("b", 0.8, CrossRefKind.RELATED)],
            "b": [CrossRef("a", 0.8, CrossRefKind.RELATED), CrossRef("c", 0.8, CrossRefKind.RELATED)],
            "c": [CrossRef("b", 0.8, CrossRefKind.RELATED)],
        }
        final = multi_hop_pass(["a", "b", "c"], direct, cfg)
        assert [cr.to_thought_id for cr in final["a"]] == ["b", "c"]
        assert final["a"][1].kind == CrossRefKind.MULTI_HOP


# =============================================================================
# Scoring
# =============================================================================

def _thought(confidence=1.0, key_points=(), age=timedelta(0)):
    return Thought(
        id="t",
        content="x",
        branch_id="b",
        timestamp=utc_now() - age,
        metadata=ThoughtMetadata(confidence=confidence, key_points=list(key_points)),
    )


class TestScoring:
    def test_recency_bonus(self):
        now = utc_now()
        assert recency_bonus(now - timedelta(hours=2), now) == 1.0
        assert recency_bonus(now - timedelta(days=3), now) == 0.5
        assert recency_bonus(now - timedelta(days=8), now) == 0.0

    def test_formula(self):
        weights = ScoringConfig()
        refs = [
            CrossRef("x", 0.9, CrossRefKind.VERY_SIMILAR),
            CrossRef("y", 0.6, CrossRefKind.MULTI_HOP),
        ]
        branches = {"x": "b1", "y": "b2"}
        score = score_thought(_thought(confidence=0.5, key_points=["k"]), refs, branches.get, utc_now(), weights)
        expected = 0.5 * 0.9 + 0.25 * 0.6 + 0.2 * 2 + 0.1 * 1.0 + 0.1 * (2 / 5) + 0.2 * 0.5 + 0.1 * 1
        assert score == pytest.approx(expected)

    @given(
        st.lists(st.floats(min_value=0.51, max_value=1.0), max_size=5),
        st.floats(min_value=0.51, max_value=1.0),
    )
    def test_extra_reference_increases_score(self, scores, extra):
        weights = ScoringConfig()
        now = utc_now()
        thought = _thought()
        refs = [CrossRef(f"r{i}", s, CrossRefKind.RELATED) for i, s in enumerate(scores)]
        more = refs + [CrossRef("extra", extra, CrossRefKind.MULTI_HOP)]
        base = score_thought(thought, refs, lambda _: None, now, weights)
        assert score_thought(thought, more, lambda _: None, now, weights) > base

    @given(st.floats(min_value=0.0, max_value=0.99))
    def test_confidence_is_monotonic(self, confidence):
        weights = ScoringConfig()
        now = utc_now()
        low = score_thought(_thought(confidence=confidence), [], lambda _: None, now, weights)
        high = score_thought(_thought(confidence=confidence + 0.01), [], lambda _: None, now, weights)
        assert high > low
