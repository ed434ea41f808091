"""
Tests for the visualization builder and its graph analytics.
"""

import networkx as nx
import numpy as np
import pytest

from branchcore.core.config import VisualizationConfig
from branchcore.core.exceptions import BranchNotFoundError, ValidationError
from branchcore.core.graph_store import GraphStore
from branchcore.core.models import (
    BranchCrossRefInput,
    Task,
    TaskStatus,
    TaskType,
    ThoughtInput,
    ThoughtLinkType,
)
from branchcore.core.visualization import (
    VisualizationBuilder,
    VisualizationOptions,
    closeness_centrality,
    cluster_count,
    find_cycles,
    kmeans,
)


@pytest.fixture
def populated():
    store = GraphStore()
    t1 = store.add_thought(ThoughtInput(content="first idea", branch_id="a"))
    t2 = store.add_thought(ThoughtInput(content="second idea", branch_id="a"))
    t3 = store.add_thought(ThoughtInput(content="other angle", branch_id="b"))
    store.link_thoughts(t1.id, t3.id, ThoughtLinkType.SUPPORTS)
    return store, t1, t2, t3


class TestAnalyticsHelpers:
    @pytest.mark.parametrize("n, k", [(1, 2), (2, 2), (9, 2), (25, 4), (50, 5)])
    def test_cluster_count(self, n, k):
        assert cluster_count(n) == k

    def test_kmeans_separates_obvious_groups(self):
        features = np.array([[0.0, 0.0], [0.0, 0.1], [10.0, 10.0], [10.0, 10.1]])
        labels, centroids = kmeans(features, 2)
        assert labels[0] == labels[1]
        assert labels[2] == labels[3]
        assert labels[0] != labels[2]
        assert centroids.shape == (2, 2)

    def test_kmeans_is_deterministic_and_clips_k(self):
        features = np.array([[1.0], [2.0], [3.0]])
        first, centroids = kmeans(features, 5, seed=7)
        second, _ = kmeans(features, 5, seed=7)
        assert np.array_equal(first, second)
        assert centroids.shape == (3, 1)

    def test_closeness_follows_edge_direction(self):
        graph = nx.DiGraph([("a", "b"), ("b", "c")])
        central = closeness_centrality(graph)
        assert central["a"] == pytest.approx(2 / 3)
        assert central["b"] == pytest.approx(1.0)
        assert central["c"] == 0.0

    def test_find_cycles(self):
        graph = nx.DiGraph([("a", "b"), ("b", "a"), ("c", "c"), ("c", "d")])
        assert find_cycles(graph) == [["a", "b"], ["c"]]


class TestBuilder:
    def test_low_detail_is_structure_only(self, populated):
        store, t1, t2, t3 = populated
        result = VisualizationBuilder(store).build(VisualizationOptions(level_of_detail="low"))

        assert {n["id"] for n in result["nodes"]} == {"a", "b", t1.id, t2.id, t3.id}
        pairs = {(e["from"], e["to"]) for e in result["edges"]}
        assert pairs == {("a", t1.id), ("a", t2.id), ("b", t3.id), (t1.id, t3.id)}
        [link] = [e for e in result["edges"] if e["type"] == "link"]
        assert link["label"] == "supports"
        assert result["meta"]["level_of_detail"] == "low"
        assert "centrality" not in result["meta"]
        assert all("cluster" not in n for n in result["nodes"])

    def test_auto_detail_on_small_graph_is_high(self, populated):
        store, *_ = populated
        result = VisualizationBuilder(store).build()

        meta = result["meta"]
        assert meta["level_of_detail"] == "high"
        assert meta["cycles"] == []
        assert meta["topological_order"] is not None
        assert meta["cluster_features"] == "degree"
        assert len(meta["clusters"]) == len(result["nodes"])
        assert all(n["cluster_label"] == f"Cluster {n['cluster']}" for n in result["nodes"])

    def test_auto_detail_on_large_graph_is_medium(self, populated):
        store, *_ = populated
        builder = VisualizationBuilder(store, VisualizationConfig(auto_detail_node_limit=2))
        meta = builder.build()["meta"]
        assert meta["level_of_detail"] == "medium"
        assert "centrality" in meta
        assert "cycles" not in meta

    def test_embeddings_drive_clusters_when_most_nodes_have_one(self, populated):
        store, t1, t2, t3 = populated
        embeddings = {
            t1.id: np.array([1.0, 0.0]),
            t2.id: np.array([1.0, 0.1]),
            t3.id: np.array([0.0, 1.0]),
        }
        meta = VisualizationBuilder(store).build(embeddings=embeddings)["meta"]
        assert meta["cluster_features"] == "embedding"

    def test_focus_node_paths_and_highlight(self, populated):
        store, t1, _, t3 = populated
        result = VisualizationBuilder(store).build(VisualizationOptions(focus_node="a", level_of_detail="high"))

        paths = result["meta"]["shortest_paths"]
        assert paths[t1.id]["distance"] == 1
        assert paths[t3.id] == {"distance": 2, "path": ["a", t1.id, t3.id]}
        highlighted = [n["id"] for n in result["nodes"] if n["highlight"]]
        assert highlighted == ["a"]

    def test_branch_cross_references_become_edges(self):
        store = GraphStore()
        store.create_branch("b")
        store.add_thought(ThoughtInput(
            content="compare with b",
            branch_id="a",
            cross_refs=[BranchCrossRefInput(to_branch="b", reason="overlap")],
        ))
        result = VisualizationBuilder(store).build(VisualizationOptions(level_of_detail="high"))

        crossrefs = {(e["from"], e["to"]) for e in result["edges"] if e["type"] == "crossref"}
        assert crossrefs == {("a", "b"), ("b", "a")}
        assert result["meta"]["cycles"] == [["a", "b"]]
        assert result["meta"]["topological_order"] is None

    def test_branch_selection(self, populated):
        store, _, _, t3 = populated
        result = VisualizationBuilder(store).build(VisualizationOptions(branches=["b"]))
        assert {n["id"] for n in result["nodes"]} == {"b", t3.id}
        assert result["meta"]["branches"] == ["b"]

    def test_unknown_branch_raises(self, populated):
        store, *_ = populated
        with pytest.raises(BranchNotFoundError):
            VisualizationBuilder(store).build(VisualizationOptions(branch_id="nope"))

    def test_invalid_detail_level(self, populated):
        store, *_ = populated
        with pytest.raises(ValidationError):
            VisualizationBuilder(store).build(VisualizationOptions(level_of_detail="extreme"))

    def test_task_status_merged_by_id(self, populated):
        store, t1, _, _ = populated
        task = Task(id=t1.id, branch_id="a", thought_id=t1.id, type=TaskType.TODO,
                    content="x", status=TaskStatus.IN_PROGRESS, priority=2)
        result = VisualizationBuilder(store).build(tasks=[task])

        [node] = [n for n in result["nodes"] if n["id"] == t1.id]
        assert node["task_status"] == "in_progress"
        assert node["task_priority"] == 2
        assert node["next_action"] is True

    def test_edge_bundles_group_by_owning_branch(self, populated):
        store, t1, _, t3 = populated
        result = VisualizationBuilder(store).build(VisualizationOptions(edge_bundling=True, level_of_detail="low"))

        bundles = result["meta"]["edge_bundles"]
        assert len(bundles["a->a"]) == 2
        assert bundles["a->b"] == [e for e in result["edges"] if e["type"] == "link"]
