"""
Visualization Builder
=====================
Projects the graph store into a node/edge structure annotated with
clusters, closeness centrality and (at high detail) cycle, ordering and
path analytics, ready for an external renderer.

Detail levels:
    low    - nodes and edges only
    medium - plus clusters and centrality
    high   - plus cycles, topological order and shortest paths from the focus
    auto   - medium above ``auto_detail_node_limit`` nodes, else high
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
from loguru import logger

from branchcore.core.config import VisualizationConfig
from branchcore.core.exceptions import ValidationError
from branchcore.core.graph_store import GraphStore
from branchcore.core.models import Branch, Task, TaskStatus

DETAIL_LEVELS = ("auto", "low", "medium", "high")


@dataclass
class VisualizationOptions:
    branch_id: Optional[str] = None
    branches: Optional[List[str]] = None
    show_clusters: bool = True
    edge_bundling: bool = False
    focus_node: Optional[str] = None
    level_of_detail: str = "auto"

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ======================================================================
# Analytics helpers
# ======================================================================

def cluster_count(n_nodes: int) -> int:
    """k = max(2, round(sqrt(n / 2))), rounding halves up."""
    return max(2, int(math.floor(math.sqrt(n_nodes / 2) + 0.5)))


def kmeans(
    features: np.ndarray,
    k: int,
    max_iterations: int = 100,
    seed: int = 42,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Lloyd's k-means with k-means++ seeding.

    Returns ``(labels, centroids)``. ``k`` is clipped to the number of rows.
    """
    n = features.shape[0]
    k = max(1, min(k, n))
    rng = np.random.default_rng(seed)

    centroids = np.empty((k, features.shape[1]), dtype=np.float64)
    centroids[0] = features[rng.integers(n)]
    for c in range(1, k):
        d2 = np.min(
            np.sum((features[:, np.newaxis, :] - centroids[np.newaxis, :c, :]) ** 2, axis=2), axis=1
        )
        total = float(d2.sum())
        if total == 0.0:
            centroids[c] = features[rng.integers(n)]
        else:
            centroids[c] = features[rng.choice(n, p=d2 / total)]

    labels = np.zeros(n, dtype=np.int64)
    for _ in range(max_iterations):
        distances = np.sum((features[:, np.newaxis, :] - centroids[np.newaxis, :, :]) ** 2, axis=2)
        labels = np.argmin(distances, axis=1)
        new_centroids = centroids.copy()
        for j in range(k):
            mask = labels == j
            if mask.any():
                new_centroids[j] = features[mask].mean(axis=0)
        if np.allclose(centroids, new_centroids, atol=1e-6):
            break
        centroids = new_centroids
    return labels, centroids


def closeness_centrality(graph: nx.DiGraph) -> Dict[str, float]:
    """
    (reachable - 1) / sum of hop distances to reachable nodes, following
    edge direction; 0 for nodes that reach nothing.
    """
    centrality: Dict[str, float] = {}
    for node in graph.nodes:
        lengths = nx.single_source_shortest_path_length(graph, node)
        total = sum(lengths.values())
        centrality[node] = (len(lengths) - 1) / total if total > 0 else 0.0
    return centrality


def find_cycles(graph: nx.DiGraph) -> List[List[str]]:
    """Strongly connected components that contain a cycle."""
    cycles = []
    for component in nx.strongly_connected_components(graph):
        if len(component) > 1:
            cycles.append(sorted(component))
        else:
            (node,) = component
            if graph.has_edge(node, node):
                cycles.append([node])
    return sorted(cycles)


# ======================================================================
# Builder
# ======================================================================

class VisualizationBuilder:
    def __init__(self, store: GraphStore, config: Optional[VisualizationConfig] = None):
        self.store = store
        self.config = config or VisualizationConfig()

    def _select_branches(self, options: VisualizationOptions) -> List[Branch]:
        if options.branches is not None:
            return [self.store.require_branch(b) for b in options.branches]
        if options.branch_id is not None:
            return [self.store.require_branch(options.branch_id)]
        return self.store.get_all_branches()

    def build(
        self,
        options: Optional[VisualizationOptions] = None,
        embeddings: Optional[Mapping[str, np.ndarray]] = None,
        tasks: Sequence[Task] = (),
    ) -> Dict[str, Any]:
        options = options or VisualizationOptions()
        if options.level_of_detail not in DETAIL_LEVELS:
            raise ValidationError("level_of_detail", f"expected one of {DETAIL_LEVELS}", options.level_of_detail)
        embeddings = embeddings or {}

        graph = nx.DiGraph()
        nodes: Dict[str, Dict[str, Any]] = {}
        edges: Dict[Tuple[str, str], Dict[str, Any]] = {}

        def add_edge(src: str, dst: str, **attrs) -> None:
            graph.add_edge(src, dst)
            edges.setdefault((src, dst), {"from": src, "to": dst, **attrs})

        for branch in self._select_branches(options):
            graph.add_node(branch.id)
            nodes.setdefault(branch.id, {
                "id": branch.id,
                "label": branch.id,
                "type": "branch",
                "state": branch.state.value,
                "score": branch.score,
            })
            for thought in branch.thoughts:
                graph.add_node(thought.id)
                nodes.setdefault(thought.id, {
                    "id": thought.id,
                    "label": thought.content[:30],
                    "type": "thought",
                    "branch_id": branch.id,
                    "score": thought.score,
                })
                add_edge(branch.id, thought.id, type="contains")
                for link in thought.linked_thoughts:
                    add_edge(thought.id, link.to_thought_id, label=link.type.value, type="link")
            for ref in branch.cross_refs:
                # self references record insight provenance, not structure
                if ref.to_branch != branch.id:
                    add_edge(branch.id, ref.to_branch, label=ref.type.value, type="crossref")

        node_list = list(nodes.values())
        edge_list = list(edges.values())
        detail = options.level_of_detail
        if detail == "auto":
            detail = "medium" if len(node_list) > self.config.auto_detail_node_limit else "high"

        analytics: Dict[str, Any] = {"level_of_detail": detail}

        if options.show_clusters and detail != "low" and len(node_list) >= 2:
            self._annotate_clusters(node_list, graph, embeddings, analytics)

        if detail != "low":
            central = closeness_centrality(graph)
            analytics["centrality"] = {n["id"]: central.get(n["id"], 0.0) for n in node_list}
            for node in node_list:
                node["centrality"] = central.get(node["id"], 0.0)
                node["highlight"] = node["id"] == options.focus_node

        if detail == "high":
            analytics["cycles"] = find_cycles(graph)
            analytics["topological_order"] = (
                list(nx.topological_sort(graph)) if nx.is_directed_acyclic_graph(graph) else None
            )
            if options.focus_node and graph.has_node(options.focus_node):
                paths = nx.single_source_shortest_path(graph, options.focus_node)
                analytics["shortest_paths"] = {
                    target: {"distance": len(path) - 1, "path": path} for target, path in paths.items()
                }

        if options.edge_bundling:
            analytics["edge_bundles"] = self._bundle_edges(edge_list)

        task_index = {t.id: t for t in tasks}
        for node in node_list:
            task = task_index.get(node["id"])
            if task is not None:
                node["task_status"] = task.status.value
                node["task_priority"] = task.priority
                node["next_action"] = task.status != TaskStatus.CLOSED

        logger.debug(f"Visualization built: {len(node_list)} nodes, {len(edge_list)} edges, detail={detail}")
        return {
            "nodes": node_list,
            "edges": edge_list,
            "meta": {**options.to_dict(), **analytics},
        }

    def _annotate_clusters(
        self,
        node_list: List[Dict[str, Any]],
        graph: nx.DiGraph,
        embeddings: Mapping[str, np.ndarray],
        analytics: Dict[str, Any],
    ) -> None:
        with_embedding = [n["id"] for n in node_list if n["id"] in embeddings]
        if with_embedding and len(with_embedding) >= len(node_list) / 2:
            dim = len(np.asarray(embeddings[with_embedding[0]]).ravel())
            features = np.vstack([
                np.asarray(embeddings[n["id"]], dtype=np.float64).ravel()
                if n["id"] in embeddings else np.zeros(dim)
                for n in node_list
            ])
            analytics["cluster_features"] = "embedding"
        else:
            features = np.array([[float(graph.degree(n["id"]))] for n in node_list])
            analytics["cluster_features"] = "degree"

        labels, centroids = kmeans(
            features,
            cluster_count(len(node_list)),
            max_iterations=self.config.kmeans_max_iterations,
            seed=self.config.kmeans_seed,
        )
        groups: Dict[int, List[str]] = {}
        for node, label in zip(node_list, labels):
            cluster = int(label)
            node["cluster"] = cluster
            node["cluster_label"] = f"Cluster {cluster}"
            node["cluster_color"] = f"hsl({cluster * 30}, 70%, 50%)"
            groups.setdefault(cluster, []).append(node["id"])
        analytics["clusters"] = [int(label) for label in labels]
        analytics["centroids"] = centroids.tolist()
        analytics["cluster_groups"] = groups

    def _bundle_edges(self, edge_list: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        """Group edges by the pair of branches their endpoints belong to."""

        def owner(node_id: str) -> str:
            if self.store.get_branch(node_id) is not None:
                return node_id
            return self.store.branch_of(node_id) or node_id

        bundles: Dict[str, List[Dict[str, Any]]] = {}
        for edge in edge_list:
            bundles.setdefault(f"{owner(edge['from'])}->{owner(edge['to'])}", []).append(edge)
        return bundles


__all__ = [
    "VisualizationOptions",
    "VisualizationBuilder",
    "cluster_count",
    "kmeans",
    "closeness_centrality",
    "find_cycles",
]
