"""
BranchCore Core Module
======================
The in-memory knowledge graph engine.

Graph:
    - GraphStore: branches, thoughts, insights, links, branch cross-references
    - Thought / Branch / Insight / Task: data model

Algorithms:
    - CrossRefEngine: direct, bidirectional and multi-hop cross-references,
      thought and branch scoring
    - TaskStore: marker extraction into a persisted task list
    - VisualizationBuilder: nodes/edges with clusters and centrality

Caching & Persistence:
    - EmbeddingCache: LRU -> persistent map -> gateway
    - TTLCache / LRUCache: summaries, analytics, formatting
    - JsonFileStore + best_effort: degraded-mode persistence

Facade:
    - ThoughtSession / session_context: tagged-result operations
"""

from .cache import EmbeddingCache, LRUCache, PersistentEmbeddingMap, TTLCache
from .config import BranchCoreConfig, get_config, load_config, reset_config
from .crossref_engine import CrossRefEngine, RecomputeStats
from .exceptions import (
    BranchCoreError,
    BranchNotFoundError,
    ConfigurationError,
    DependencyMissingError,
    NotFoundError,
    PersistenceError,
    TaskNotFoundError,
    ThoughtNotFoundError,
    TransientGatewayError,
    ValidationError,
)
from .gateway import HashingGateway, TransformersGateway, build_gateway
from .graph_store import GraphStore
from .models import (
    Branch,
    BranchCrossRefInput,
    BranchCrossRefType,
    BranchState,
    CrossRef,
    CrossRefKind,
    Insight,
    InsightType,
    Task,
    TaskStatus,
    TaskType,
    Thought,
    ThoughtInput,
    ThoughtLink,
    ThoughtLinkType,
)
from .persistence import JsonFileStore, MemoryStore, best_effort
from .session import ThoughtSession, session_context
from .tasks import TaskStore, parse_task_markers
from .visualization import VisualizationBuilder, VisualizationOptions

__all__ = [
    "EmbeddingCache",
    "LRUCache",
    "PersistentEmbeddingMap",
    "TTLCache",
    "BranchCoreConfig",
    "get_config",
    "load_config",
    "reset_config",
    "CrossRefEngine",
    "RecomputeStats",
    "BranchCoreError",
    "BranchNotFoundError",
    "ConfigurationError",
    "DependencyMissingError",
    "NotFoundError",
    "PersistenceError",
    "TaskNotFoundError",
    "ThoughtNotFoundError",
    "TransientGatewayError",
    "ValidationError",
    "HashingGateway",
    "TransformersGateway",
    "build_gateway",
    "GraphStore",
    "Branch",
    "BranchCrossRefInput",
    "BranchCrossRefType",
    "BranchState",
    "CrossRef",
    "CrossRefKind",
    "Insight",
    "InsightType",
    "Task",
    "TaskStatus",
    "TaskType",
    "Thought",
    "ThoughtInput",
    "ThoughtLink",
    "ThoughtLinkType",
    "JsonFileStore",
    "MemoryStore",
    "best_effort",
    "ThoughtSession",
    "session_context",
    "TaskStore",
    "parse_task_markers",
    "VisualizationBuilder",
    "VisualizationOptions",
]
