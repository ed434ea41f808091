"""
Thought Session
===============
Top-level facade owning one graph store and everything derived from it:
the embedding cache tiers, the cross-reference engine, the task store,
snippets, summaries, formatting caches and the visualization builder.

A session is created at start-up and closed at shutdown; nothing is held
in module globals. Every public coroutine returns a tagged result::

    {"ok": True, "data": ...}
    {"ok": False, "error": "...", "code": "BRANCH_NOT_FOUND_ERROR", ...}

so no exception crosses this boundary.

Usage:
    async with session_context(config) as session:
        await session.create_branch("design")
        await session.add_thought(ThoughtInput(content="TODO: sketch the API"))
        result = await session.extract_tasks("design")
"""

from __future__ import annotations

import asyncio
import functools
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from loguru import logger

from branchcore.core._utils import safe_ensure_future
from branchcore.core.cache import EmbeddingCache, LRUCache, PersistentEmbeddingMap, TTLCache
from branchcore.core.config import BranchCoreConfig, get_config
from branchcore.core.crossref_engine import CrossRefEngine
from branchcore.core.exceptions import BranchCoreError, BranchNotFoundError, ValidationError, is_debug_mode
from branchcore.core.formatting import format_branch_history, format_branch_status
from branchcore.core.gateway import build_gateway
from branchcore.core.graph_store import GraphStore
from branchcore.core.models import Branch, Insight, Task, TaskStatus, ThoughtInput, ThoughtLinkType
from branchcore.core.persistence import JsonFileStore, KeyValueStore
from branchcore.core.snippets import SnippetLibrary, review_branch
from branchcore.core.tasks import TaskStore
from branchcore.core.visualization import VisualizationBuilder, VisualizationOptions

BRANCH_SUMMARY_LENGTH = (20, 120)
THOUGHT_SUMMARY_LENGTH = (10, 60)


def result_ok(data: Any) -> Dict[str, Any]:
    return {"ok": True, "data": data}


def result_error(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, BranchCoreError):
        return {"ok": False, **exc.to_dict(include_traceback=is_debug_mode())}
    return {
        "ok": False,
        "error": f"Unexpected error: {exc}",
        "code": "INTERNAL_ERROR",
        "recoverable": False,
    }


def tagged(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Run a session operation and convert its outcome into a tagged result."""

    @functools.wraps(method)
    async def wrapper(self: "ThoughtSession", *args, **kwargs) -> Dict[str, Any]:
        try:
            return result_ok(await method(self, *args, **kwargs))
        except BranchCoreError as exc:
            logger.info(f"{method.__name__} failed: {exc}")
            return result_error(exc)
        except Exception as exc:
            logger.exception(f"{method.__name__} raised unexpectedly")
            return result_error(exc)

    return wrapper


class ThoughtSession:
    def __init__(
        self,
        config: Optional[BranchCoreConfig] = None,
        gateway: Any = None,
        store: Optional[KeyValueStore] = None,
    ):
        self.config = config or get_config()
        cache_cfg = self.config.cache
        kv = store if store is not None else JsonFileStore(self.config.paths.data_dir)

        self.graph = GraphStore(insights_window=cache_cfg.insights_window)
        self.gateway = gateway if gateway is not None else build_gateway(self.config.embedding)
        self.embeddings = EmbeddingCache(
            self.gateway,
            PersistentEmbeddingMap(kv, self.config.paths.embedding_cache),
            lru_size=cache_cfg.embedding_lru_size,
            max_tokens=self.config.embedding.max_tokens,
            batch_size=self.config.embedding.batch_size,
        )
        self.engine = CrossRefEngine(self.graph, self.embeddings, self.config.crossref, self.config.scoring)
        self.tasks = TaskStore(kv, self.config.paths.task_store)
        self.snippets = SnippetLibrary()
        self.visualizer = VisualizationBuilder(self.graph, self.config.visualization)

        self.summary_cache: TTLCache[str, str] = TTLCache(cache_cfg.summary_ttl_seconds, cache_cfg.summary_max_entries)
        self.analytics_cache: TTLCache[str, dict] = TTLCache(
            cache_cfg.analytics_ttl_seconds, cache_cfg.analytics_max_entries
        )
        self.history_cache: LRUCache[str, str] = LRUCache(cache_cfg.history_cache_size)
        self.status_cache: LRUCache[str, str] = LRUCache(cache_cfg.status_cache_size)
        self.insights_cache: LRUCache[str, List[Insight]] = LRUCache(cache_cfg.insights_cache_size)

        self._background: Set[asyncio.Task] = set()
        self.graph.subscribe(self._on_branch_changed)

    # ==================================================================
    # Lifecycle & cache invalidation
    # ==================================================================

    def _on_branch_changed(self, branch_id: str) -> None:
        self.history_cache.invalidate(branch_id)
        self.status_cache.invalidate(branch_id)
        self.summary_cache.invalidate(branch_id)
        self.analytics_cache.invalidate(branch_id)
        branch = self.graph.get_branch(branch_id)
        if branch is None:
            self.insights_cache.invalidate(branch_id)
        else:
            self.insights_cache.put(branch_id, branch.insights[-self.config.cache.insights_window:])

    def _spawn(self, coro, name: str) -> None:
        task = safe_ensure_future(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        """
        Wait for background prefetches and flush the embedding map.

        Prefetches started on another event loop (a server loop that has
        already shut down) cannot be awaited here and are dropped.
        """
        loop = asyncio.get_running_loop()
        pending = [task for task in self._background if task.get_loop() is loop]
        stale = len(self._background) - len(pending)
        if stale:
            logger.warning(f"Dropping {stale} background tasks left on a finished event loop")
        self._background.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.embeddings.persistent.flush()
        logger.debug("Session closed")

    def _branch_or_active(self, branch_id: Optional[str]) -> Branch:
        if branch_id:
            return self.graph.require_branch(branch_id)
        branch = self.graph.get_active_branch()
        if branch is None:
            raise BranchNotFoundError("<active>")
        return branch

    # ==================================================================
    # Mutations
    # ==================================================================

    @tagged
    async def create_branch(self, branch_id: str, parent_branch_id: Optional[str] = None) -> dict:
        return self.graph.create_branch(branch_id, parent_branch_id).to_dict(include_thoughts=False)

    @tagged
    async def add_thought(self, data: Union[ThoughtInput, Sequence[ThoughtInput]]) -> dict:
        return self.graph.add_thought(data).to_dict()

    @tagged
    async def link_thoughts(
        self,
        from_id: str,
        to_id: str,
        link_type: Union[ThoughtLinkType, str] = ThoughtLinkType.RELATED,
        reason: Optional[str] = None,
    ) -> dict:
        try:
            link_type = ThoughtLinkType(link_type)
        except ValueError:
            raise ValidationError("type", f"expected one of {[t.value for t in ThoughtLinkType]}", link_type)
        return {"linked": self.graph.link_thoughts(from_id, to_id, link_type, reason)}

    @tagged
    async def merge_branches(self, source_id: str, target_id: str) -> dict:
        return self.graph.merge_branches(source_id, target_id).to_dict(include_thoughts=False)

    @tagged
    async def set_active_branch(self, branch_id: str) -> dict:
        return self.graph.set_active_branch(branch_id).to_dict(include_thoughts=False)

    @tagged
    async def create_profile(self, name: str, settings: Optional[dict] = None) -> dict:
        return self.graph.create_profile(name, settings).to_dict()

    @tagged
    async def add_snippet(self, content: str, tags: Optional[Sequence[str]] = None, author: Optional[str] = None) -> dict:
        snippet = self.snippets.add(content, tags, author)
        for tag in snippet.tags:
            if self.graph.get_branch(tag) is not None:
                self.status_cache.invalidate(tag)
        return snippet.to_dict()

    @tagged
    async def update_task_status(self, task_id: str, status: Union[TaskStatus, str], user: str = "") -> dict:
        task = await self.tasks.update_status(task_id, status, user)
        self._on_task_changed(task)
        return task.to_dict()

    async def advance_task(self, task_id: str, status: Union[TaskStatus, str]) -> Dict[str, Any]:
        return await self.update_task_status(task_id, status)

    @tagged
    async def assign_task(self, task_id: str, assignee: str) -> dict:
        task = await self.tasks.assign(task_id, assignee)
        self._on_task_changed(task)
        return task.to_dict()

    def _on_task_changed(self, task: Task) -> None:
        self.history_cache.invalidate(task.branch_id)
        self.status_cache.invalidate(task.branch_id)
        self.analytics_cache.invalidate(task.branch_id)

    # ==================================================================
    # Graph queries
    # ==================================================================

    @tagged
    async def get_branch(self, branch_id: str) -> dict:
        return self.graph.require_branch(branch_id).to_dict()

    @tagged
    async def get_all_branches(self) -> List[dict]:
        active = self.graph.active_branch_id
        return [
            {**b.to_dict(include_thoughts=False), "active": b.id == active}
            for b in self.graph.get_all_branches()
        ]

    @tagged
    async def get_active_branch(self) -> Optional[dict]:
        branch = self.graph.get_active_branch()
        return branch.to_dict() if branch is not None else None

    @tagged
    async def get_profile(self, profile_id: str) -> Optional[dict]:
        profile = self.graph.get_profile(profile_id)
        return profile.to_dict() if profile is not None else None

    @tagged
    async def find_thought(self, thought_id: str) -> dict:
        return self.graph.require_thought(thought_id).to_dict()

    @tagged
    async def get_linked_thoughts(self, thought_id: str) -> List[dict]:
        return [
            {"thought": thought.to_dict(), "link": link.to_dict()}
            for thought, link in self.graph.get_linked_thoughts(thought_id)
        ]

    @tagged
    async def get_cached_insights(self, branch_id: Optional[str] = None) -> List[dict]:
        branch = self._branch_or_active(branch_id)
        insights = self.insights_cache.get(branch.id)
        if insights is None:
            insights = branch.insights[-self.config.cache.insights_window:]
            self.insights_cache.put(branch.id, insights)
        return [i.to_dict() for i in insights]

    @tagged
    async def get_cross_references(self, branch_id: Optional[str] = None) -> dict:
        branch = self._branch_or_active(branch_id)
        return {
            "branch": [r.to_dict() for r in branch.cross_refs],
            "thoughts": {t.id: [cr.to_dict() for cr in t.cross_refs] for t in branch.thoughts},
        }

    @tagged
    async def hub_thoughts(self, branch_id: Optional[str] = None, top_n: int = 10) -> List[dict]:
        branch = self._branch_or_active(branch_id)
        ranked = sorted(branch.thoughts, key=lambda t: len(t.cross_refs) + t.score, reverse=True)
        return [
            {"thought": t.to_dict(), "degree": len(t.cross_refs), "score": t.score}
            for t in ranked[:top_n]
        ]

    @tagged
    async def get_branch_history(self, branch_id: Optional[str] = None) -> str:
        branch = self._branch_or_active(branch_id)
        cached = self.history_cache.get(branch.id)
        if cached is not None:
            return cached
        tasks = await self._tasks_for_rendering(branch)
        text = format_branch_history(branch, tasks, self.config.cache.insights_window)
        self.history_cache.put(branch.id, text)
        return text

    @tagged
    async def format_branch_status(self, branch_id: Optional[str] = None) -> str:
        branch = self._branch_or_active(branch_id)
        cached = self.status_cache.get(branch.id)
        if cached is not None:
            return cached
        tasks = await self._tasks_for_rendering(branch)
        text = format_branch_status(
            branch,
            is_active=branch.id == self.graph.active_branch_id,
            snippets=self.snippets.tagged(branch.id),
            tasks=tasks,
            reviews=review_branch(branch),
        )
        self.status_cache.put(branch.id, text)
        return text

    async def _tasks_for_rendering(self, branch: Branch) -> List[Task]:
        if self.graph.skip_next_task_extraction:
            self.graph.skip_next_task_extraction = False
            return []
        return await self.tasks.extract((branch.id, t) for t in branch.thoughts)

    @tagged
    async def review_branch(self, branch_id: Optional[str] = None) -> List[dict]:
        return [r.to_dict() for r in review_branch(self._branch_or_active(branch_id))]

    @tagged
    async def search_snippets(self, query: str, top_n: int = 5) -> List[dict]:
        return [s.to_dict() for s in self.snippets.search(query, top_n)]

    # ==================================================================
    # Engine-backed queries
    # ==================================================================

    @tagged
    async def recompute_all(self) -> dict:
        return (await self._recompute()).to_dict()

    async def _recompute(self):
        stats = await self.engine.recompute_all()
        # scores feed the status card and analytics
        for branch in self.graph.get_all_branches():
            self.status_cache.invalidate(branch.id)
            self.analytics_cache.invalidate(branch.id)
        return stats

    @tagged
    async def semantic_search(self, query: str, top_n: int = 5) -> List[dict]:
        if not query or not query.strip():
            raise ValidationError("query", "search query cannot be empty")
        await self._recompute()
        ranked = await self.engine.similarity_to(query)
        return [{"thought": t.to_dict(), "score": score} for t, score in ranked[:top_n]]

    @tagged
    async def summarize_branch(self, branch_id: Optional[str] = None) -> str:
        branch = self._branch_or_active(branch_id)
        return await self._summarize_branch(branch)

    async def _summarize_branch(self, branch: Branch) -> str:
        cached = self.summary_cache.get(branch.id)
        if cached is not None:
            return cached
        text = "\n".join(t.content for t in branch.thoughts)
        if not text:
            return ""
        min_len, max_len = BRANCH_SUMMARY_LENGTH
        summary = await self.gateway.summarize(text, min_length=min_len, max_length=max_len)
        self.summary_cache.put(branch.id, summary)
        return summary

    @tagged
    async def summarize_thought(self, thought_id: str) -> str:
        thought = self.graph.require_thought(thought_id)
        min_len, max_len = THOUGHT_SUMMARY_LENGTH
        return await self.gateway.summarize(thought.content, min_length=min_len, max_length=max_len)

    @tagged
    async def visualize(self, options: Optional[Union[VisualizationOptions, dict]] = None) -> dict:
        return await self._visualize(options)

    async def _visualize(self, options: Optional[Union[VisualizationOptions, dict]]) -> dict:
        if isinstance(options, dict):
            options = VisualizationOptions(**options)
        options = options or VisualizationOptions()
        embeddings = {}
        for thought in self.graph.all_thoughts():
            vec = self.embeddings.peek(thought.content)
            if vec is not None:
                embeddings[thought.id] = vec
        return self.visualizer.build(options, embeddings, await self.tasks.all())

    def _analytics_options(self, branch_id: str) -> VisualizationOptions:
        return VisualizationOptions(branch_id=branch_id, show_clusters=True, edge_bundling=True, level_of_detail="high")

    @tagged
    async def get_cached_analytics(self, branch_id: str) -> dict:
        self.graph.require_branch(branch_id)
        cached = self.analytics_cache.get(branch_id)
        if cached is not None:
            return cached
        data = await self._visualize(self._analytics_options(branch_id))
        self.analytics_cache.put(branch_id, data)
        return data

    @tagged
    async def prefetch_branch_caches(self, branch_id: str, advanced: bool = False) -> dict:
        """Warm summary, embeddings and (optionally) analytics in the background."""
        branch = self.graph.require_branch(branch_id)
        self._spawn(self._summarize_branch(branch), name=f"prefetch_summary_{branch_id}")
        self._spawn(self.engine.ensure_embeddings(branch.thoughts), name=f"prefetch_embeddings_{branch_id}")
        if advanced and branch_id not in self.analytics_cache:
            self._spawn(self._prefetch_analytics(branch_id), name=f"prefetch_analytics_{branch_id}")
        return {"branch_id": branch_id, "scheduled": 3 if advanced else 2}

    async def _prefetch_analytics(self, branch_id: str) -> None:
        data = await self._visualize(self._analytics_options(branch_id))
        self.analytics_cache.put(branch_id, data)

    # ==================================================================
    # Tasks
    # ==================================================================

    @tagged
    async def extract_tasks(self, branch_id: Optional[str] = None) -> List[dict]:
        if branch_id is not None:
            branches = [self.graph.require_branch(branch_id)]
        else:
            branches = self.graph.get_all_branches()
        tasks = await self.tasks.extract((b.id, t) for b in branches for t in b.thoughts)
        return [t.to_dict() for t in tasks]

    @tagged
    async def query_tasks(
        self,
        branch_id: Optional[str] = None,
        status: Optional[str] = None,
        assignee: Optional[str] = None,
        due: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> List[dict]:
        tasks = await self.tasks.query(branch_id, status, assignee, due, priority)
        return [t.to_dict() for t in tasks]

    @tagged
    async def summarize_tasks(self, branch_id: Optional[str] = None) -> str:
        return await self.tasks.summarize(branch_id)

    @tagged
    async def get_next_task(self, branch_id: Optional[str] = None) -> Optional[dict]:
        task = await self.tasks.next_task(branch_id)
        return task.to_dict() if task is not None else None

    # ==================================================================
    # Cache administration
    # ==================================================================

    @tagged
    async def cache_stats(self) -> dict:
        return {
            "embedding_lru_size": len(self.embeddings.lru),
            "embedding_lru": self.embeddings.lru.stats.to_dict(),
            "persistent_cache_entries": len(self.embeddings.persistent),
            "gateway_calls": self.embeddings.gateway_calls,
            "summary_cache_size": len(self.summary_cache),
            "history_cache_size": len(self.history_cache),
            "status_cache_size": len(self.status_cache),
            "insights_cache_size": len(self.insights_cache),
            "analytics_cache_size": len(self.analytics_cache),
            "snippet_count": len(self.snippets),
        }

    @tagged
    async def clear_cache(self) -> dict:
        self.embeddings.clear()
        for cache in (
            self.summary_cache,
            self.analytics_cache,
            self.history_cache,
            self.status_cache,
            self.insights_cache,
        ):
            cache.clear()
        logger.info("All session caches cleared")
        return {"cleared": True}


@asynccontextmanager
async def session_context(
    config: Optional[BranchCoreConfig] = None,
    gateway: Any = None,
    store: Optional[KeyValueStore] = None,
) -> AsyncIterator[ThoughtSession]:
    session = ThoughtSession(config=config, gateway=gateway, store=store)
    try:
        yield session
    finally:
        await session.close()


__all__ = ["ThoughtSession", "session_context", "result_ok", "result_error", "tagged"]
