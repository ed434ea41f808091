"""
Cache Layer
===========
Three independently invalidatable tiers:

- ``LRUCache``: bounded, most-recently-used eviction. Used for raw embedding
  vectors and for per-branch formatting caches (history, status, insights).
- ``TTLCache``: entries expire after a fixed time-to-live regardless of
  pressure. Used for branch summaries and analytics.
- ``PersistentEmbeddingMap``: unbounded content-hash → vector map backed by
  a key-value store, loaded lazily and flushed after each batch.

``EmbeddingCache`` composes the embedding tiers in front of a gateway:
LRU first, then the persistent map, then the gateway on a miss. Keys are
content hashes of the truncated text, so unrelated mutations never
invalidate an entry and identical content is computed once.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Sequence, TypeVar

import numpy as np
from loguru import logger

from branchcore.core._utils import content_hash, truncate_text
from branchcore.core.persistence import KeyValueStore, best_effort

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
        }


class LRUCache(Generic[K, V]):
    """Bounded mapping that evicts the least recently used key on overflow."""

    def __init__(self, max_entries: int = 256):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self.stats = CacheStats()

    def get(self, key: K) -> Optional[V]:
        if key not in self._data:
            self.stats.misses += 1
            return None
        self._data.move_to_end(key)
        self.stats.hits += 1
        return self._data[key]

    def put(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            self.stats.evictions += 1
            logger.debug(f"LRU evicted {evicted!r}")

    def invalidate(self, key: K) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> List[K]:
        return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class TTLCache(Generic[K, V]):
    """
    Mapping whose entries expire ``ttl_seconds`` after insertion.

    Expiry is independent of access; ``max_entries`` only guards against
    unbounded growth and drops the oldest insertion first.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[K, tuple]" = OrderedDict()
        self.stats = CacheStats()

    def get(self, key: K) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            self.stats.misses += 1
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._data[key]
            self.stats.misses += 1
            self.stats.evictions += 1
            return None
        self.stats.hits += 1
        return value

    def put(self, key: K, value: V) -> None:
        self._data.pop(key, None)
        self._data[key] = (value, self._clock())
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)
            self.stats.evictions += 1

    def invalidate(self, key: K) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._data)


class PersistentEmbeddingMap:
    """
    Disk-backed content-hash → vector map.

    Loaded on first use; ``flush`` writes the whole map back when it has
    changed. Load and save failures leave the map empty or unsaved, with a
    warning, and never raise.
    """

    def __init__(self, store: KeyValueStore, key: str = "embeddings-cache"):
        self._store = store
        self._key = key
        self._entries: Dict[str, List[float]] = {}
        self._loaded = False
        self._dirty = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def ensure_loaded(self) -> None:
        if self._loaded:
            return
        raw = await best_effort(self._store.load(self._key), default=None, what="load embedding cache")
        if self._loaded:
            # another caller finished loading while this one waited
            return
        if isinstance(raw, dict):
            self._entries = {
                k: [float(x) for x in v] for k, v in raw.items() if isinstance(v, list)
            }
        self._loaded = True
        logger.debug(f"Persistent embedding map loaded with {len(self._entries)} entries")

    def get(self, key: str) -> Optional[np.ndarray]:
        vec = self._entries.get(key)
        if vec is None:
            return None
        return np.asarray(vec, dtype=np.float32)

    def put(self, key: str, vector: np.ndarray) -> None:
        self._entries[key] = [float(x) for x in np.asarray(vector).ravel()]
        self._dirty = True

    async def flush(self) -> bool:
        if not self._dirty:
            return False
        sentinel = object()
        result = await best_effort(
            self._store.save(self._key, self._entries), default=sentinel, what="save embedding cache"
        )
        if result is sentinel:
            return False
        self._dirty = False
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._dirty = True

    def __len__(self) -> int:
        return len(self._entries)


class EmbeddingCache:
    """
    Content-addressed embedding lookup in front of a gateway.

    ``gateway_calls`` counts actual model invocations, which makes the
    "identical content is embedded once" guarantee observable.
    """

    def __init__(
        self,
        gateway: Any,
        persistent: PersistentEmbeddingMap,
        lru_size: int = 256,
        max_tokens: int = 512,
        batch_size: int = 8,
    ):
        self.gateway = gateway
        self.persistent = persistent
        self.lru: LRUCache[str, np.ndarray] = LRUCache(lru_size)
        self.max_tokens = max_tokens
        self.batch_size = batch_size
        self.gateway_calls = 0
        self._inflight: Dict[str, asyncio.Future] = {}

    def key_for(self, text: str) -> str:
        return content_hash(truncate_text(text, self.max_tokens))

    def peek(self, text: str) -> Optional[np.ndarray]:
        """Return a cached vector without touching the gateway."""
        key = self.key_for(text)
        vec = self.lru.get(key)
        if vec is None:
            vec = self.persistent.get(key)
            if vec is not None:
                self.lru.put(key, vec)
        return vec

    async def embed(self, text: str) -> np.ndarray:
        await self.persistent.ensure_loaded()
        key = self.key_for(text)
        vec = self._lookup(key)
        if vec is None:
            vec = await self._compute(key, truncate_text(text, self.max_tokens))
            await self.persistent.flush()
        return vec

    async def embed_many(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embed ``texts`` in order, computing each distinct missing key once.

        Misses are sent to the gateway in chunks of ``batch_size`` and the
        persistent map is flushed once at the end.
        """
        await self.persistent.ensure_loaded()
        keys = [self.key_for(t) for t in texts]
        resolved: Dict[str, np.ndarray] = {}
        pending: Dict[str, str] = {}
        for key, text in zip(keys, texts):
            if key in resolved or key in pending:
                continue
            vec = self._lookup(key)
            if vec is None:
                pending[key] = truncate_text(text, self.max_tokens)
            else:
                resolved[key] = vec

        items = list(pending.items())
        for start in range(0, len(items), self.batch_size):
            chunk = items[start:start + self.batch_size]
            vectors = await asyncio.gather(*(self._compute(k, t) for k, t in chunk))
            for (key, _), vec in zip(chunk, vectors):
                resolved[key] = vec

        if items:
            logger.debug(
                f"Embedded {len(items)} new texts ({len(texts) - len(items)} served from cache)"
            )
            await self.persistent.flush()
        return [resolved[k] for k in keys]

    def _lookup(self, key: str) -> Optional[np.ndarray]:
        vec = self.lru.get(key)
        if vec is not None:
            return vec
        vec = self.persistent.get(key)
        if vec is not None:
            self.lru.put(key, vec)
        return vec

    async def _compute(self, key: str, canonical_text: str) -> np.ndarray:
        """
        Embed one missing key, joining a call already in flight for it.

        Waiters are shielded so a cancelled waiter does not cancel the
        shared call. The in-flight entry is dropped on success and failure.
        """
        pending = self._inflight.get(key)
        if pending is None:
            # a concurrent call may have finished since the caller's lookup
            if key in self.lru or self.persistent.get(key) is not None:
                return self._lookup(key)
        else:
            logger.debug(f"Joining in-flight embedding for {key}")
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            self.gateway_calls += 1
            vec = np.asarray(await self.gateway.embed(canonical_text), dtype=np.float32)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved so an unobserved failure is not logged twice
            future.exception()
            raise
        finally:
            self._inflight.pop(key, None)

        self.lru.put(key, vec)
        self.persistent.put(key, vec)
        future.set_result(vec)
        return vec

    def clear(self) -> None:
        self.lru.clear()
        self.persistent.clear()


__all__ = [
    "CacheStats",
    "LRUCache",
    "TTLCache",
    "PersistentEmbeddingMap",
    "EmbeddingCache",
]
