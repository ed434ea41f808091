"""
Shared utility functions for BranchCore modules.

Content hashing, truncation, vector similarity, id generation and
fire-and-forget task helpers used across the graph store, the
cross-reference engine and the session facade.
"""

import asyncio
import functools
import hashlib
import itertools
import random
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, TypeVar, ParamSpec

import numpy as np
from loguru import logger

P = ParamSpec('P')
T = TypeVar('T')


# =============================================================================
# Thread Pool Executor Helper
# =============================================================================

async def run_in_thread(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """
    Run a blocking function in a thread pool executor.

    Model inference in the gateways is CPU-bound; this keeps the event loop
    responsive while a batch is being embedded.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


# =============================================================================
# Content Addressing
# =============================================================================

def content_hash(text: str) -> str:
    """
    Embedding cache key: hex BLAKE2b digest, 16 bytes.
    """
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def truncate_text(text: str, max_tokens: int = 512) -> str:
    """
    Canonicalize and truncate text to at most ``max_tokens`` whitespace tokens.

    Whitespace runs collapse to single spaces.
    """
    tokens = text.split()
    if len(tokens) > max_tokens:
        tokens = tokens[:max_tokens]
    return " ".join(tokens)


# =============================================================================
# Vector Similarity
# =============================================================================

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    """
    Pairwise cosine similarity for a (n, d) matrix.

    Rows with zero norm get similarity 0.0 against everything.
    """
    if vectors.size == 0:
        return np.zeros((0, 0), dtype=np.float64)
    norms = np.linalg.norm(vectors, axis=1)
    safe = np.where(norms == 0.0, 1.0, norms)
    unit = vectors / safe[:, np.newaxis]
    unit[norms == 0.0] = 0.0
    return unit @ unit.T


# =============================================================================
# Identifiers & Time
# =============================================================================

_sequence = itertools.count(1)


def generate_id(prefix: str) -> str:
    """
    Generate a ``prefix-<millis>-<seq>-<rand>`` identifier.

    The process-wide sequence keeps ids distinct even within one millisecond.
    """
    millis = int(time.time() * 1000)
    return f"{prefix}-{millis}-{next(_sequence)}-{random.randint(0, 999)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Async Task Exception Handling
# =============================================================================

def log_task_exception(task: asyncio.Task) -> None:
    """
    Callback to log exceptions from fire-and-forget asyncio tasks.

        task = asyncio.ensure_future(some_coro())
        task.add_done_callback(log_task_exception)
    """
    try:
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).warning(
                f"Background task {task.get_name()} failed: {exc}"
            )
    except asyncio.CancelledError:
        logger.debug(f"Background task {task.get_name()} was cancelled")


def safe_ensure_future(coro, *, name: Optional[str] = None) -> asyncio.Task:
    """
    Create an asyncio.Task with automatic exception logging.

    Example:
        safe_ensure_future(session.summarize_branch("b1"), name="prefetch_summary")
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    task.add_done_callback(log_task_exception)
    return task
