"""
Embedding / Summarization Gateways
==================================
Narrow adapters around the models that turn text into vectors and summaries.

Every gateway returns exactly one ``np.ndarray`` (float32, 1-D) from
``embed`` and one ``str`` from ``summarize``; whatever shape the underlying
pipeline produces is normalized here and nowhere else.

- ``TransformersGateway``: sentence-transformers embeddings plus a
  transformers summarization pipeline, both loaded lazily on first use.
- ``HashingGateway``: deterministic, model-free token-hash embeddings and
  extractive summaries. Useful offline and in tests.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Optional, Protocol, runtime_checkable

import numpy as np
from loguru import logger

from branchcore.core._utils import run_in_thread
from branchcore.core.config import EmbeddingConfig
from branchcore.core.exceptions import DependencyMissingError, TransientGatewayError

_TOKEN_RE = re.compile(r"[a-z0-9_]+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


@runtime_checkable
class EmbeddingGateway(Protocol):
    async def embed(self, text: str) -> np.ndarray:
        ...

    async def summarize(self, text: str, min_length: int = 20, max_length: int = 120) -> str:
        ...


# ======================================================================
# Output normalization
# ======================================================================

def to_vector(output: Any) -> np.ndarray:
    """
    Normalize a model output to a 1-D float32 vector.

    Accepts numpy arrays, torch-like tensors, nested lists and single-row
    batches. A token-level matrix (n_tokens, dim) is mean-pooled.
    """
    if hasattr(output, "detach"):
        output = output.detach()
    if hasattr(output, "cpu"):
        output = output.cpu()
    if hasattr(output, "numpy") and not isinstance(output, np.ndarray):
        output = output.numpy()
    arr = np.asarray(output, dtype=np.float32)
    while arr.ndim > 2:
        arr = arr[0]
    if arr.ndim == 2:
        arr = arr[0] if arr.shape[0] == 1 else arr.mean(axis=0)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"Cannot interpret model output of shape {np.shape(output)} as a vector")
    return arr


def to_text(output: Any) -> str:
    """Normalize a summarization pipeline output to a single string."""
    if isinstance(output, str):
        return output.strip()
    if isinstance(output, dict):
        for key in ("summary_text", "generated_text", "text"):
            if key in output:
                return str(output[key]).strip()
        raise ValueError(f"Unrecognized summary output keys: {sorted(output)}")
    if isinstance(output, (list, tuple)):
        if not output:
            return ""
        return to_text(output[0])
    return str(output).strip()


# ======================================================================
# Transformers
# ======================================================================

class TransformersGateway:
    """
    Gateway backed by sentence-transformers and a transformers pipeline.

    Models are loaded in a worker thread on first use. Load and inference
    failures are raised as ``TransientGatewayError``; the core never retries.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._encoder = None
        self._summarizer = None

    def _load_encoder(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise DependencyMissingError(
                "sentence-transformers",
                "Install with: pip install 'branchcore[models]'",
            ) from e
        logger.info(f"Loading embedding model {self.config.model_name}")
        return SentenceTransformer(self.config.model_name)

    def _load_summarizer(self):
        try:
            from transformers import pipeline
        except ImportError as e:
            raise DependencyMissingError(
                "transformers",
                "Install with: pip install 'branchcore[models]'",
            ) from e
        logger.info(f"Loading summarization model {self.config.summarization_model}")
        return pipeline("summarization", model=self.config.summarization_model)

    async def embed(self, text: str) -> np.ndarray:
        try:
            if self._encoder is None:
                self._encoder = await run_in_thread(self._load_encoder)
            raw = await run_in_thread(self._encoder.encode, text)
            return to_vector(raw)
        except DependencyMissingError:
            raise
        except Exception as e:
            raise TransientGatewayError("embed", str(e)) from e

    async def summarize(self, text: str, min_length: int = 20, max_length: int = 120) -> str:
        try:
            if self._summarizer is None:
                self._summarizer = await run_in_thread(self._load_summarizer)
            raw = await run_in_thread(
                self._summarizer, text, min_length=min_length, max_length=max_length, truncation=True
            )
            return to_text(raw)
        except DependencyMissingError:
            raise
        except Exception as e:
            raise TransientGatewayError("summarize", str(e)) from e


# ======================================================================
# Hashing (model-free)
# ======================================================================

class HashingGateway:
    """
    Deterministic bag-of-tokens embeddings.

    Each token maps to a fixed random Gaussian vector seeded from its
    BLAKE2b digest; a text is the L2-normalized sum of its token vectors.
    Texts sharing most tokens land close together, which is all the
    cross-reference engine needs outside of production.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self._token_cache: dict = {}

    def get_token_vector(self, token: str) -> np.ndarray:
        vec = self._token_cache.get(token)
        if vec is None:
            seed = int.from_bytes(hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest(), "little")
            vec = np.random.default_rng(seed).standard_normal(self.dimension).astype(np.float32)
            self._token_cache[token] = vec
        return vec

    async def embed(self, text: str) -> np.ndarray:
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return np.zeros(self.dimension, dtype=np.float32)
        acc = np.zeros(self.dimension, dtype=np.float32)
        for token in tokens:
            acc += self.get_token_vector(token)
        norm = float(np.linalg.norm(acc))
        return acc / norm if norm > 0 else acc

    async def summarize(self, text: str, min_length: int = 20, max_length: int = 120) -> str:
        """Take leading sentences until ``max_length`` words."""
        words_out = []
        for sentence in _SENTENCE_RE.split(text.strip()):
            words = sentence.split()
            if words_out and len(words_out) + len(words) > max_length:
                break
            words_out.extend(words)
            if len(words_out) >= max_length:
                break
        return " ".join(words_out[:max_length])


def build_gateway(config: EmbeddingConfig):
    """Construct the gateway named by ``config.provider``."""
    if config.provider == "hashing":
        return HashingGateway(dimension=config.dimension)
    return TransformersGateway(config)


__all__ = [
    "EmbeddingGateway",
    "TransformersGateway",
    "HashingGateway",
    "build_gateway",
    "to_vector",
    "to_text",
]
