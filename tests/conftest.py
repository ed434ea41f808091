import sys
from pathlib import Path
import pytest


# Ensure local src/ package imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from branchcore.core.cache import EmbeddingCache, PersistentEmbeddingMap  # noqa: E402
from branchcore.core.config import (  # noqa: E402
    BranchCoreConfig,
    EmbeddingConfig,
    PathsConfig,
    reset_config,
)
from branchcore.core.graph_store import GraphStore  # noqa: E402
from branchcore.core.persistence import MemoryStore  # noqa: E402
from branchcore.core.session import ThoughtSession  # noqa: E402
from tests.mocks import StaticGateway  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use pytest -m 'not slow' to skip)"
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_config():
    """Reset global config singleton between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path) -> BranchCoreConfig:
    return BranchCoreConfig(
        embedding=EmbeddingConfig(provider="hashing"),
        paths=PathsConfig(data_dir=str(tmp_path / "data")),
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gateway() -> StaticGateway:
    return StaticGateway()


@pytest.fixture
def graph() -> GraphStore:
    return GraphStore()


@pytest.fixture
def embedding_cache(gateway, memory_store) -> EmbeddingCache:
    return EmbeddingCache(gateway, PersistentEmbeddingMap(memory_store), lru_size=16, batch_size=4)


@pytest.fixture
def session(config, gateway, memory_store) -> ThoughtSession:
    return ThoughtSession(config=config, gateway=gateway, store=memory_store)
