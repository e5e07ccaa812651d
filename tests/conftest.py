"""
Shared pytest fixtures for all tests.

This module provides reusable fixtures for:
- Temporary directories and files
- A deterministic embedding generator (no model download)
- Sample sheet rows and ads
- Record stores, index managers and a fully wired catalog

Fixtures are designed to be composable - use `index_manager` for index
tests, add `catalog` on top for end-to-end refresh/search tests, etc.
"""

import hashlib
import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pytest

from src.adsearch.cache import MemoryCacheBackend, RecordStore
from src.adsearch.catalog import AdCatalog
from src.adsearch.embeddings.generator import EmbeddingGenerator
from src.adsearch.embeddings.index_manager import AdIndexManager
from src.adsearch.embeddings.search_engine import AdSearchEngine
from src.adsearch.models import Ad
from src.adsearch.refresh import RefreshOrchestrator
from src.adsearch.sources import SourceRows

from .factories import generate_ad_rows, generate_format_rows, generate_test_ads


# =============================================================================
# Fake embedding model
# =============================================================================


class FakeEncoder:
    """
    Stand-in for SentenceTransformer.

    Hashes each lowercase word into a bucket, so texts sharing words get
    similar vectors and the same text always gets the same vector.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.device = "cpu"
        self.calls = 0

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return vector / np.linalg.norm(vector)

    def encode(self, texts, normalize_embeddings=True, batch_size=32, show_progress_bar=False):
        self.calls += 1
        if isinstance(texts, str):
            return self._vector(texts)
        return np.stack([self._vector(t) for t in texts]) if texts else np.empty((0, self.dimension))


class FakeEmbeddingGenerator(EmbeddingGenerator):
    """EmbeddingGenerator whose model is a FakeEncoder."""

    def __init__(self, dimension: int = 384):
        super().__init__(model_name="fake-minilm", device="cpu", dimension=dimension)
        self.load_count = 0

    def _load_model(self):
        self.load_count += 1
        return FakeEncoder(self.dimension)


class StaticSource:
    """Source provider returning fixed rows; counts fetches."""

    def __init__(self, ad_rows=None, format_rows=None, error: Exception | None = None):
        self.ad_rows = ad_rows if ad_rows is not None else []
        self.format_rows = format_rows if format_rows is not None else []
        self.error = error
        self.fetch_count = 0

    def fetch(self) -> SourceRows:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return SourceRows(ad_rows=list(self.ad_rows), format_rows=list(self.format_rows))


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory for test files.

    The directory is automatically cleaned up after the test completes.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def index_dir(temp_dir: Path) -> Path:
    return temp_dir / "index"


# =============================================================================
# Embedding / Index Fixtures
# =============================================================================


@pytest.fixture
def fake_generator() -> FakeEmbeddingGenerator:
    """Embedding generator backed by a deterministic hashing encoder."""
    return FakeEmbeddingGenerator()


@pytest.fixture
def index_manager(index_dir: Path, fake_generator: FakeEmbeddingGenerator) -> AdIndexManager:
    """Index manager with its schema created but no generation built."""
    manager = AdIndexManager(index_dir=index_dir, generator=fake_generator)
    manager.ensure_schema()
    return manager


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_ads() -> list[Ad]:
    """
    Provide a small catalog with distinct brands and industries.

    Returns:
        List of 6 Ad objects with ids 1..6
    """
    return generate_test_ads()


@pytest.fixture
def sample_rows() -> tuple[list[dict], list[dict]]:
    """
    Provide raw sheet rows as a source would return them.

    Returns:
        Tuple of (ad_rows, format_rows)
    """
    return generate_ad_rows(), generate_format_rows()


@pytest.fixture
def memory_store() -> RecordStore:
    return RecordStore(MemoryCacheBackend())


@pytest.fixture
def static_source(sample_rows) -> StaticSource:
    ad_rows, format_rows = sample_rows
    return StaticSource(ad_rows, format_rows)


@pytest.fixture
def catalog(
    static_source: StaticSource,
    memory_store: RecordStore,
    index_manager: AdIndexManager,
    fake_generator: FakeEmbeddingGenerator,
) -> AdCatalog:
    """
    Provide a fully wired catalog over in-memory cache and fake model.

    Nothing has been fetched yet; the first get_ads() triggers a refresh.
    """
    orchestrator = RefreshOrchestrator(
        source=static_source,
        store=memory_store,
        index_manager=index_manager,
    )
    engine = AdSearchEngine(index_manager, fake_generator)
    return AdCatalog(memory_store, orchestrator, engine, index_manager)


# =============================================================================
# Skip Markers for Optional Features
# =============================================================================


def requires_faiss(func):
    """
    Decorator to skip tests if FAISS is not available.
    """
    try:
        import faiss  # noqa: F401

        return func
    except ImportError:
        return pytest.mark.skip(reason="FAISS not installed")(func)
