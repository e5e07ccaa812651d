"""
Catalog service: the operations offered to the HTTP layer and the CLI.

- get_ads(): cached snapshot, or a refresh on cache miss
- refresh(): force a refresh
- search(query): hybrid search with the current snapshot as fallback corpus
- clear_cache(): drop the cached snapshot
"""

import logging
import threading
from typing import Optional

from .cache import CacheError, MemoryCacheBackend, RecordStore, RedisCacheBackend
from .config import Settings
from .embeddings.generator import EmbeddingGenerator, ModelUnavailable
from .embeddings.index_manager import AdIndexManager, IndexUnavailable
from .embeddings.models import SearchResponse
from .embeddings.search_engine import AdSearchEngine
from .models import Ad
from .refresh import RefreshOrchestrator
from .sources import CSVSource, GoogleSheetsSource, SourceProvider

logger = logging.getLogger(__name__)


class AdCatalog:
    """
    Facade over the record store, refresh orchestrator and search engine.

    Example:
        catalog = build_catalog(Settings.from_env())
        ads = catalog.get_ads()
        response = catalog.search("mercedes launch video")
    """

    def __init__(
        self,
        store: RecordStore,
        orchestrator: RefreshOrchestrator,
        search_engine: AdSearchEngine,
        index_manager: AdIndexManager,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.search_engine = search_engine
        self.index_manager = index_manager

    @property
    def cache_key(self) -> str:
        return self.orchestrator.cache_key

    def load(self) -> bool:
        """
        Restore the vector index from disk.

        Returns:
            True if an index generation was loaded, False if search starts
            in keyword-only mode until the first refresh
        """
        try:
            loaded = self.index_manager.load()
        except IndexUnavailable as e:
            logger.warning(f"Failed to load vector index: {e}. Falling back to keyword search.")
            return False
        if not loaded:
            logger.warning("No vector index on disk yet; keyword search until first refresh")
        return loaded

    def get_ads(self) -> list[Ad]:
        """
        Current snapshot from the cache, refreshing on a miss.

        An unreachable cache on read counts as a miss.

        Raises:
            ProviderError, CacheError, IndexUnavailable, ModelUnavailable:
                if the cache-miss refresh fails
        """
        try:
            cached = self.store.get(self.cache_key)
        except CacheError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            cached = None

        if cached is not None:
            logger.info("Serving ads from cache")
            return cached

        logger.info("Cache miss, fetching from source")
        return self.orchestrator.refresh()

    def refresh(self, cancel: Optional[threading.Event] = None) -> list[Ad]:
        """Force a refresh and return the new snapshot."""
        return self.orchestrator.refresh(cancel)

    def search(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        """
        Hybrid search over the catalog.

        A cache-miss refresh that fails at the index step has already
        written the new snapshot, so the search answers with keyword
        scoring over it.

        Raises:
            ValidationError: Empty query
            CacheError, ProviderError: If no fallback corpus can be produced
        """
        try:
            corpus = self.get_ads()
        except (IndexUnavailable, ModelUnavailable) as e:
            corpus = self.store.get(self.cache_key)
            if corpus is None:
                raise
            logger.warning(f"Index refresh failed ({e}), keyword search over cached snapshot")
            return self.search_engine.keyword_only_search(query, corpus)
        return self.search_engine.search(query, corpus, limit=limit)

    def clear_cache(self) -> None:
        """
        Drop the cached snapshot and cached query embeddings.

        Raises:
            CacheError: If the cache backend is unreachable
        """
        self.store.clear(self.cache_key)
        self.search_engine.clear_caches()

    @property
    def degraded(self) -> bool:
        """True while there is no vector index to search."""
        return self.index_manager.generation is None

    def get_stats(self) -> dict:
        last = self.orchestrator.last_stats
        last_error = self.orchestrator.last_error
        return {
            "index_stats": self.index_manager.get_stats(),
            "model_version": self.index_manager.model_version,
            "model_loaded": self.search_engine.generator.is_loaded,
            "refresh_in_progress": self.orchestrator.in_progress,
            "last_refresh": {
                "ads_total": last.ads_total,
                "generation": last.generation,
                "elapsed_seconds": last.elapsed_seconds,
                "completed_at": last.completed_at.isoformat() if last.completed_at else None,
            } if last else None,
            "last_error": {
                "error": last_error.error,
                "at": last_error.completed_at.isoformat() if last_error.completed_at else None,
            } if last_error else None,
        }


def build_source(settings: Settings) -> SourceProvider:
    """CSV source when ``csv_ads`` is set, Google Sheets otherwise."""
    if settings.csv_ads:
        return CSVSource(settings.csv_ads, settings.csv_formats)
    if not settings.sheet_id or not settings.sheets_api_key:
        raise ValueError(
            "No ad source configured: set ADS_CSV_ADS, or ADS_SHEET_ID and ADS_SHEETS_API_KEY"
        )
    return GoogleSheetsSource(
        sheet_id=settings.sheet_id,
        api_key=settings.sheets_api_key,
        ad_sheet=settings.ad_sheet,
        format_sheet=settings.format_sheet,
        timeout=settings.source_timeout,
    )


def build_catalog(
    settings: Settings,
    source: Optional[SourceProvider] = None,
    generator: Optional[EmbeddingGenerator] = None,
) -> AdCatalog:
    """
    Wire up a catalog from settings.

    Args:
        settings: Runtime configuration
        source: Override the configured source provider
        generator: Override the embedding generator (shared model instance)
    """
    if settings.redis_url:
        backend = RedisCacheBackend.from_url(settings.redis_url, timeout=settings.cache_timeout)
    else:
        logger.info("ADS_REDIS_URL not set, using in-process cache")
        backend = MemoryCacheBackend()

    store = RecordStore(backend)
    generator = generator or EmbeddingGenerator(model_name=settings.model_name)
    index_manager = AdIndexManager(index_dir=settings.index_dir, generator=generator)
    orchestrator = RefreshOrchestrator(
        source=source or build_source(settings),
        store=store,
        index_manager=index_manager,
        cache_key=settings.cache_key,
        cache_ttl=settings.cache_ttl,
    )
    search_engine = AdSearchEngine(index_manager, generator, limit=settings.search_limit)
    return AdCatalog(store, orchestrator, search_engine, index_manager)
