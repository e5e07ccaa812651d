"""
Hybrid search engine for the ad catalog.

Semantic search first, keyword scoring as the fallback:

1. Embed the query (query embeddings are cached)
2. Ask the vector index for the K nearest ads
3. Hits found: return them nearest first, built from the attributes
   stored alongside each vector
4. No hits, or the model/index failed: rank the caller's fallback corpus
   with the keyword scorer

An empty semantic result is handled exactly like an index failure, so a
search never comes back empty while a keyword match exists.

Example:
    engine = AdSearchEngine(index_manager, generator)
    response = engine.search("automotive video interstitial", ads)
    for ad in response.results:
        print(ad.brand, ad.format)
"""

import logging
import threading
import time
from typing import Optional, Sequence

import numpy as np
from cachetools import TTLCache

from ..models import Ad, ad_from_vector_attributes
from .generator import EmbeddingGenerator, ModelUnavailable
from .index_manager import AdIndexManager, IndexUnavailable
from .keyword import keyword_search
from .models import SearchResponse

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised for invalid search input (e.g. an empty query)."""
    pass


def _validate_query(query: Optional[str]) -> None:
    if query is None or not query.strip():
        raise ValidationError("Query is required")


class AdSearchEngine:
    """
    Orchestrates semantic search with keyword fallback.

    Query embeddings are memoized in a TTL cache; the model and index are
    shared with the refresh path.
    """

    DEFAULT_LIMIT = 20
    QUERY_CACHE_SIZE = 1000
    QUERY_CACHE_TTL = 3600  # 1 hour

    def __init__(
        self,
        index_manager: AdIndexManager,
        generator: EmbeddingGenerator,
        limit: int = DEFAULT_LIMIT,
    ):
        """
        Args:
            index_manager: Vector index to query
            generator: Embedding generator for query text
            limit: Number of nearest neighbours to request (K)
        """
        self.index_manager = index_manager
        self.generator = generator
        self.limit = limit

        self._query_cache: TTLCache = TTLCache(
            maxsize=self.QUERY_CACHE_SIZE,
            ttl=self.QUERY_CACHE_TTL,
        )
        self._cache_lock = threading.Lock()

    def search(
        self,
        query: str,
        fallback_corpus: Sequence[Ad],
        limit: Optional[int] = None,
    ) -> SearchResponse:
        """
        Hybrid search.

        Args:
            query: Free-text query
            fallback_corpus: Full current snapshot, ranked by keyword
                scoring when semantic search cannot answer
            limit: Override the default K

        Returns:
            SearchResponse with ranked ads

        Raises:
            ValidationError: If the query is empty or whitespace only
        """
        _validate_query(query)

        start_time = time.time()
        k = limit or self.limit

        try:
            query_vector = self._get_query_embedding(query)
            hits = self.index_manager.query(query_vector, limit=k)
        except ModelUnavailable as e:
            logger.warning(f"Embedding model unavailable: {e}. Falling back to keyword search.")
            return self._keyword_fallback_search(query, fallback_corpus, start_time, degraded=True)
        except IndexUnavailable as e:
            logger.warning(f"Vector search failed: {e}. Falling back to keyword search.")
            return self._keyword_fallback_search(query, fallback_corpus, start_time, degraded=True)
        except Exception:
            logger.exception("Unexpected vector search error. Falling back to keyword search.")
            return self._keyword_fallback_search(query, fallback_corpus, start_time, degraded=True)

        if not hits:
            logger.info(f"No vector hits for {query!r}, using keyword search")
            return self._keyword_fallback_search(query, fallback_corpus, start_time, degraded=False)

        results = [ad_from_vector_attributes(hit.id, hit.attributes) for hit in hits]
        return SearchResponse(
            results=results,
            search_time_ms=(time.time() - start_time) * 1000,
            semantic=True,
            degraded=False,
        )

    def keyword_only_search(self, query: str, corpus: Sequence[Ad]) -> SearchResponse:
        """
        Degraded search: keyword scoring over ``corpus`` without touching
        the model or the index.

        Raises:
            ValidationError: If the query is empty or whitespace only
        """
        _validate_query(query)
        return self._keyword_fallback_search(query, corpus, time.time(), degraded=True)

    def _get_query_embedding(self, query: str) -> np.ndarray:
        """
        Get embedding for a query string (with caching).

        Returns:
            Embedding array of shape (dimension,)
        """
        cache_key = f"query:{query}"
        with self._cache_lock:
            cached = self._query_cache.get(cache_key)
        if cached is not None:
            return cached

        embedding = self.generator.embed(query)
        with self._cache_lock:
            self._query_cache[cache_key] = embedding
        return embedding

    def _keyword_fallback_search(
        self,
        query: str,
        corpus: Sequence[Ad],
        start_time: float,
        degraded: bool,
    ) -> SearchResponse:
        """Rank the corpus with keyword scoring."""
        results = keyword_search(query, corpus)
        return SearchResponse(
            results=results,
            search_time_ms=(time.time() - start_time) * 1000,
            semantic=False,
            degraded=degraded,
        )

    def clear_caches(self) -> None:
        """Clear the query embedding cache."""
        with self._cache_lock:
            self._query_cache.clear()
        logger.info("Search caches cleared")
