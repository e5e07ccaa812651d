"""
Embedding, indexing and search for the ad catalog.

Provides vector embeddings for ads using Sentence Transformers
(all-MiniLM-L6-v2 model, 384 dimensions), a FAISS index rebuilt in
generations, and the hybrid search engine with keyword fallback.

Features:
- Lazy, single-flight model loading
- Generation-swapped index rebuilds (queries never see a half-built index)
- Query embedding cache
- Deterministic keyword fallback scoring

Example:
    from src.adsearch.embeddings import EmbeddingGenerator, AdIndexManager, AdSearchEngine

    generator = EmbeddingGenerator()
    manager = AdIndexManager(index_dir=Path("data/index"), generator=generator)
    manager.ensure_schema()
    manager.rebuild(ads)

    engine = AdSearchEngine(manager, generator)
    response = engine.search("video gallery for automotive", ads)
"""

from .models import RefreshStats, SearchResponse, VectorHit
from .generator import EmbeddingGenerator, ModelUnavailable, compose_ad_text
from .index_manager import AdIndexManager, IndexUnavailable, decode_vectors, encode_vectors
from .keyword import keyword_search, score_ad, tokenize
from .search_engine import AdSearchEngine, ValidationError

__all__ = [
    "EmbeddingGenerator",
    "ModelUnavailable",
    "compose_ad_text",
    "AdIndexManager",
    "IndexUnavailable",
    "encode_vectors",
    "decode_vectors",
    "keyword_search",
    "score_ad",
    "tokenize",
    "AdSearchEngine",
    "ValidationError",
    "RefreshStats",
    "SearchResponse",
    "VectorHit",
]
