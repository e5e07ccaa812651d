"""
Ad catalog search - cached campaign ads with hybrid semantic search.

This package ingests campaign ad rows from a spreadsheet, caches the
catalog snapshot, indexes it for vector search and answers free-text
queries with keyword scoring as the fallback.

Features:
- Google Sheets and CSV sources with retry/backoff
- Redis or in-process snapshot cache with TTL
- FAISS vector index rebuilt in atomic generations
- Keyword fallback scoring when semantic search can't answer
- Single-flight refresh on a timer and on demand
"""

from .models import Ad, FormatInfo
from .sources import CSVSource, GoogleSheetsSource, ProviderError, SourceRows
from .cache import CacheError, MemoryCacheBackend, RecordStore, RedisCacheBackend
from .embeddings import (
    AdIndexManager,
    AdSearchEngine,
    EmbeddingGenerator,
    IndexUnavailable,
    ModelUnavailable,
    SearchResponse,
    ValidationError,
)
from .refresh import RefreshOrchestrator, RefreshTimeout
from .scheduler import RefreshScheduler
from .config import Settings
from .catalog import AdCatalog, build_catalog

__all__ = [
    # Models
    "Ad",
    "FormatInfo",
    # Sources
    "CSVSource",
    "GoogleSheetsSource",
    "ProviderError",
    "SourceRows",
    # Record store
    "CacheError",
    "MemoryCacheBackend",
    "RecordStore",
    "RedisCacheBackend",
    # Embeddings and search
    "AdIndexManager",
    "AdSearchEngine",
    "EmbeddingGenerator",
    "IndexUnavailable",
    "ModelUnavailable",
    "SearchResponse",
    "ValidationError",
    # Refresh
    "RefreshOrchestrator",
    "RefreshTimeout",
    "RefreshScheduler",
    # Service
    "AdCatalog",
    "Settings",
    "build_catalog",
]
__version__ = "1.0.0"
