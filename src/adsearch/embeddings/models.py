"""
Models for indexing, refresh and search.

Plain dataclasses used between the catalog components. The HTTP layer
has its own Pydantic models (src/api/models.py).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..models import Ad


@dataclass
class VectorHit:
    """One nearest-neighbour result from the vector index."""

    id: int
    attributes: dict[str, str]
    distance: float


@dataclass
class SearchResponse:
    """
    Response from a catalog search.

    ``degraded`` is True when the keyword fallback ran because the
    embedding model or the vector index failed.
    """

    results: list[Ad] = field(default_factory=list)
    search_time_ms: float = 0.0
    semantic: bool = False
    degraded: bool = False


@dataclass
class RefreshStats:
    """
    Timings and outcome of one refresh.

    Example:
        stats = orchestrator.last_stats
        print(f"{stats.ads_total} ads in {stats.elapsed_seconds:.1f}s")
    """

    ads_total: int = 0
    generation: Optional[int] = None
    fetch_seconds: float = 0.0
    cache_seconds: float = 0.0
    index_seconds: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def elapsed_seconds(self) -> float:
        return self.fetch_seconds + self.cache_seconds + self.index_seconds

    @property
    def succeeded(self) -> bool:
        return self.completed_at is not None and self.error is None
