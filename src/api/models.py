"""
API request/response models for the ad catalog API.

Pydantic models at the HTTP boundary. The catalog uses the Ad model and
plain dataclasses internally (src/adsearch/), and this module translates
between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..adsearch.embeddings.models import SearchResponse as InternalSearchResponse


# =============================================================================
# Request Models
# =============================================================================


class SearchRequest(BaseModel):
    """Request for a catalog search."""

    # Emptiness is checked by the engine so it maps to the 400 envelope
    query: str = Field("", max_length=500, description="Free-text search query")
    limit: Optional[int] = Field(
        None, ge=1, le=100, description="Nearest neighbours to request (default 20)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [{"query": "automotive interstitial with video"}]
        }
    }


# =============================================================================
# Response Models
# =============================================================================


class AdsResponse(BaseModel):
    """Full catalog snapshot."""

    success: bool = True
    data: list[dict[str, Any]] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Ranked search results."""

    success: bool = True
    results: list[dict[str, Any]] = Field(default_factory=list)
    semantic: bool = False
    degraded: bool = False
    search_time_ms: float = 0.0

    @classmethod
    def from_internal(cls, resp: InternalSearchResponse) -> "SearchResponse":
        return cls(
            results=[ad.to_public() for ad in resp.results],
            semantic=resp.semantic,
            degraded=resp.degraded,
            search_time_ms=resp.search_time_ms,
        )


class RefreshResponse(BaseModel):
    success: bool = True
    message: str = "Data refreshed successfully"
    count: int = 0


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str = Field(..., description="'healthy' or 'degraded'")
    index_loaded: bool = False
    degraded: bool = False
    index_generation: Optional[int] = None


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail
