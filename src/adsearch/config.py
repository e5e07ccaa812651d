"""
Runtime configuration from ``ADS_*`` environment variables.

Example:
    settings = Settings.from_env()
    settings.refresh_interval   # 600
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass
class Settings:
    """Catalog settings. Every field maps to an ``ADS_<FIELD>`` variable."""

    # Source
    sheet_id: Optional[str] = None
    sheets_api_key: Optional[str] = None
    ad_sheet: str = "Sheet1"
    format_sheet: str = "Sheet2"
    csv_ads: Optional[str] = None
    csv_formats: Optional[str] = None
    source_timeout: float = 30.0

    # Record store
    redis_url: Optional[str] = None
    cache_key: str = "ads_data"
    cache_ttl: int = 3600
    cache_timeout: float = 5.0

    # Refresh
    refresh_interval: int = 600
    refresh_timeout: float = 300.0

    # Index / search
    index_dir: Path = Path("data/index")
    model_name: str = "all-MiniLM-L6-v2"
    search_limit: int = 20

    # API
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    rate_limit_rpm: int = 100

    @classmethod
    def from_env(cls) -> "Settings":
        cors = os.environ.get("ADS_CORS_ORIGINS")
        return cls(
            sheet_id=os.environ.get("ADS_SHEET_ID"),
            sheets_api_key=os.environ.get("ADS_SHEETS_API_KEY"),
            ad_sheet=os.environ.get("ADS_AD_SHEET", "Sheet1"),
            format_sheet=os.environ.get("ADS_FORMAT_SHEET", "Sheet2"),
            csv_ads=os.environ.get("ADS_CSV_ADS"),
            csv_formats=os.environ.get("ADS_CSV_FORMATS"),
            source_timeout=_env_float("ADS_SOURCE_TIMEOUT", 30.0),
            redis_url=os.environ.get("ADS_REDIS_URL"),
            cache_key=os.environ.get("ADS_CACHE_KEY", "ads_data"),
            cache_ttl=_env_int("ADS_CACHE_TTL", 3600),
            cache_timeout=_env_float("ADS_CACHE_TIMEOUT", 5.0),
            refresh_interval=_env_int("ADS_REFRESH_INTERVAL", 600),
            refresh_timeout=_env_float("ADS_REFRESH_TIMEOUT", 300.0),
            index_dir=Path(os.environ.get("ADS_INDEX_DIR", "data/index")),
            model_name=os.environ.get("ADS_MODEL_NAME", "all-MiniLM-L6-v2"),
            search_limit=_env_int("ADS_SEARCH_LIMIT", 20),
            cors_origins=(
                [o.strip() for o in cors.split(",") if o.strip()]
                if cors else list(DEFAULT_CORS_ORIGINS)
            ),
            rate_limit_rpm=_env_int("ADS_RATE_LIMIT_RPM", 100),
        )
