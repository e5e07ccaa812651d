"""
Column mapping from spreadsheet rows to Ad models.

The ad sheet has one row per creative with a ``yes``/blank column per
interactive feature. The format sheet maps a format name to a description
and a specs link, merged into every ad of that format.
"""

import logging
from typing import Mapping, Sequence

from .models import Ad, FormatInfo

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://dev-mizu-adcreator.s3.ap-south-1.amazonaws.com/dev-asset/"

FEATURE_COLUMNS = [
    "button", "hotspot", "fire", "objthreesixty", "photosphere", "feed_carousel",
    "fog", "puzzle", "cloud", "wipey", "group", "checkbox", "text", "feature",
    "nearbyele", "dd", "sun", "advanced_gallery", "gallery", "map", "confetti",
    "shape", "video", "countdown", "rain", "socialdisplay", "snow", "waterbubble",
    "image", "smoke", "nightstar", "textbox", "form",
]

# Ad field -> sheet column header
COLUMN_MAP = {
    "account": "account",
    "brand": "brand",
    "industry": "industry",
    "campaign": "campaign",
    "creative_id": "creative_id",
    "creative_name": "creative_name",
    "device": "device",
    "format": "format",
    "template": "template",
    "ad_link": "previewurl",
    "impressions": "impressions",
    "clicks": "clicks",
    "filtered_click": "filtered click",
    "engagement": "engagement",
    "first_impression_date": "first impression date",
    "universal_interaction_rate": "universal interaction rate",
    "filterctr": "filterctr",
}

Row = Mapping[str, str]


def _cell(row: Row, column: str) -> str:
    value = row.get(column)
    return str(value) if value is not None else ""


def feature_label(column: str) -> str:
    """Display label for a feature column (first underscore becomes a space)."""
    return column.replace("_", " ", 1)


def active_features(row: Row) -> list[str]:
    """Feature labels whose column is marked ``yes`` (case-insensitive)."""
    return [
        feature_label(column)
        for column in FEATURE_COLUMNS
        if _cell(row, column).strip().lower() == "yes"
    ]


def build_thumbnail(screenshot_path: str, base_url: str = IMAGE_BASE_URL) -> str:
    return f"{base_url}{screenshot_path}" if screenshot_path else ""


def build_format_lookup(format_rows: Sequence[Row]) -> dict[str, FormatInfo]:
    """Index format rows by format name. Later rows win on duplicates."""
    lookup: dict[str, FormatInfo] = {}
    for row in format_rows:
        name = _cell(row, "format")
        if not name:
            continue
        lookup[name] = FormatInfo(
            description=_cell(row, "description"),
            specs=_cell(row, "specs"),
        )
    return lookup


def build_ad(
    row: Row,
    ad_id: int,
    format_lookup: Mapping[str, FormatInfo],
    image_base_url: str = IMAGE_BASE_URL,
) -> Ad:
    """
    Map one ad sheet row to a fully materialized Ad.

    Args:
        row: Column header -> cell value
        ad_id: Position-derived id for this snapshot
        format_lookup: Format name -> FormatInfo
        image_base_url: Prefix for the screenshot path

    Returns:
        Ad with format description/specs merged in (empty if the format
        has no lookup entry)
    """
    values = {field: _cell(row, column) for field, column in COLUMN_MAP.items()}
    format_info = format_lookup.get(values["format"]) or FormatInfo()

    return Ad(
        id=ad_id,
        format_description=format_info.description,
        specs=format_info.specs,
        features=",".join(active_features(row)),
        thumbnail=build_thumbnail(_cell(row, "screenshot_path"), image_base_url),
        **values,
    )


def build_snapshot(
    ad_rows: Sequence[Row],
    format_rows: Sequence[Row],
    image_base_url: str = IMAGE_BASE_URL,
) -> list[Ad]:
    """
    Build a catalog snapshot from raw sheet rows.

    Ids are assigned 1..N in row order.
    """
    format_lookup = build_format_lookup(format_rows)
    ads = [
        build_ad(row, index + 1, format_lookup, image_base_url)
        for index, row in enumerate(ad_rows)
    ]
    logger.debug(f"Built {len(ads)} ads ({len(format_lookup)} formats in lookup)")
    return ads
