"""
Pydantic models for the ad catalog.

An Ad is one row of the campaign spreadsheet after column mapping. The
model keeps the external field names used by the catalog JSON
(``adLink``, ``featureFlags``, ``formatDescription``) as aliases so that
snapshots round-trip through the cache unchanged.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def split_features(features: str) -> list[str]:
    """Comma-split a feature string, dropping empty tokens."""
    return [token for token in features.split(",") if token]


class FormatInfo(BaseModel):
    """Per-format description and specs link from the format lookup sheet."""
    description: str = ""
    specs: str = ""


class Ad(BaseModel):
    """
    A single campaign ad in the catalog.

    ``id`` is assigned by ingestion order and is only unique within one
    snapshot; a later refresh may assign a different id to the same row.

    ``feature_flags`` is always derived from ``features`` so the two can
    never disagree, whatever the caller passes in.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int
    account: str = ""
    brand: str = ""
    industry: str = ""
    campaign: str = ""
    creative_id: str = ""
    creative_name: str = ""
    device: str = ""
    format: str = ""
    format_description: Optional[str] = Field(default=None, alias="formatDescription")
    specs: Optional[str] = None
    template: str = ""
    ad_link: str = Field(default="", alias="adLink")

    # Metrics are opaque strings straight from the sheet
    impressions: str = ""
    clicks: str = ""
    filtered_click: str = ""
    engagement: str = ""
    first_impression_date: str = ""
    universal_interaction_rate: str = ""
    filterctr: str = ""

    features: str = ""
    thumbnail: str = ""
    feature_flags: list[str] = Field(default_factory=list, alias="featureFlags")

    @model_validator(mode="before")
    @classmethod
    def derive_feature_flags(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data.pop("featureFlags", None)
            data["feature_flags"] = split_features(data.get("features") or "")
        return data

    def to_public(self) -> dict:
        """Serialize with the external (catalog JSON) field names."""
        return self.model_dump(by_alias=True)


# Attributes copied into each vector record, in schema order
VECTOR_ATTRIBUTES = (
    "account",
    "brand",
    "industry",
    "campaign",
    "creative_id",
    "creative_name",
    "device",
    "format",
    "template",
    "ad_link",
    "features",
    "thumbnail",
)


def ad_from_vector_attributes(ad_id: int, attributes: dict[str, str]) -> Ad:
    """Rebuild an Ad view from the attribute copy held by the vector index."""
    values = {name: attributes.get(name, "") or "" for name in VECTOR_ATTRIBUTES}
    return Ad(id=ad_id, **values)
