"""Tests for mapping sheet rows to Ad models."""

from src.adsearch.ingest import (
    IMAGE_BASE_URL,
    active_features,
    build_ad,
    build_format_lookup,
    build_snapshot,
    build_thumbnail,
    feature_label,
)
from src.adsearch.models import FormatInfo

from .factories import generate_ad_row, generate_format_rows


class TestFeatureLabels:
    def test_label_replaces_first_underscore_only(self):
        assert feature_label("feed_carousel") == "feed carousel"
        assert feature_label("advanced_gallery") == "advanced gallery"
        assert feature_label("video") == "video"

    def test_active_features_case_insensitive(self):
        row = generate_ad_row(features=[])
        row["video"] = "YES"
        row["gallery"] = " yes "
        row["map"] = "no"
        assert active_features(row) == ["gallery", "video"]

    def test_active_features_in_column_order(self):
        row = generate_ad_row(features=["video", "button", "feed_carousel"])
        assert active_features(row) == ["button", "feed carousel", "video"]

    def test_missing_feature_columns(self):
        assert active_features({"brand": "Nike"}) == []


class TestThumbnail:
    def test_prefixes_base_url(self):
        assert build_thumbnail("shots/1.png") == f"{IMAGE_BASE_URL}shots/1.png"

    def test_empty_path(self):
        assert build_thumbnail("") == ""

    def test_custom_base(self):
        assert build_thumbnail("a.png", "https://cdn/") == "https://cdn/a.png"


class TestFormatLookup:
    def test_lookup_by_name(self):
        lookup = build_format_lookup(generate_format_rows())
        assert lookup["Banner"].description == "Standard display banner"

    def test_later_rows_win(self):
        lookup = build_format_lookup([
            {"format": "Banner", "description": "old", "specs": ""},
            {"format": "Banner", "description": "new", "specs": "s"},
        ])
        assert lookup["Banner"] == FormatInfo(description="new", specs="s")

    def test_skips_rows_without_name(self):
        lookup = build_format_lookup([{"format": "", "description": "x"}])
        assert lookup == {}


class TestBuildAd:
    def test_column_mapping(self):
        row = generate_ad_row(brand="Nike", industry="Sportswear", format="Banner")
        lookup = build_format_lookup(generate_format_rows())

        ad = build_ad(row, 5, lookup)

        assert ad.id == 5
        assert ad.brand == "Nike"
        assert ad.ad_link == "https://preview.example.com/nike"
        assert ad.filtered_click == "310"
        assert ad.first_impression_date == "2024-03-01"
        assert ad.universal_interaction_rate == "2.8%"
        assert ad.format_description == "Standard display banner"
        assert ad.specs == "https://specs.example.com/banner"

    def test_unknown_format_gets_empty_lookup(self):
        row = generate_ad_row(format="Scratch Card")
        ad = build_ad(row, 1, {})
        assert ad.format_description == ""
        assert ad.specs == ""

    def test_features_and_flags(self):
        row = generate_ad_row(features=["video", "feed_carousel"])
        ad = build_ad(row, 1, {})
        assert ad.features == "feed carousel,video"
        assert ad.feature_flags == ["feed carousel", "video"]

    def test_missing_columns_become_empty(self):
        ad = build_ad({"brand": "Solo"}, 1, {})
        assert ad.brand == "Solo"
        assert ad.campaign == ""
        assert ad.thumbnail == ""
        assert ad.features == ""


class TestBuildSnapshot:
    def test_ids_follow_row_order(self, sample_rows):
        ad_rows, format_rows = sample_rows
        ads = build_snapshot(ad_rows, format_rows)

        assert [ad.id for ad in ads] == list(range(1, len(ad_rows) + 1))
        assert [ad.brand for ad in ads] == [row["brand"] for row in ad_rows]

    def test_thumbnail_uses_base_url(self, sample_rows):
        ad_rows, format_rows = sample_rows
        ads = build_snapshot(ad_rows, format_rows, image_base_url="https://img/")
        assert ads[0].thumbnail == "https://img/shots/1.png"

    def test_empty_rows(self):
        assert build_snapshot([], []) == []
