"""
Tests for AdIndexManager.

Tests cover:
- Schema creation and compatibility checks
- Rebuild into generations and atomic activation
- Nearest-neighbour queries
- Persistence (load from disk)
- Failure handling (previous generation stays active)
"""

import json
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from src.adsearch.embeddings.generator import ModelUnavailable, compose_ad_text
from src.adsearch.embeddings.index_manager import (
    AdIndexManager,
    IndexUnavailable,
    decode_vectors,
    encode_vectors,
)

from .conftest import FakeEmbeddingGenerator, requires_faiss
from .factories import generate_test_ad


# =============================================================================
# Vector encoding
# =============================================================================


class TestVectorEncoding:
    def test_little_endian_float32(self):
        payload = encode_vectors(np.array([[1.0, 2.0]], dtype=np.float32))
        assert payload == b"\x00\x00\x80\x3f\x00\x00\x00\x40"

    def test_decode_restores_matrix(self):
        matrix = np.arange(12, dtype=np.float32).reshape(3, 4)
        np.testing.assert_array_equal(decode_vectors(encode_vectors(matrix), 4), matrix)

    def test_decode_rejects_partial_rows(self):
        with pytest.raises(ValueError):
            decode_vectors(b"\x00" * 10, 4)

    def test_decode_empty(self):
        assert decode_vectors(b"", 384).shape == (0, 384)


# =============================================================================
# Schema
# =============================================================================


class TestSchema:
    def test_creates_schema(self, index_dir, fake_generator):
        manager = AdIndexManager(index_dir=index_dir, generator=fake_generator)
        manager.ensure_schema()

        schema = json.loads((index_dir / "schema.json").read_text())
        assert schema["dimension"] == 384
        assert schema["metric"] == "cosine"
        assert schema["model_version"] == "fake-minilm"
        assert "brand" in schema["fields"]

    def test_idempotent(self, index_manager):
        index_manager.ensure_schema()
        index_manager.ensure_schema()

    def test_dimension_mismatch(self, index_manager, index_dir):
        other = AdIndexManager(
            index_dir=index_dir,
            generator=FakeEmbeddingGenerator(dimension=128),
        )
        with pytest.raises(IndexUnavailable, match="dimension"):
            other.ensure_schema()

    def test_model_mismatch(self, index_manager, index_dir, fake_generator):
        other = AdIndexManager(
            index_dir=index_dir,
            generator=fake_generator,
            model_version="other-model",
        )
        with pytest.raises(IndexUnavailable, match="model version"):
            other.ensure_schema()

    def test_unwritable_dir(self, temp_dir, fake_generator):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")
        manager = AdIndexManager(index_dir=blocker / "index", generator=fake_generator)
        with pytest.raises(IndexUnavailable):
            manager.ensure_schema()


# =============================================================================
# Rebuild and query
# =============================================================================


@requires_faiss
class TestRebuildAndQuery:
    def test_query_before_rebuild_is_empty(self, index_manager, fake_generator):
        assert index_manager.query(fake_generator.embed("anything")) == []

    def test_rebuild_returns_generation(self, index_manager, sample_ads):
        assert index_manager.rebuild(sample_ads) == 1
        assert index_manager.generation == 1
        assert index_manager.size == len(sample_ads)

    def test_nearest_is_exact_text(self, index_manager, fake_generator, sample_ads):
        index_manager.rebuild(sample_ads)
        target = sample_ads[3]

        hits = index_manager.query(fake_generator.embed(compose_ad_text(target)), limit=3)

        assert hits[0].id == target.id
        assert hits[0].distance == pytest.approx(0.0, abs=1e-5)
        assert hits[0].attributes["brand"] == target.brand
        assert [h.distance for h in hits] == sorted(h.distance for h in hits)

    def test_limit(self, index_manager, fake_generator, sample_ads):
        index_manager.rebuild(sample_ads)
        vector = fake_generator.embed("automotive")
        assert len(index_manager.query(vector, limit=2)) == 2
        assert len(index_manager.query(vector, limit=100)) == len(sample_ads)
        assert index_manager.query(vector, limit=0) == []

    def test_wrong_dimension(self, index_manager, sample_ads):
        index_manager.rebuild(sample_ads)
        with pytest.raises(IndexUnavailable):
            index_manager.query(np.ones(10, dtype=np.float32))

    def test_empty_snapshot(self, index_manager, fake_generator):
        assert index_manager.rebuild([]) == 1
        assert index_manager.query(fake_generator.embed("x")) == []

    def test_duplicate_ids_rejected(self, index_manager):
        ads = [generate_test_ad(1), generate_test_ad(1, brand="Other")]
        with pytest.raises(IndexUnavailable, match="duplicate"):
            index_manager.rebuild(ads)

    def test_rebuild_replaces_contents(self, index_manager, fake_generator, sample_ads):
        index_manager.rebuild(sample_ads)
        replacement = [generate_test_ad(1, brand="Solo Brand")]

        assert index_manager.rebuild(replacement) == 2

        hits = index_manager.query(fake_generator.embed("anything"), limit=10)
        assert [h.attributes["brand"] for h in hits] == ["Solo Brand"]

    def test_old_generations_pruned(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        index_manager.rebuild(sample_ads)
        index_manager.rebuild(sample_ads)

        gens = sorted(p.name for p in index_dir.iterdir() if p.name.startswith("gen-"))
        assert gens == ["gen-000003"]
        assert (index_dir / "CURRENT").read_text() == "gen-000003"

    def test_failed_rebuild_keeps_previous_generation(
        self, index_manager, fake_generator, sample_ads
    ):
        index_manager.rebuild(sample_ads)

        with patch.object(
            AdIndexManager, "_write_generation", side_effect=OSError("disk full")
        ):
            with pytest.raises(IndexUnavailable, match="disk full"):
                index_manager.rebuild([generate_test_ad(1, brand="Never Indexed")])

        assert index_manager.generation == 1
        hits = index_manager.query(fake_generator.embed(compose_ad_text(sample_ads[0])))
        assert hits[0].id == sample_ads[0].id

    def test_embedding_shape_mismatch(self, index_manager, fake_generator, sample_ads):
        with patch.object(
            fake_generator, "embed_ads", return_value=np.zeros((1, 384), dtype=np.float32)
        ):
            with pytest.raises(IndexUnavailable, match="shape"):
                index_manager.rebuild(sample_ads)
        assert index_manager.generation is None

    def test_encoding_error_becomes_index_unavailable(
        self, index_manager, fake_generator, sample_ads
    ):
        with patch.object(
            fake_generator, "embed_ads", side_effect=RuntimeError("CUDA out of memory")
        ):
            with pytest.raises(IndexUnavailable, match="CUDA out of memory"):
                index_manager.rebuild(sample_ads)
        assert index_manager.generation is None

    def test_model_unavailable_passes_through(self, index_manager, fake_generator, sample_ads):
        with patch.object(fake_generator, "embed_ads", side_effect=ModelUnavailable("no model")):
            with pytest.raises(ModelUnavailable):
                index_manager.rebuild(sample_ads)

    def test_unlistable_index_dir(self, index_manager, sample_ads):
        with patch.object(Path, "iterdir", side_effect=OSError("permission denied")):
            with pytest.raises(IndexUnavailable, match="permission denied"):
                index_manager.rebuild(sample_ads)
        assert index_manager.generation is None

    def test_prune_failure_keeps_new_generation(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        real_iterdir = Path.iterdir
        calls = []

        def iterdir_failing_on_prune(path):
            calls.append(path)
            if len(calls) > 1:
                raise OSError("permission denied")
            return real_iterdir(path)

        with patch.object(Path, "iterdir", iterdir_failing_on_prune):
            assert index_manager.rebuild(sample_ads) == 2

        assert index_manager.generation == 2
        assert (index_dir / "CURRENT").read_text() == "gen-000002"
        assert (index_dir / "gen-000001").exists()

    def test_before_activate_failure_discards_generation(
        self, index_manager, index_dir, sample_ads
    ):
        index_manager.rebuild(sample_ads)

        def abort():
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError):
            index_manager.rebuild(sample_ads, before_activate=abort)

        assert index_manager.generation == 1
        assert not (index_dir / "gen-000002").exists()

    def test_rebuild_creates_schema_if_needed(self, index_dir, fake_generator, sample_ads):
        manager = AdIndexManager(index_dir=index_dir, generator=fake_generator)
        manager.rebuild(sample_ads)
        assert (index_dir / "schema.json").exists()


# =============================================================================
# Persistence
# =============================================================================


@requires_faiss
class TestPersistence:
    def test_load_without_generation(self, index_manager):
        assert index_manager.exists() is False
        assert index_manager.load() is False
        assert index_manager.generation is None

    def test_load_restores_generation(self, index_manager, index_dir, fake_generator, sample_ads):
        index_manager.rebuild(sample_ads)
        index_manager.rebuild(sample_ads)

        restored = AdIndexManager(index_dir=index_dir, generator=FakeEmbeddingGenerator())
        assert restored.load() is True
        assert restored.generation == 2
        assert restored.size == len(sample_ads)

        hits = restored.query(fake_generator.embed(compose_ad_text(sample_ads[2])), limit=1)
        assert hits[0].id == sample_ads[2].id
        assert hits[0].attributes == index_manager.query(
            fake_generator.embed(compose_ad_text(sample_ads[2])), limit=1
        )[0].attributes

    def test_next_generation_continues_after_load(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        restored = AdIndexManager(index_dir=index_dir, generator=FakeEmbeddingGenerator())
        restored.load()
        assert restored.rebuild(sample_ads) == 2

    def test_corrupt_vectors(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        (index_dir / "gen-000001" / "vectors.f32").write_bytes(b"\x00" * 7)

        restored = AdIndexManager(index_dir=index_dir, generator=FakeEmbeddingGenerator())
        with pytest.raises(IndexUnavailable):
            restored.load()

    def test_records_vectors_mismatch(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        records_path = index_dir / "gen-000001" / "records.json"
        records = json.loads(records_path.read_text())
        records_path.write_text(json.dumps(records[:-1]))

        restored = AdIndexManager(index_dir=index_dir, generator=FakeEmbeddingGenerator())
        with pytest.raises(IndexUnavailable, match="records"):
            restored.load()

    def test_bad_pointer(self, index_manager, index_dir, sample_ads):
        index_manager.rebuild(sample_ads)
        (index_dir / "CURRENT").write_text("something-else")

        restored = AdIndexManager(index_dir=index_dir, generator=FakeEmbeddingGenerator())
        with pytest.raises(IndexUnavailable):
            restored.load()

    def test_stats(self, index_manager, sample_ads):
        index_manager.rebuild(sample_ads)
        stats = index_manager.get_stats()
        assert stats["generation"] == 1
        assert stats["vectors"] == len(sample_ads)
        assert stats["dimension"] == 384
        assert stats["metric"] == "cosine"
        assert stats["index_size_mb"] > 0
