"""
FAISS Index Manager for ad similarity search.

Holds one flat inner-product index over normalized ad embeddings (inner
product of unit vectors = cosine similarity) plus the attribute copy of
every ad, keyed by ad id.

Each rebuild produces a new *generation*:

    index_dir/
        schema.json          dimension, metric, attribute fields, model
        CURRENT              name of the active generation directory
        gen-000007/
            vectors.f32      raw little-endian float32, N x dimension
            records.json     [{"id": ..., "attributes": {...}}, ...]

The generation directory is fully written before CURRENT is replaced
(os.replace), and the in-memory generation is swapped under a lock, so a
query sees either the old or the new generation, never a mix.

Example:
    manager = AdIndexManager(index_dir=Path("data/index"), generator=generator)
    manager.ensure_schema()
    manager.rebuild(ads)
    hits = manager.query(generator.embed("car launch"), limit=20)
"""

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Sequence

import numpy as np

from ..models import VECTOR_ATTRIBUTES
from .generator import ModelUnavailable
from .models import VectorHit

if TYPE_CHECKING:
    from ..models import Ad
    from .generator import EmbeddingGenerator

logger = logging.getLogger(__name__)

VECTOR_DTYPE = np.dtype("<f4")


class IndexUnavailable(Exception):
    """Raised on any schema, rebuild or query failure of the vector index."""
    pass


def encode_vectors(embeddings: np.ndarray) -> bytes:
    """Serialize a vector matrix as raw little-endian float32."""
    return np.ascontiguousarray(embeddings, dtype=VECTOR_DTYPE).tobytes()


def decode_vectors(payload: bytes, dimension: int) -> np.ndarray:
    """Inverse of encode_vectors; returns a native float32 matrix."""
    row_bytes = dimension * VECTOR_DTYPE.itemsize
    if len(payload) % row_bytes:
        raise ValueError(
            f"Vector payload of {len(payload)} bytes is not a multiple of {row_bytes}"
        )
    matrix = np.frombuffer(payload, dtype=VECTOR_DTYPE).reshape(-1, dimension)
    return matrix.astype(np.float32)


class _Generation:
    """An immutable, fully built index generation."""

    def __init__(
        self,
        number: int,
        index,
        ids: list[int],
        attributes: list[dict[str, str]],
    ):
        self.number = number
        self.index = index
        self.ids = ids
        self.attributes = attributes

    @property
    def size(self) -> int:
        return len(self.ids)


class AdIndexManager:
    """
    Manages the FAISS vector index for the ad catalog.

    The manager handles:
    - Schema creation and compatibility checking
    - Full rebuilds into a new generation with atomic activation
    - Nearest-neighbour queries by cosine distance
    - Persistence to/from disk
    """

    DIMENSION = 384
    METRIC = "cosine"
    GENERATION_PREFIX = "gen-"

    def __init__(
        self,
        index_dir: Path,
        generator: "EmbeddingGenerator",
        model_version: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        """
        Args:
            index_dir: Directory for schema and generation files
            generator: Embedding generator used by rebuild()
            model_version: Recorded in the schema; defaults to generator.model_name
            dimension: Vector dimension; defaults to generator.dimension
        """
        self.index_dir = Path(index_dir)
        self.generator = generator
        self.model_version = model_version or generator.model_name
        self.dimension = dimension or generator.dimension

        self._current: Optional[_Generation] = None
        self._swap_lock = threading.Lock()
        self._rebuild_lock = threading.Lock()
        self._schema_ready = False

    # =========================================================================
    # Schema
    # =========================================================================

    @property
    def schema_path(self) -> Path:
        return self.index_dir / "schema.json"

    @property
    def pointer_path(self) -> Path:
        return self.index_dir / "CURRENT"

    def _schema(self) -> dict:
        return {
            "dimension": self.dimension,
            "metric": self.METRIC,
            "fields": list(VECTOR_ATTRIBUTES),
            "model_version": self.model_version,
        }

    def ensure_schema(self) -> None:
        """
        Create the index definition if it does not exist yet.

        An existing compatible schema counts as success.

        Raises:
            IndexUnavailable: On I/O failure or if the stored schema was
                built for another dimension or model
        """
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)

            if self.schema_path.exists():
                existing = json.loads(self.schema_path.read_text())
                self._check_compatible(existing)
                logger.debug(f"Index schema already exists at {self.schema_path}")
            else:
                self._write_atomic(self.schema_path, json.dumps(self._schema(), indent=2))
                logger.info(f"Created index schema at {self.schema_path}")
        except (OSError, ValueError) as e:
            raise IndexUnavailable(f"Failed to ensure index schema: {e}") from e

        self._schema_ready = True

    def _check_compatible(self, schema: dict) -> None:
        if schema.get("dimension") != self.dimension:
            raise IndexUnavailable(
                f"Index dimension {schema.get('dimension')} doesn't match "
                f"expected {self.dimension}"
            )
        if schema.get("model_version") != self.model_version:
            raise IndexUnavailable(
                f"Index model version '{schema.get('model_version')}' doesn't match "
                f"current version '{self.model_version}'"
            )

    # =========================================================================
    # Build
    # =========================================================================

    def _build_faiss_index(self, embeddings: np.ndarray):
        import faiss

        index = faiss.IndexFlatIP(self.dimension)
        if len(embeddings):
            index.add(np.ascontiguousarray(embeddings, dtype=np.float32))
        return index

    def rebuild(
        self,
        snapshot: Sequence["Ad"],
        before_activate: Optional[Callable[[], None]] = None,
    ) -> int:
        """
        Replace the whole index with the ads of ``snapshot``.

        Embeds every ad, writes a new generation to disk, then activates it.
        On failure the previously active generation stays in place.

        Args:
            snapshot: Fully materialized ads
            before_activate: Called once the generation is on disk, right
                before it is activated; an exception from it discards the
                new generation and propagates unchanged

        Returns:
            Number of the newly active generation

        Raises:
            IndexUnavailable: If the index cannot be built or persisted
            ModelUnavailable: If the embedding model cannot be loaded
        """
        with self._rebuild_lock:
            if not self._schema_ready:
                self.ensure_schema()

            ids = [ad.id for ad in snapshot]
            if len(set(ids)) != len(ids):
                raise IndexUnavailable("Snapshot contains duplicate ad ids")

            attributes = [
                {name: getattr(ad, name) for name in VECTOR_ATTRIBUTES}
                for ad in snapshot
            ]

            logger.info(f"Building vector index for {len(ids)} ads")
            try:
                embeddings = self.generator.embed_ads(snapshot)
            except ModelUnavailable:
                raise
            except Exception as e:
                raise IndexUnavailable(f"Failed to embed snapshot: {e}") from e
            if embeddings.shape != (len(ids), self.dimension):
                raise IndexUnavailable(
                    f"Embedding matrix shape {embeddings.shape} doesn't match "
                    f"({len(ids)}, {self.dimension})"
                )

            number = self._next_generation_number()
            try:
                index = self._build_faiss_index(embeddings)
                self._write_generation(number, embeddings, ids, attributes)
            except IndexUnavailable:
                raise
            except Exception as e:
                self._discard_generation_dir(number)
                raise IndexUnavailable(f"Failed to build index generation {number}: {e}") from e

            if before_activate is not None:
                try:
                    before_activate()
                except BaseException:
                    self._discard_generation_dir(number)
                    raise

            generation = _Generation(number, index, ids, attributes)
            self._activate(generation)

            logger.info(f"Stored vectors for {generation.size} ads (generation {number})")
            return number

    def _next_generation_number(self) -> int:
        numbers = [0]
        if self._current is not None:
            numbers.append(self._current.number)
        try:
            if self.index_dir.exists():
                numbers.extend(
                    n for n in (self._parse_generation(p.name) for p in self.index_dir.iterdir())
                    if n is not None
                )
        except OSError as e:
            raise IndexUnavailable(f"Failed to list index generations: {e}") from e
        return max(numbers) + 1

    def _parse_generation(self, name: str) -> Optional[int]:
        if not name.startswith(self.GENERATION_PREFIX):
            return None
        suffix = name[len(self.GENERATION_PREFIX):]
        return int(suffix) if suffix.isdigit() else None

    def _generation_dir(self, number: int) -> Path:
        return self.index_dir / f"{self.GENERATION_PREFIX}{number:06d}"

    def _write_generation(
        self,
        number: int,
        embeddings: np.ndarray,
        ids: list[int],
        attributes: list[dict[str, str]],
    ) -> None:
        """Write a generation into a temp directory, then rename it into place."""
        final_dir = self._generation_dir(number)
        tmp_dir = final_dir.with_name(final_dir.name + ".tmp")
        shutil.rmtree(tmp_dir, ignore_errors=True)
        tmp_dir.mkdir(parents=True)

        (tmp_dir / "vectors.f32").write_bytes(encode_vectors(embeddings))
        records = [{"id": ad_id, "attributes": attrs} for ad_id, attrs in zip(ids, attributes)]
        (tmp_dir / "records.json").write_text(json.dumps(records))

        os.replace(tmp_dir, final_dir)

    def _discard_generation_dir(self, number: int) -> None:
        final_dir = self._generation_dir(number)
        for path in (final_dir, final_dir.with_name(final_dir.name + ".tmp")):
            shutil.rmtree(path, ignore_errors=True)

    def _activate(self, generation: _Generation) -> None:
        """Repoint CURRENT at ``generation`` and swap it in."""
        try:
            self._write_atomic(self.pointer_path, self._generation_dir(generation.number).name)
        except OSError as e:
            self._discard_generation_dir(generation.number)
            raise IndexUnavailable(f"Failed to activate generation {generation.number}: {e}") from e

        with self._swap_lock:
            self._current = generation

        self._prune_generations(keep=generation.number)

    def _prune_generations(self, keep: int) -> None:
        """Remove every generation directory except ``keep``. Failures only log."""
        try:
            paths = list(self.index_dir.iterdir())
        except OSError as e:
            logger.warning(f"Failed to list old index generations in {self.index_dir}: {e}")
            return

        for path in paths:
            number = self._parse_generation(path.name.removesuffix(".tmp"))
            if number is not None and number != keep:
                try:
                    shutil.rmtree(path)
                except OSError as e:
                    logger.warning(f"Failed to remove old index generation {path}: {e}")

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(text)
        os.replace(tmp, path)

    # =========================================================================
    # Query
    # =========================================================================

    def query(self, query_vector: np.ndarray, limit: int = 20) -> list[VectorHit]:
        """
        Find the ads nearest to ``query_vector``.

        Args:
            query_vector: Normalized embedding of shape (dimension,)
            limit: Maximum number of hits

        Returns:
            Hits sorted by cosine distance ascending; empty if the index
            holds no records

        Raises:
            IndexUnavailable: On a malformed query vector or engine failure
        """
        with self._swap_lock:
            generation = self._current

        if generation is None or generation.size == 0 or limit <= 0:
            return []

        vector = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.dimension:
            raise IndexUnavailable(
                f"Query vector has dimension {vector.shape[0]}, expected {self.dimension}"
            )

        k = min(limit, generation.size)
        try:
            similarities, indices = generation.index.search(
                np.ascontiguousarray(vector.reshape(1, -1)), k
            )
        except Exception as e:
            raise IndexUnavailable(f"Vector query failed: {e}") from e

        hits = []
        for sim, idx in zip(similarities[0], indices[0]):
            if idx < 0:
                continue
            hits.append(
                VectorHit(
                    id=generation.ids[idx],
                    attributes=dict(generation.attributes[idx]),
                    distance=float(1.0 - sim),
                )
            )
        return hits

    # =========================================================================
    # Persistence
    # =========================================================================

    def exists(self) -> bool:
        """True if an active generation has been written to disk."""
        return self.pointer_path.exists()

    def load(self) -> bool:
        """
        Load the active generation from disk.

        Returns:
            True if a generation was loaded, False if none exists

        Raises:
            IndexUnavailable: If the files are unreadable, corrupt or were
                built for another model
        """
        if not self.exists():
            logger.warning(f"No index generation found in {self.index_dir}")
            return False

        self.ensure_schema()

        try:
            gen_dir = self.index_dir / self.pointer_path.read_text().strip()
            number = self._parse_generation(gen_dir.name)
            if number is None:
                raise ValueError(f"Invalid generation pointer {gen_dir.name!r}")

            embeddings = decode_vectors((gen_dir / "vectors.f32").read_bytes(), self.dimension)
            records = json.loads((gen_dir / "records.json").read_text())
            if len(records) != len(embeddings):
                raise ValueError(
                    f"{len(records)} records but {len(embeddings)} vectors in {gen_dir.name}"
                )

            index = self._build_faiss_index(embeddings)
        except IndexUnavailable:
            raise
        except Exception as e:
            raise IndexUnavailable(f"Failed to load index from {self.index_dir}: {e}") from e

        generation = _Generation(
            number,
            index,
            [int(r["id"]) for r in records],
            [r["attributes"] for r in records],
        )
        with self._swap_lock:
            self._current = generation

        logger.info(f"Loaded index generation {number} with {generation.size} vectors")
        return True

    # =========================================================================
    # Utilities
    # =========================================================================

    @property
    def generation(self) -> Optional[int]:
        current = self._current
        return current.number if current is not None else None

    @property
    def size(self) -> int:
        current = self._current
        return current.size if current is not None else 0

    def get_stats(self) -> dict:
        """
        Get index statistics.

        Returns:
            Dict with generation, vector count, dimension, model version
            and on-disk size
        """
        size_bytes = 0
        if self.index_dir.exists():
            size_bytes = sum(p.stat().st_size for p in self.index_dir.rglob("*") if p.is_file())

        return {
            "generation": self.generation,
            "vectors": self.size,
            "dimension": self.dimension,
            "metric": self.METRIC,
            "model_version": self.model_version,
            "index_dir": str(self.index_dir),
            "index_size_mb": size_bytes / (1024 * 1024),
        }
