"""
Refresh orchestration: source -> record store -> vector index.

One refresh:
1. Fetch ad rows and format rows from the source
2. Build the snapshot (format lookup merged into each ad)
3. Write the snapshot to the record store
4. Ensure the index schema and rebuild the vector index
5. Return the snapshot

The cache is written before the index. If the rebuild fails, keyword
search over the cache is already up to date and only semantic search
lags one refresh behind.

Refreshes are single-flight: a call arriving while another refresh runs
waits for it and gets the same snapshot (or the same exception).

A refresh can be cancelled through a threading.Event. The event is
checked before the cache write and before the new index generation is
activated; once set, the refresh stops with RefreshTimeout and publishes
nothing further.
"""

import logging
import threading
import time
from concurrent.futures import Future
from datetime import datetime
from typing import Optional

from .cache import RecordStore
from .embeddings.index_manager import AdIndexManager
from .embeddings.models import RefreshStats
from .ingest import IMAGE_BASE_URL, build_snapshot
from .models import Ad
from .sources import SourceProvider

logger = logging.getLogger(__name__)


class RefreshTimeout(Exception):
    """Raised when a refresh was cancelled before it could publish."""
    pass


def _check_cancelled(cancel: Optional[threading.Event], step: str) -> None:
    if cancel is not None and cancel.is_set():
        raise RefreshTimeout(f"Refresh cancelled before {step}")


class RefreshOrchestrator:
    """
    Builds and publishes catalog snapshots.

    Example:
        orchestrator = RefreshOrchestrator(source, store, index_manager)
        ads = orchestrator.refresh()
        print(orchestrator.last_stats.ads_total)
    """

    def __init__(
        self,
        source: SourceProvider,
        store: RecordStore,
        index_manager: AdIndexManager,
        cache_key: str = "ads_data",
        cache_ttl: int = 3600,
        image_base_url: str = IMAGE_BASE_URL,
    ):
        """
        Args:
            source: Provider of ad rows and format rows
            store: Record store for snapshots
            index_manager: Vector index rebuilt on every refresh
            cache_key: Catalog key in the record store
            cache_ttl: Snapshot time-to-live in seconds
            image_base_url: Prefix for thumbnail paths
        """
        self.source = source
        self.store = store
        self.index_manager = index_manager
        self.cache_key = cache_key
        self.cache_ttl = cache_ttl
        self.image_base_url = image_base_url

        self._flight_lock = threading.Lock()
        self._inflight: Optional[Future] = None

        self.last_stats: Optional[RefreshStats] = None
        self.last_error: Optional[RefreshStats] = None

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None

    def refresh(self, cancel: Optional[threading.Event] = None) -> list[Ad]:
        """
        Run a refresh, or join the one already running.

        Args:
            cancel: Set by the caller to abandon the refresh. Only honoured
                when this call starts the refresh; a call that joins a
                running refresh waits for it regardless.

        Returns:
            The newly published snapshot

        Raises:
            ProviderError, CacheError, IndexUnavailable, ModelUnavailable:
                whatever step failed; nothing after that step ran
            RefreshTimeout: ``cancel`` was set before the cache write or
                before index activation
        """
        with self._flight_lock:
            flight = self._inflight
            leader = flight is None
            if leader:
                flight = self._inflight = Future()

        if not leader:
            logger.info("Refresh already in progress, waiting for its result")
            return flight.result()

        try:
            snapshot = self._run(cancel)
        except BaseException as e:
            flight.set_exception(e)
            raise
        else:
            flight.set_result(snapshot)
            return snapshot
        finally:
            with self._flight_lock:
                self._inflight = None

    def _run(self, cancel: Optional[threading.Event] = None) -> list[Ad]:
        stats = RefreshStats(started_at=datetime.now())
        try:
            logger.info("Fetching ads from source...")
            start = time.time()
            rows = self.source.fetch()
            snapshot = build_snapshot(rows.ad_rows, rows.format_rows, self.image_base_url)
            stats.ads_total = len(snapshot)
            stats.fetch_seconds = time.time() - start

            _check_cancelled(cancel, "cache write")
            start = time.time()
            self.store.put(self.cache_key, snapshot, self.cache_ttl)
            stats.cache_seconds = time.time() - start

            start = time.time()
            self.index_manager.ensure_schema()
            stats.generation = self.index_manager.rebuild(
                snapshot,
                before_activate=lambda: _check_cancelled(cancel, "index activation"),
            )
            stats.index_seconds = time.time() - start
        except Exception as e:
            stats.error = f"{type(e).__name__}: {e}"
            stats.completed_at = datetime.now()
            self.last_error = stats
            logger.error(f"Refresh failed: {stats.error}")
            raise

        stats.completed_at = datetime.now()
        self.last_stats = stats
        logger.info(
            f"Refresh complete: {stats.ads_total} ads, generation {stats.generation} "
            f"in {stats.elapsed_seconds:.1f}s"
        )
        return snapshot
