"""
Resolution service: the one object the UI and the cost engine talk to.

    service = AssetResolutionService(catalog_store, correction_store)
    resolution = service.resolve_batch(rows, organization_id='org-1')
    for match in resolution.matches:
        match.suggested_id   # None means unmatched, resolve manually

The only blocking work happens at the two persistence boundaries (catalog
reads, correction read/write). Those calls run on a small executor owned by
the service and are awaited with a timeout.
"""

import dataclasses
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .cache import MatchCache, batch_cache_key
from .config import AUTO_SELECT_THRESHOLD, MEDIUM_CONFIDENCE_THRESHOLD, ServiceSettings
from .errors import CatalogLoadError, CorrectionRecordError
from .learning import LearningStore
from .matcher import match_asset, match_assets
from .models import (
    AssetMatch,
    BatchResolution,
    CanonicalAssetRecord,
    ImportLine,
    LearningCorrection,
    UploadedAssetRow,
)

logger = logging.getLogger(__name__)


def partition_rows(rows: Sequence[UploadedAssetRow]) -> Tuple[List[UploadedAssetRow], int]:
    """Split out rows with no asset type or a non-positive quantity. Returns (valid, skipped count)."""
    valid = [r for r in rows if r.is_valid]
    return valid, len(rows) - len(valid)


def auto_selections(matches: Sequence[AssetMatch], threshold: int = AUTO_SELECT_THRESHOLD) -> Dict[int, str]:
    """Initial row_index -> asset id selection for suggestions confident enough to pre-select."""
    return {
        m.row.row_index: m.suggested_match.id
        for m in matches
        if m.suggested_match is not None and m.confidence >= threshold
    }


class AssetResolutionService:
    """
    Orchestrates learning load, per-row resolution and the batch cache.

    The learning store and the cache are owned by the service instance
    (constructed per process, closed on shutdown) and can be injected for
    tests.
    """

    def __init__(
        self,
        catalog_store,
        correction_store,
        learning_store: Optional[LearningStore] = None,
        cache: Optional[MatchCache] = None,
        settings: Optional[ServiceSettings] = None,
    ):
        self.settings = settings or ServiceSettings()
        self.catalog_store = catalog_store
        self.correction_store = correction_store
        self.learning = learning_store if learning_store is not None else LearningStore(
            correction_store,
            decay_days=self.settings.learning_decay_days,
            load_limit=self.settings.learning_load_limit,
        )
        self.cache = cache if cache is not None else MatchCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_entries=self.settings.cache_max_entries,
        )
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='fm-matcher-io')

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _call_with_timeout(self, fn: Callable, *args, on_late_success: Optional[Callable[[], None]] = None):
        """
        Run a persistence call on the executor and wait for it.

        If the call times out but is already running, `on_late_success` runs
        once it finishes without raising.
        """
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.settings.persistence_timeout)
        except FutureTimeoutError:
            if not future.cancel() and on_late_success is not None:
                def _finished(done):
                    if done.exception() is None:
                        on_late_success()
                future.add_done_callback(_finished)
            raise TimeoutError(
                f"{getattr(fn, '__name__', 'persistence call')} timed out after "
                f"{self.settings.persistence_timeout:g}s"
            )

    # ------------------------------------------------------------------
    # Persistence boundaries
    # ------------------------------------------------------------------

    def load_catalog(self) -> List[CanonicalAssetRecord]:
        """Fetch the catalog. Any failure, including a timeout, is fatal for the batch."""
        try:
            catalog = self._call_with_timeout(self.catalog_store.fetch_catalog)
        except Exception as exc:
            logger.error("Catalog load failed: %s", exc)
            raise CatalogLoadError(f"Could not load the asset catalog: {exc}") from exc
        return list(catalog)

    def load_learning(self, organization_id: Optional[str]) -> int:
        """
        (Re)load the organization's corrections into the learning mirror.

        On failure the organization continues with an empty learning context.
        Returns the number of corrections loaded.
        """
        if not organization_id:
            return 0
        try:
            corrections = self._call_with_timeout(
                self.correction_store.load_corrections, organization_id, self.settings.learning_load_limit,
            )
        except Exception as exc:
            logger.warning(
                "Could not load learned corrections, matching without history: %s", exc,
                extra={'organization_id': organization_id},
            )
            self.learning.set_corrections(organization_id, [])
            return 0
        return self.learning.set_corrections(organization_id, corrections)

    def categories(self) -> List[str]:
        try:
            categories = self._call_with_timeout(self.catalog_store.fetch_categories)
        except Exception as exc:
            logger.error("Category load failed: %s", exc)
            raise CatalogLoadError(f"Could not load asset categories: {exc}") from exc
        return list(categories)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def match_one(
        self,
        row: UploadedAssetRow,
        catalog: Optional[Sequence[CanonicalAssetRecord]] = None,
        organization_id: Optional[str] = None,
    ) -> AssetMatch:
        """Resolve a single row. Not cached."""
        if organization_id and not self.learning.is_loaded(organization_id):
            self.load_learning(organization_id)
        if catalog is None:
            catalog = self.load_catalog()
        return match_asset(row, catalog, self.learning, organization_id, self.settings.max_alternatives)

    def resolve_batch(
        self,
        rows: Sequence[UploadedAssetRow],
        catalog: Optional[Sequence[CanonicalAssetRecord]] = None,
        organization_id: Optional[str] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> BatchResolution:
        """
        Resolve an upload batch, serving identical repeat requests from the cache.

        Invalid rows are dropped first and counted in `skipped_rows`. A cache
        hit touches neither store. On a miss the organization's learning is
        reloaded and the catalog fetched unless one was passed in.

        Raises:
            CatalogLoadError: the catalog could not be loaded
        """
        valid, skipped = partition_rows(rows)
        if skipped:
            logger.warning("Skipped %d uploaded rows with no asset type or quantity", skipped)

        key = batch_cache_key(valid, organization_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Batch cache hit (%d rows)", len(valid))
            # The key ignores quantity, so re-attach the rows of this request
            matches = tuple(
                m if m.row == row else dataclasses.replace(m, row=row)
                for m, row in zip(cached, valid)
            )
            return BatchResolution(matches=matches, skipped_rows=skipped, from_cache=True)

        logger.debug("Batch cache miss (%d rows)", len(valid))
        start = time.perf_counter()
        self.load_learning(organization_id)
        if catalog is None:
            catalog = self.load_catalog()

        matches = tuple(match_assets(
            valid, catalog, self.learning, organization_id,
            self.settings.max_alternatives, progress_callback,
        ))
        self.cache.put(key, matches)

        matched = sum(1 for m in matches if m.suggested_match is not None)
        logger.info(
            "Resolved %d rows (%d matched, %d unmatched)", len(matches), matched, len(matches) - matched,
            extra={
                'organization_id': organization_id,
                'duration_ms': round((time.perf_counter() - start) * 1000, 1),
            },
        )
        return BatchResolution(matches=matches, skipped_rows=skipped)

    def match_batch(
        self,
        rows: Sequence[UploadedAssetRow],
        catalog: Optional[Sequence[CanonicalAssetRecord]] = None,
        organization_id: Optional[str] = None,
    ) -> List[AssetMatch]:
        return list(self.resolve_batch(rows, catalog, organization_id).matches)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_correction(self, organization_id: str, uploaded_text: str, asset_id: str) -> LearningCorrection:
        """
        Teach the engine that `uploaded_text` means catalog entry `asset_id`.

        On success the batch cache is cleared so the next resolution sees the
        new learning. On failure nothing in memory changes and
        CorrectionRecordError is raised; the caller may retry. A write that
        timed out but lands later still updates learning and clears the cache,
        so a retry after a timeout counts the correction twice.
        """
        if not organization_id or not uploaded_text or not uploaded_text.strip() or not asset_id:
            raise ValueError("organization_id, uploaded_text and asset_id are required")
        try:
            correction = self._call_with_timeout(
                self.learning.record_correction, organization_id, uploaded_text, asset_id,
                on_late_success=self.clear_cache,
            )
        except Exception as exc:
            logger.error(
                "Failed to record correction %r -> %s: %s", uploaded_text, asset_id, exc,
                extra={'organization_id': organization_id},
            )
            raise CorrectionRecordError(f"Could not save the correction: {exc}") from exc
        self.clear_cache()
        return correction

    def clear_cache(self) -> None:
        self.cache.clear()

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def build_import_plan(
        self,
        matches: Sequence[AssetMatch],
        selections: Mapping[int, Optional[str]],
    ) -> List[ImportLine]:
        """
        Turn reviewed selections (row_index -> asset id) into import lines.

        Quantities of rows selecting the same asset are summed, and selected
        assets sharing category and asset name are merged into one line.
        Rows without a selection are left out. Rows whose match confidence is
        below the medium tier are listed on their line as low confidence.
        """
        by_row = {m.row.row_index: m for m in matches}
        chosen = [(by_row[idx], asset_id) for idx, asset_id in selections.items() if asset_id and idx in by_row]
        if not chosen:
            return []

        try:
            assets = self._call_with_timeout(self.catalog_store.fetch_by_ids, sorted({a for _, a in chosen}))
        except Exception as exc:
            logger.error("Selected asset lookup failed: %s", exc)
            raise CatalogLoadError(f"Could not load the selected assets: {exc}") from exc

        lines: Dict[Tuple[str, str], dict] = {}
        for match, asset_id in sorted(chosen, key=lambda item: item[0].row.row_index):
            selected = assets.get(asset_id)
            if selected is None:
                logger.warning("Selected asset %s is no longer in the catalog", asset_id)
                continue
            key = (selected.asset.category.lower(), selected.asset.asset_name.lower())
            line = lines.setdefault(key, {'asset': selected, 'quantity': 0, 'rows': [], 'low': []})
            line['quantity'] += match.row.quantity
            line['rows'].append(match.row.row_index)
            if match.confidence < MEDIUM_CONFIDENCE_THRESHOLD:
                line['low'].append(match.row.row_index)

        return [
            ImportLine(
                asset=line['asset'],
                quantity=line['quantity'],
                row_indices=tuple(line['rows']),
                low_confidence_rows=tuple(line['low']),
            )
            for line in lines.values()
        ]
