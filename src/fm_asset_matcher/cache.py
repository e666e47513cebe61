"""Time- and size-bounded cache of whole-batch match results."""

import hashlib
import json
import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from .config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS
from .models import AssetMatch, CacheEntry, UploadedAssetRow

logger = logging.getLogger(__name__)


def batch_cache_key(rows: Iterable[UploadedAssetRow], organization_id: Optional[str] = None) -> str:
    """
    Deterministic signature of an upload batch.

    Built from each row's (asset type, brand, model) in order plus the
    organization, so the same sheet uploaded by two organizations never
    shares learning-dependent results.
    """
    payload = json.dumps(
        [organization_id or '', [[r.asset_type, r.brand, r.model] for r in rows]],
        ensure_ascii=False,
        separators=(',', ':'),
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


class MatchCache:
    """
    TTL is enforced on read (an expired entry is evicted and reported as a
    miss). On write, exceeding `max_entries` evicts the oldest entry.
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Tuple[AssetMatch, ...]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.clock() - entry.timestamp > self.ttl_seconds:
                del self._entries[key]
                logger.debug("Cache entry expired")
                return None
            return entry.results

    def put(self, key: str, results: Iterable[AssetMatch]) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(results=tuple(results), timestamp=self.clock())
            if len(self._entries) > self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].timestamp)
                del self._entries[oldest]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
