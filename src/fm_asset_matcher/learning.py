"""
Per-organization memory of human match corrections.

When a reviewer teaches the engine that "PACKGE UNIT" means catalog entry X,
the correction is persisted and mirrored here. Future scoring of X for the
same (or token-equivalent) text receives an additive boost that decays
linearly to zero over the decay window. Records are never deleted; an old
correction simply stops having any effect.

Lookup order for a given uploaded text:
    1. exact key on the normalized text
    2. exact key on the raw lower-cased text
    3. fuzzy: a stored correction whose token set is a subset/superset of
       the uploaded text's token set
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .config import (
    LEARNING_BOOST_MAX,
    LEARNING_DECAY_DAYS,
    LEARNING_LOAD_LIMIT,
    LEARNING_MIN_FREQUENCY,
)
from .models import LearningCorrection
from .normalizer import normalize_asset_text, significant_tokens

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # Naive timestamps from storage are taken to be UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def recency_factor(now: datetime, last_used: datetime, decay_days: float = LEARNING_DECAY_DAYS) -> float:
    """
    Linear decay of a correction's influence: 1.0 when just used, 0.0 once
    `decay_days` have passed. Timestamps in the future count as fresh.
    """
    if decay_days <= 0:
        return 0.0
    days = (_as_utc(now) - _as_utc(last_used)).total_seconds() / SECONDS_PER_DAY
    if days > decay_days:
        return 0.0
    return min(1.0, max(0.0, 1.0 - days / decay_days))


def learning_key(text: str) -> str:
    return normalize_asset_text(text).lower().strip()


def _token_subset_match(uploaded_tokens: set, learned_key: str) -> bool:
    learned_tokens = significant_tokens(learned_key)
    if not uploaded_tokens or not learned_tokens:
        return False
    return uploaded_tokens <= learned_tokens or learned_tokens <= uploaded_tokens


class LearningStore:
    """
    In-memory mirror of an organization's corrections.

    Each organization's lookup is swapped in whole on every write
    (copy-on-write), so scoring threads read without taking the lock and
    always see either the old or the new mapping.
    """

    def __init__(
        self,
        correction_store,
        decay_days: float = LEARNING_DECAY_DAYS,
        load_limit: int = LEARNING_LOAD_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.correction_store = correction_store
        self.decay_days = decay_days
        self.load_limit = load_limit
        self.clock = clock or utc_now
        self._lock = threading.Lock()
        self._by_org: Dict[str, Dict[str, LearningCorrection]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_corrections(self, organization_id: str, corrections: Iterable[LearningCorrection]) -> int:
        ordered = sorted(
            (c for c in corrections if c.frequency >= LEARNING_MIN_FREQUENCY),
            key=lambda c: c.frequency,
            reverse=True,
        )[:self.load_limit]

        lookup: Dict[str, LearningCorrection] = {}
        for correction in ordered:
            key = (correction.normalized_text or normalize_asset_text(correction.uploaded_text)).lower().strip()
            # Highest frequency wins for a key
            if key and key not in lookup:
                lookup[key] = correction

        with self._lock:
            self._by_org[organization_id] = lookup
        logger.debug("Loaded %d learned corrections for organization %s", len(lookup), organization_id)
        return len(lookup)

    def is_loaded(self, organization_id: str) -> bool:
        return organization_id in self._by_org

    def clear(self, organization_id: Optional[str] = None) -> None:
        with self._lock:
            if organization_id is None:
                self._by_org.clear()
            else:
                self._by_org.pop(organization_id, None)

    def corrections(self, organization_id: str) -> List[LearningCorrection]:
        return list(self._by_org.get(organization_id, {}).values())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_correction(self, organization_id: str, uploaded_text: str, corrected_asset_id: str) -> LearningCorrection:
        """
        Persist a correction, then mirror it.

        The mirror is only touched after the store call returns, so a failed
        write leaves the in-memory state exactly as it was.
        """
        normalized = normalize_asset_text(uploaded_text)
        stored = self.correction_store.upsert_correction(
            organization_id, uploaded_text, normalized, corrected_asset_id,
        )
        key = (stored.normalized_text or normalized).lower().strip()
        with self._lock:
            updated = dict(self._by_org.get(organization_id, {}))
            updated[key] = stored
            self._by_org[organization_id] = updated
        logger.info(
            "Recorded correction %r -> %s (frequency %d)",
            uploaded_text, corrected_asset_id, stored.frequency,
            extra={'organization_id': organization_id},
        )
        return stored

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _exact(self, lookup: Dict[str, LearningCorrection], uploaded_text: str) -> Optional[LearningCorrection]:
        return lookup.get(learning_key(uploaded_text)) or lookup.get(uploaded_text.lower().strip())

    def boost(self, organization_id: Optional[str], uploaded_text: str, asset_id: str) -> float:
        """Additive score in [0, LEARNING_BOOST_MAX] for scoring `asset_id` against this text."""
        if not organization_id or not uploaded_text:
            return 0.0
        lookup = self._by_org.get(organization_id)
        if not lookup:
            return 0.0

        correction = self._exact(lookup, uploaded_text)
        if correction is None:
            uploaded_tokens = significant_tokens(learning_key(uploaded_text))
            for key, candidate in lookup.items():
                if candidate.corrected_asset_id != asset_id:
                    continue
                if _token_subset_match(uploaded_tokens, key):
                    correction = candidate
                    break

        if correction is None or correction.corrected_asset_id != asset_id:
            return 0.0
        return LEARNING_BOOST_MAX * recency_factor(self.clock(), correction.last_used, self.decay_days)

    def get_learned_asset_id(self, organization_id: Optional[str], uploaded_text: str) -> Optional[str]:
        """
        The single strongest live correction for this text, or None.

        An exact hit that has decayed returns None rather than falling back
        to fuzzy candidates. Among fuzzy candidates the highest frequency
        wins, then the most recently used.
        """
        if not organization_id or not uploaded_text:
            return None
        lookup = self._by_org.get(organization_id)
        if not lookup:
            return None
        now = self.clock()

        correction = self._exact(lookup, uploaded_text)
        if correction is not None:
            if recency_factor(now, correction.last_used, self.decay_days) <= 0.0:
                return None
            return correction.corrected_asset_id

        uploaded_tokens = significant_tokens(learning_key(uploaded_text))
        best: Optional[LearningCorrection] = None
        for key, candidate in lookup.items():
            if recency_factor(now, candidate.last_used, self.decay_days) <= 0.0:
                continue
            if not _token_subset_match(uploaded_tokens, key):
                continue
            if best is None or (candidate.frequency, _as_utc(candidate.last_used)) > (best.frequency, _as_utc(best.last_used)):
                best = candidate
        return best.corrected_asset_id if best is not None else None
