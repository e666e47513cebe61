"""
Records passed between the resolution components.

All records are frozen: a match is never edited after the ranker creates it.
A user picking a different catalog entry produces a separate selection
(see service.auto_selections / build_import_plan), not a mutated match.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from .config import (
    AUTO_SELECT_THRESHOLD,
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    HIGH_CONFIDENCE_THRESHOLD,
    MATCH_STATUS_LEARNED,
    MATCH_STATUS_MATCHED,
    MATCH_STATUS_NO_MATCH,
    MATCH_STATUS_REVIEW,
    MEDIUM_CONFIDENCE_THRESHOLD,
)


def _clean_str(value: Any) -> str:
    """str() a spreadsheet/DB cell, mapping None and NaN to ''."""
    if value is None:
        return ""
    if isinstance(value, float) and value != value:  # NaN
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class UploadedAssetRow:
    """One row of a user's free-text inventory upload."""

    asset_type: str
    brand: str = ""
    model: str = ""
    quantity: int = 0
    row_index: int = 0

    @property
    def is_valid(self) -> bool:
        """Rows without an asset type or with a non-positive quantity are skipped."""
        return bool(self.asset_type and self.asset_type.strip()) and self.quantity > 0


@dataclass(frozen=True)
class CanonicalAssetRecord:
    """One entry of the industry standard asset catalog."""

    id: str
    asset_name: str
    category: str
    standard_code: str = ""
    description: str = ""

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "CanonicalAssetRecord":
        """Build from a catalog row (dict, pandas Series) using the store's column names."""
        return cls(
            id=_clean_str(row.get("id")),
            asset_name=_clean_str(row.get("asset_name")),
            category=_clean_str(row.get("category")),
            standard_code=_clean_str(row.get("standard_code")),
            description=_clean_str(row.get("description")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "standard_code": self.standard_code,
            "asset_name": self.asset_name,
            "category": self.category,
            "description": self.description,
        }


@dataclass(frozen=True)
class MaintenanceTask:
    task_name: str
    frequency: str = ""
    hours_per_task: float = 0.0
    task_order: int = 0


@dataclass(frozen=True)
class CanonicalAssetWithTasks:
    """A catalog record plus its planned-maintenance tasks, as the cost engine consumes it."""

    asset: CanonicalAssetRecord
    tasks: Tuple[MaintenanceTask, ...] = ()


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores for one (uploaded row, candidate) pair. Each in [0, 1]."""

    name_score: float = 0.0
    category_score: float = 0.0
    brand_score: float = 0.0
    model_score: float = 0.0
    standard_code_score: float = 0.0
    learning_boost: float = 0.0


@dataclass(frozen=True)
class MatchExplanation:
    """Why the suggested match won. `total_score` may exceed 1.0 when learning applies."""

    match_reason: str
    method: str  # 'learned' or 'scored'
    standard_code_match: bool = False
    name_score: float = 0.0
    category_score: float = 0.0
    brand_score: float = 0.0
    model_score: float = 0.0
    learning_boost: float = 0.0
    total_score: float = 0.0


@dataclass(frozen=True)
class AssetMatch:
    """Resolution result for one uploaded row."""

    row: UploadedAssetRow
    suggested_match: Optional[CanonicalAssetRecord]
    alternative_matches: Tuple[CanonicalAssetRecord, ...] = ()
    confidence: int = 0
    explanation: Optional[MatchExplanation] = None
    score_breakdown: Optional[ScoreBreakdown] = None

    @property
    def suggested_id(self) -> Optional[str]:
        """Catalog id for the cost engine; None means unmatched, resolve manually."""
        return self.suggested_match.id if self.suggested_match is not None else None

    @property
    def status(self) -> str:
        if self.suggested_match is None:
            return MATCH_STATUS_NO_MATCH
        if self.explanation is not None and self.explanation.method == "learned":
            return MATCH_STATUS_LEARNED
        if self.confidence >= AUTO_SELECT_THRESHOLD:
            return MATCH_STATUS_MATCHED
        return MATCH_STATUS_REVIEW

    @property
    def confidence_tier(self) -> str:
        if self.confidence >= HIGH_CONFIDENCE_THRESHOLD:
            return CONFIDENCE_HIGH
        if self.confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
            return CONFIDENCE_MEDIUM
        return CONFIDENCE_LOW


@dataclass(frozen=True)
class LearningCorrection:
    """A human-confirmed mapping from uploaded text to a catalog id."""

    uploaded_text: str
    normalized_text: str
    corrected_asset_id: str
    frequency: int
    last_used: datetime


@dataclass(frozen=True)
class CacheEntry:
    results: Tuple[AssetMatch, ...]
    timestamp: float


@dataclass(frozen=True)
class BatchResolution:
    """A resolved upload: matches for the valid rows plus how many rows were skipped."""

    matches: Tuple[AssetMatch, ...]
    skipped_rows: int = 0
    from_cache: bool = False


@dataclass(frozen=True)
class ImportLine:
    """One selected catalog asset with the uploaded quantity aggregated onto it."""

    asset: CanonicalAssetWithTasks
    quantity: int
    row_indices: Tuple[int, ...] = field(default_factory=tuple)
    low_confidence_rows: Tuple[int, ...] = field(default_factory=tuple)
