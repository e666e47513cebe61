"""Facilities-management asset identity resolution: free-text uploads to canonical catalog entries."""

from .cache import MatchCache, batch_cache_key
from .errors import AssetMatcherError, CatalogLoadError, CorrectionRecordError
from .learning import LearningStore, recency_factor
from .matcher import is_category_compatible, get_candidate_assets, match_asset, match_assets
from .models import (
    AssetMatch,
    BatchResolution,
    CanonicalAssetRecord,
    CanonicalAssetWithTasks,
    ImportLine,
    LearningCorrection,
    MaintenanceTask,
    MatchExplanation,
    ScoreBreakdown,
    UploadedAssetRow,
)
from .normalizer import expand_abbreviations, normalize_asset_text
from .service import AssetResolutionService, auto_selections
from .similarity import calculate_similarity
from .stores import (
    InMemoryCatalogStore,
    InMemoryCorrectionStore,
    JsonCorrectionStore,
    ParquetCatalogStore,
)

__version__ = "0.1.0"
