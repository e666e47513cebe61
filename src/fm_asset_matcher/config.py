"""
Tunables for the asset identity resolution engine.

Scoring weights and similarity blend weights were tuned against real,
messy facility inventories. Changing any of them changes ranking
behaviour and must be re-validated against the reference scenarios in
tests/test_service.py.
"""

import os
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Scoring weights (final score = weighted sum + learning boost)
# ---------------------------------------------------------------------------
WEIGHT_ASSET_NAME = 0.75     # Primary factor
WEIGHT_CATEGORY = 0.10
WEIGHT_BRAND = 0.05
WEIGHT_MODEL = 0.03
WEIGHT_STANDARD_CODE = 0.15

# Blend used when no short-circuit similarity strategy applies
BLEND_TOKEN_SET = 0.5
BLEND_TRIGRAM = 0.3
BLEND_LEVENSHTEIN = 0.2

SINGLE_WORD_SCORE = 0.92         # "Chiller" vs "Air Cooled Chiller"
SUBSTRING_FLOOR = 0.75
SUBSTRING_RATIO_FACTOR = 0.95
TOKEN_CONTAINMENT_DISCOUNT = 0.9
MIN_TOKEN_LENGTH = 3             # tokens of 1-2 chars are noise

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------
MIN_CONFIDENCE = 0.30            # candidates below this are discarded
AUTO_SELECT_THRESHOLD = 65       # percent; pre-select the suggestion at or above
HIGH_CONFIDENCE_THRESHOLD = 75   # percent
MEDIUM_CONFIDENCE_THRESHOLD = 50 # percent; below this an import is flagged
MAX_ALTERNATIVES = 14
PREFILTER_MIN_RATIO = 0.05       # keep filter only if it retains >= 5% of catalog
STANDARD_CODE_MIN_PARTIAL = 4    # code containing the text needs >= 4 chars of text

MATCH_STATUS_LEARNED = "LEARNED"          # short-circuited from a taught correction
MATCH_STATUS_MATCHED = "MATCHED"          # >= 65%, auto-selected
MATCH_STATUS_REVIEW = "REVIEW_REQUIRED"   # below auto-select, above floor
MATCH_STATUS_NO_MATCH = "NO_MATCH"        # nothing cleared the floor

CONFIDENCE_HIGH = "HIGH"
CONFIDENCE_MEDIUM = "MEDIUM"
CONFIDENCE_LOW = "LOW"

# Brand / model cells that carry no information
PLACEHOLDER_VALUES = frozenset({"", "NA", "N/A", "N.A", "NONE", "NAN", "-", "--", "NIL"})

# ---------------------------------------------------------------------------
# Learning store
# ---------------------------------------------------------------------------
LEARNING_BOOST_MAX = 0.70        # a fresh correction alone lifts a 30% candidate to 100%
LEARNING_DECAY_DAYS = 90
LEARNING_LOAD_LIMIT = 200
LEARNING_MIN_FREQUENCY = 1
LEARNING_REASON_THRESHOLD = 0.03

# ---------------------------------------------------------------------------
# Result cache / persistence
# ---------------------------------------------------------------------------
CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_ENTRIES = 50
PERSISTENCE_TIMEOUT_SECONDS = 10.0

DATA_DIR = os.getenv(
    "FM_MATCHER_DATA_DIR",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class ServiceSettings:
    """Runtime knobs for one AssetResolutionService instance."""

    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    cache_max_entries: int = CACHE_MAX_ENTRIES
    learning_decay_days: float = LEARNING_DECAY_DAYS
    learning_load_limit: int = LEARNING_LOAD_LIMIT
    persistence_timeout: float = PERSISTENCE_TIMEOUT_SECONDS
    max_alternatives: int = MAX_ALTERNATIVES

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """
        Build settings from FM_MATCHER_* environment variables.

        Unset variables fall back to the module defaults:
            FM_MATCHER_CACHE_TTL_SECONDS, FM_MATCHER_CACHE_MAX_ENTRIES,
            FM_MATCHER_LEARNING_DECAY_DAYS, FM_MATCHER_LEARNING_LOAD_LIMIT,
            FM_MATCHER_PERSISTENCE_TIMEOUT, FM_MATCHER_MAX_ALTERNATIVES
        """
        return cls(
            cache_ttl_seconds=_env_float("FM_MATCHER_CACHE_TTL_SECONDS", CACHE_TTL_SECONDS),
            cache_max_entries=int(_env_float("FM_MATCHER_CACHE_MAX_ENTRIES", CACHE_MAX_ENTRIES)),
            learning_decay_days=_env_float("FM_MATCHER_LEARNING_DECAY_DAYS", LEARNING_DECAY_DAYS),
            learning_load_limit=int(_env_float("FM_MATCHER_LEARNING_LOAD_LIMIT", LEARNING_LOAD_LIMIT)),
            persistence_timeout=_env_float("FM_MATCHER_PERSISTENCE_TIMEOUT", PERSISTENCE_TIMEOUT_SECONDS),
            max_alternatives=int(_env_float("FM_MATCHER_MAX_ALTERNATIVES", MAX_ALTERNATIVES)),
        )
