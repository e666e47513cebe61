"""
Core matching engine: uploaded asset description → canonical catalog entry.

Matching Approach (per uploaded row):
    0. LEARNED SHORT-CIRCUIT: if the organization has taught a match for this
       text and it has not decayed, return it at 100% confidence. Alternatives
       are still ranked for the reviewer.
    1. PREFILTER: reduce the catalog to entries sharing a token (or a token
       fragment) with the normalized text or its abbreviation expansions.
       Falls back to the full catalog if fewer than 5% of entries survive.
    2. CATEGORY GATE: candidates whose category is incompatible with the
       domain the uploaded text names (e.g. "Water Closet" vs Electrical)
       score 0, whatever their textual similarity.
    3. SCORE: weighted blend of name, category, brand, model and standard
       code similarity plus the learning boost:
           0.75 name + 0.10 category + 0.05 brand + 0.03 model
           + 0.15 standard code + learning boost
    4. RANK: drop candidates below 30%, sort descending; the top entry is
       the suggestion, the next 14 are alternatives.

Confidence:
    round(top score x 100), clamped to 100 for display. The raw total (which
    a learning boost can push above 1.0) is kept on the explanation.
    "No candidate above the floor" is a normal outcome: suggested_match is
    None and confidence is 0.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    LEARNING_REASON_THRESHOLD,
    MAX_ALTERNATIVES,
    MIN_CONFIDENCE,
    PLACEHOLDER_VALUES,
    PREFILTER_MIN_RATIO,
    STANDARD_CODE_MIN_PARTIAL,
    WEIGHT_ASSET_NAME,
    WEIGHT_BRAND,
    WEIGHT_CATEGORY,
    WEIGHT_MODEL,
    WEIGHT_STANDARD_CODE,
)
from .models import (
    AssetMatch,
    CanonicalAssetRecord,
    MatchExplanation,
    ScoreBreakdown,
    UploadedAssetRow,
)
from .normalizer import expand_abbreviations, normalize_asset_text, significant_tokens
from .similarity import calculate_similarity, category_similarity, normalize_category_name

logger = logging.getLogger(__name__)

REASON_LEARNED = "Previously learned (100% confidence)"
REASON_STANDARD_CODE = "Standard code match"
REASON_LEARNING_BOOST = "Previously learned"
REASON_HIGH_NAME = "High name similarity"
REASON_CATEGORY_NAME = "Category + name match"
REASON_FUZZY = "Fuzzy match"

# ---------------------------------------------------------------------------
# Category compatibility gate
# ---------------------------------------------------------------------------

# Candidate category → categories its assets can never belong to
CATEGORY_INCOMPATIBLE: Dict[str, List[str]] = {
    'HVAC': ['Fire Safety', 'Security'],
    'Electrical': ['HVAC', 'Plumbing'],
    'Plumbing': ['Electrical', 'Fire Safety', 'Security'],
    'Fire Safety': ['HVAC', 'Electrical', 'Plumbing'],
    'Security': ['HVAC', 'Fire Safety', 'Plumbing'],
    'Vertical Transport': ['HVAC', 'Electrical', 'Plumbing', 'Fire Safety', 'Security'],
    'Doors': ['Electrical', 'Plumbing', 'Fire Safety'],
}

_NON_WORD = re.compile(r'[^\w]+')


def _phrase(text: str) -> str:
    return _NON_WORD.sub(' ', text.lower()).strip()


# Category → the whole phrase that marks uploaded text as belonging to it
_DOMAIN_PHRASES: Dict[str, str] = {
    category: _phrase(category)
    for incompatible in CATEGORY_INCOMPATIBLE.values()
    for category in incompatible
}


def is_category_compatible(uploaded_text: str, candidate_category: str) -> bool:
    """
    False when the uploaded text names a domain the candidate's category is
    never compatible with.

    The text is normalized and checked for a whole-phrase occurrence of each
    incompatible category's name, so "Electrical Access Panel" can never
    land on a Plumbing access panel. Generic modifiers such as "fire" in
    "Fire Door" do not name a domain.
    """
    incompatible = CATEGORY_INCOMPATIBLE.get(normalize_category_name(candidate_category or ''), [])
    if not incompatible:
        return True
    padded = f" {_phrase(normalize_asset_text(uploaded_text))} "
    return not any(f" {_DOMAIN_PHRASES[category]} " in padded for category in incompatible)


# ---------------------------------------------------------------------------
# Standard code matching
# ---------------------------------------------------------------------------

def standard_code_matches(uploaded_text: str, standard_code: str) -> bool:
    """
    True if the uploaded text equals the code, contains it, is a hyphen
    segment of it ("AHU" in "AHU-001"), or is a 4+ character fragment of it.
    """
    text = (uploaded_text or '').upper().strip()
    code = (standard_code or '').upper().strip()
    if not text or not code:
        return False
    if text == code or code in text:
        return True
    if len(text) >= STANDARD_CODE_MIN_PARTIAL and text in code:
        return True
    return text in code.split('-')


# ---------------------------------------------------------------------------
# Candidate prefilter
# ---------------------------------------------------------------------------

def search_tokens(row: UploadedAssetRow) -> set:
    tokens = significant_tokens(normalize_asset_text(row.asset_type))
    for term in expand_abbreviations(row.asset_type):
        tokens |= significant_tokens(term)
    return tokens


def get_candidate_assets(
    row: UploadedAssetRow,
    catalog: Sequence[CanonicalAssetRecord],
) -> List[CanonicalAssetRecord]:
    """
    Cheap token-overlap pass before scoring.

    Keeps an entry if any of its name/description tokens is a search token,
    or any of its name tokens has a substring relationship with one. If that
    keeps fewer than 5% of the catalog the filter is discarded: better to
    score everything than to silently hide the right entry.
    """
    tokens = search_tokens(row)
    if not tokens:
        return list(catalog)

    candidates = []
    for asset in catalog:
        name_tokens = significant_tokens(asset.asset_name)
        if (name_tokens | significant_tokens(asset.description)) & tokens:
            candidates.append(asset)
            continue
        if any(nt in st or st in nt for nt in name_tokens for st in tokens):
            candidates.append(asset)

    if len(candidates) < len(catalog) * PREFILTER_MIN_RATIO:
        logger.debug("Prefilter kept %d/%d for %r, using full catalog", len(candidates), len(catalog), row.asset_type)
        return list(catalog)
    return candidates


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _is_placeholder(value: str) -> bool:
    return (value or '').strip().upper() in PLACEHOLDER_VALUES


def _attribute_score(value: str, asset: CanonicalAssetRecord) -> float:
    """Brand/model similarity against the candidate's name and description."""
    if _is_placeholder(value):
        return 0.0
    return max(
        calculate_similarity(value, asset.asset_name),
        calculate_similarity(value, asset.description or ''),
    )


def best_name_score(search_terms: Sequence[str], asset: CanonicalAssetRecord) -> float:
    return max((calculate_similarity(term, asset.asset_name) for term in search_terms), default=0.0)


def weighted_total(breakdown: ScoreBreakdown) -> float:
    return (
        breakdown.name_score * WEIGHT_ASSET_NAME
        + breakdown.category_score * WEIGHT_CATEGORY
        + breakdown.brand_score * WEIGHT_BRAND
        + breakdown.model_score * WEIGHT_MODEL
        + breakdown.standard_code_score * WEIGHT_STANDARD_CODE
        + breakdown.learning_boost
    )


def _match_reason(breakdown: ScoreBreakdown) -> str:
    if breakdown.standard_code_score > 0:
        return REASON_STANDARD_CODE
    if breakdown.learning_boost > LEARNING_REASON_THRESHOLD:
        return REASON_LEARNING_BOOST
    if breakdown.name_score > 0.85:
        return REASON_HIGH_NAME
    if breakdown.category_score > 0.85:
        return REASON_CATEGORY_NAME
    return REASON_FUZZY


def score_candidate(
    row: UploadedAssetRow,
    asset: CanonicalAssetRecord,
    search_terms: Sequence[str],
    learning=None,
    organization_id: Optional[str] = None,
) -> Tuple[float, Optional[ScoreBreakdown]]:
    """
    Score one candidate for one uploaded row.

    Returns (total, breakdown). A category-incompatible candidate returns
    (0.0, None) regardless of how similar its name is.
    """
    if not is_category_compatible(row.asset_type, asset.category):
        return 0.0, None

    name_score = 0.0
    category_score = 0.0
    for term in search_terms:
        name_score = max(name_score, calculate_similarity(term, asset.asset_name))
        category_score = max(category_score, category_similarity(term, asset.category))

    learning_boost = 0.0
    if learning is not None and organization_id:
        learning_boost = learning.boost(organization_id, row.asset_type, asset.id)

    breakdown = ScoreBreakdown(
        name_score=name_score,
        category_score=category_score,
        brand_score=_attribute_score(row.brand, asset),
        model_score=_attribute_score(row.model, asset),
        standard_code_score=1.0 if standard_code_matches(row.asset_type, asset.standard_code) else 0.0,
        learning_boost=learning_boost,
    )
    return weighted_total(breakdown), breakdown


def to_confidence(score: float) -> int:
    """Half-up percentage clamped to [0, 100]."""
    return max(0, min(100, int(score * 100 + 0.5)))


def _distinct_alternatives(
    ranked: Sequence[CanonicalAssetRecord],
    exclude_id: Optional[str],
    limit: int,
) -> Tuple[CanonicalAssetRecord, ...]:
    seen = {exclude_id} if exclude_id is not None else set()
    alternatives = []
    for asset in ranked:
        if asset.id in seen:
            continue
        seen.add(asset.id)
        alternatives.append(asset)
        if len(alternatives) >= limit:
            break
    return tuple(alternatives)


def _learned_match(
    row: UploadedAssetRow,
    learned: CanonicalAssetRecord,
    catalog: Sequence[CanonicalAssetRecord],
    max_alternatives: int,
) -> AssetMatch:
    search_terms = expand_abbreviations(row.asset_type)
    scored = []
    for asset in get_candidate_assets(row, catalog):
        if asset.id == learned.id:
            continue
        score = best_name_score(search_terms, asset) if is_category_compatible(row.asset_type, asset.category) else 0.0
        scored.append((score, asset))
    scored.sort(key=lambda pair: pair[0], reverse=True)

    return AssetMatch(
        row=row,
        suggested_match=learned,
        alternative_matches=_distinct_alternatives([a for _, a in scored], learned.id, max_alternatives),
        confidence=100,
        explanation=MatchExplanation(
            match_reason=REASON_LEARNED,
            method='learned',
            name_score=1.0,
            category_score=1.0,
            learning_boost=1.0,
            total_score=1.0,
        ),
        score_breakdown=ScoreBreakdown(learning_boost=1.0),
    )


def match_asset(
    row: UploadedAssetRow,
    catalog: Sequence[CanonicalAssetRecord],
    learning=None,
    organization_id: Optional[str] = None,
    max_alternatives: int = MAX_ALTERNATIVES,
) -> AssetMatch:
    """
    Resolve one uploaded row against the catalog.

    Args:
        row: the uploaded row
        catalog: canonical asset records
        learning: LearningStore for the learned short-circuit and boosts (optional)
        organization_id: learning is only consulted when given
        max_alternatives: how many runner-up entries to return

    Returns:
        AssetMatch; suggested_match is None when nothing clears the floor.
    """
    if learning is not None and organization_id:
        learned_id = learning.get_learned_asset_id(organization_id, row.asset_type)
        if learned_id:
            learned = next((a for a in catalog if a.id == learned_id), None)
            if learned is not None:
                logger.debug("Row %d %r short-circuited to learned %s", row.row_index, row.asset_type, learned_id)
                return _learned_match(row, learned, catalog, max_alternatives)
            logger.debug("Learned asset %s is not in the catalog, scoring normally", learned_id)

    search_terms = expand_abbreviations(row.asset_type)
    candidates = get_candidate_assets(row, catalog)

    ranked = []
    for asset in candidates:
        score, breakdown = score_candidate(row, asset, search_terms, learning, organization_id)
        if breakdown is not None and score >= MIN_CONFIDENCE:
            ranked.append((score, asset, breakdown))
    ranked.sort(key=lambda item: item[0], reverse=True)

    if not ranked:
        logger.debug("Row %d %r: no candidate above %.0f%%", row.row_index, row.asset_type, MIN_CONFIDENCE * 100)
        return AssetMatch(row=row, suggested_match=None)

    top_score, top_asset, top_breakdown = ranked[0]
    explanation = MatchExplanation(
        match_reason=_match_reason(top_breakdown),
        method='scored',
        standard_code_match=top_breakdown.standard_code_score > 0,
        name_score=top_breakdown.name_score,
        category_score=top_breakdown.category_score,
        brand_score=top_breakdown.brand_score,
        model_score=top_breakdown.model_score,
        learning_boost=top_breakdown.learning_boost,
        total_score=top_score,
    )
    logger.debug("Row %d %r -> %s (%.3f)", row.row_index, row.asset_type, top_asset.asset_name, top_score)
    return AssetMatch(
        row=row,
        suggested_match=top_asset,
        alternative_matches=_distinct_alternatives([a for _, a, _ in ranked[1:]], top_asset.id, max_alternatives),
        confidence=to_confidence(top_score),
        explanation=explanation,
        score_breakdown=top_breakdown,
    )


def match_assets(
    rows: Sequence[UploadedAssetRow],
    catalog: Sequence[CanonicalAssetRecord],
    learning=None,
    organization_id: Optional[str] = None,
    max_alternatives: int = MAX_ALTERNATIVES,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> List[AssetMatch]:
    """
    Resolve a batch. Rows are independent; results come back in input order.

    progress_callback: optional callable(current, total) for UI progress,
    called every 50 rows and on the last one.
    """
    total = len(rows)
    results = []
    for row in rows:
        results.append(match_asset(row, catalog, learning, organization_id, max_alternatives))
        if progress_callback and (len(results) % 50 == 0 or len(results) == total):
            progress_callback(len(results), total)
    return results
