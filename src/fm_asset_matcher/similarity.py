"""
String similarity for asset names and category names.

calculate_similarity() walks an ordered list of named strategies and takes
the first one that produces a score:

    1. exact      : case-insensitive equality            → 1.0
    2. single_word: a one-word side appears whole in the other → 0.92
    3. substring  : containment either way → max(0.75, shorter/longer * 0.95)
    4. blended    : 0.5 * token set + 0.3 * trigram Dice + 0.2 * Levenshtein

The precedence and the blend weights are tuned behaviour; reordering the
strategies or touching the weights changes rankings.
"""

from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .config import (
    BLEND_LEVENSHTEIN,
    BLEND_TOKEN_SET,
    BLEND_TRIGRAM,
    SINGLE_WORD_SCORE,
    SUBSTRING_FLOOR,
    SUBSTRING_RATIO_FACTOR,
    TOKEN_CONTAINMENT_DISCOUNT,
)
from .normalizer import significant_tokens

# ---------------------------------------------------------------------------
# Category aliases: "Air Conditioning" and "HVAC" are the same category
# ---------------------------------------------------------------------------
CATEGORY_ALIASES: Dict[str, List[str]] = {
    'HVAC': ['Air Conditioning', 'AC', 'Heating Ventilation', 'Climate Control', 'HVAC & Ventilation'],
    'Electrical': ['Electrical & Power', 'Power', 'Electrical Systems', 'Power Distribution'],
    'Plumbing': ['Plumbing & Water', 'Water', 'Drainage', 'Water Systems', 'Sanitary'],
    'Fire Safety': ['Fire', 'Fire Protection', 'Fire Fighting', 'Fire Alarm', 'Fire Suppression'],
    'Security': ['Security / ELV / ICT', 'ELV', 'ICT', 'Access Control', 'CCTV', 'Security Systems'],
    'Vertical Transport': ['Vertical Transport & Facade', 'Lifts', 'Elevators', 'Escalators', 'Facade'],
    'Doors': ['Doors & Gates / Facade', 'Gates', 'Facade', 'Automatic Doors'],
    'Utilities': ['Utilities & Gas', 'Gas', 'Compressed Air', 'Utility Systems'],
    'Special': ['Special Systems', 'Specialty', 'Miscellaneous Systems'],
}

_CATEGORY_LOOKUP: Dict[str, str] = {}
for _canonical, _aliases in CATEGORY_ALIASES.items():
    _CATEGORY_LOOKUP.setdefault(_canonical.lower(), _canonical)
    for _alias in _aliases:
        # First canonical wins for shared aliases ("Facade")
        _CATEGORY_LOOKUP.setdefault(_alias.lower(), _canonical)


# ---------------------------------------------------------------------------
# Component measures
# ---------------------------------------------------------------------------

def token_set_similarity(a: str, b: str) -> float:
    """Jaccard over significant tokens, or 0.9 x containment of the smaller set."""
    tokens_a = significant_tokens(a)
    tokens_b = significant_tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    common = len(tokens_a & tokens_b)
    jaccard = common / len(tokens_a | tokens_b)
    containment = common / min(len(tokens_a), len(tokens_b))
    return max(jaccard, containment * TOKEN_CONTAINMENT_DISCOUNT)


def _trigrams(s: str) -> set:
    return {s[i:i + 3] for i in range(len(s) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Dice coefficient over the 3-character substrings of both strings."""
    if not a or not b:
        return 0.0
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    grams1 = _trigrams(s1)
    grams2 = _trigrams(s2)
    if not grams1 or not grams2:
        return 0.0
    return 2 * len(grams1 & grams2) / (len(grams1) + len(grams2))


def levenshtein_similarity(a: str, b: str) -> float:
    """(maxLen - editDistance) / maxLen."""
    return Levenshtein.normalized_similarity(a, b)


# ---------------------------------------------------------------------------
# Ordered strategies, each returns a score or None to defer to the next
# ---------------------------------------------------------------------------

def _exact(s1: str, s2: str) -> Optional[float]:
    return 1.0 if s1 == s2 else None


def _single_word(s1: str, s2: str) -> Optional[float]:
    words1 = s1.split()
    words2 = s2.split()
    if len(words1) == 1 and words1[0] in words2:
        return SINGLE_WORD_SCORE
    if len(words2) == 1 and words2[0] in words1:
        return SINGLE_WORD_SCORE
    return None


def _substring(s1: str, s2: str) -> Optional[float]:
    if s1 in s2 or s2 in s1:
        longer = max(len(s1), len(s2))
        shorter = min(len(s1), len(s2))
        return max(SUBSTRING_FLOOR, shorter / longer * SUBSTRING_RATIO_FACTOR)
    return None


def _blended(s1: str, s2: str) -> Optional[float]:
    return (
        token_set_similarity(s1, s2) * BLEND_TOKEN_SET
        + trigram_similarity(s1, s2) * BLEND_TRIGRAM
        + levenshtein_similarity(s1, s2) * BLEND_LEVENSHTEIN
    )


SIMILARITY_STRATEGIES: Tuple[Tuple[str, Callable[[str, str], Optional[float]]], ...] = (
    ('exact', _exact),
    ('single_word', _single_word),
    ('substring', _substring),
    ('blended', _blended),
)


@lru_cache(maxsize=200000)
def similarity_with_strategy(a: str, b: str) -> Tuple[float, str]:
    """Score two strings and report which strategy produced the score."""
    if not isinstance(a, str) or not isinstance(b, str):
        return 0.0, 'empty'
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if not s1 or not s2:
        return 0.0, 'empty'
    for name, strategy in SIMILARITY_STRATEGIES:
        score = strategy(s1, s2)
        if score is not None:
            return score, name
    return 0.0, 'none'


def calculate_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1]; 1.0 for case-insensitive equality, 0 if either side is empty."""
    return similarity_with_strategy(a, b)[0]


# ---------------------------------------------------------------------------
# Category comparison
# ---------------------------------------------------------------------------

def normalize_category_name(category: str) -> str:
    """Map a category or any of its aliases to the canonical name; unknown names pass through."""
    if not isinstance(category, str):
        return ''
    return _CATEGORY_LOOKUP.get(category.lower().strip(), category)


def category_similarity(a: str, b: str) -> float:
    if not a or not b or not a.strip() or not b.strip():
        return 0.0
    if normalize_category_name(a) == normalize_category_name(b):
        return 1.0
    return calculate_similarity(a, b)
