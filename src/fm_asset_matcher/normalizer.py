"""
Text normalization and abbreviation expansion for uploaded asset descriptions.

Uploaded inventories describe the same equipment in wildly different ways:
"AHU-01", "A.H.U UNIT/02", "Air Handling Unit 25 KW", "PAKAGE UNIT".
Before any scoring the text is cleaned into a stable upper-case form and
expanded into the full-form search terms a catalog entry would use.

Normalization pipeline (order matters, words are never reordered):
    1. Upper-case and trim
    2. Whole-word typo corrections (PAKAGE → PACKAGE)
    3. Strip numeric unit suffixes (25 KW, 5.5 HP, 2 TONS)
    4. Strip instance/position codes (-01, /04, -UNIT2)
    5. Strip embedded model codes (AB123, XYZ12-3C)
    6. Punctuation → spaces, collapse whitespace
"""

import re
from functools import lru_cache
from typing import Dict, List, Set, Tuple

from .config import MIN_TOKEN_LENGTH

# ---------------------------------------------------------------------------
# Typo corrections (whole words, case-insensitive)
# ---------------------------------------------------------------------------
TYPO_CORRECTIONS: Dict[str, str] = {
    'PACKEGE': 'PACKAGE',
    'PAKAGE': 'PACKAGE',
    'PACKGE': 'PACKAGE',
    'FESH': 'FRESH',
    'FREASH': 'FRESH',
    'DUCTABLE': 'DUCTED',
    'DUCTIBLE': 'DUCTED',
    'MAUNTAIN': 'MOUNTED',
    'MAUNTED': 'MOUNTED',
    'MOUNTIAN': 'MOUNTED',
    'SPLITE': 'SPLIT',
    'SIPLT': 'SPLIT',
    'ACEESS': 'ACCESS',
    'ACCES': 'ACCESS',
    'ESCLATOR': 'ESCALATOR',
    'DOZING': 'DOSING',
    'COOLLING': 'COOLING',
    'SUPPY': 'SUPPLY',
    'RECIVER': 'RECEIVER',
    'COMPRESSER': 'COMPRESSOR',
    'EXHAST': 'EXHAUST',
    'EXHUST': 'EXHAUST',
}

# ---------------------------------------------------------------------------
# Facility-management abbreviations → full-form search terms
# ---------------------------------------------------------------------------
FM_ABBREVIATIONS: Dict[str, List[str]] = {
    # HVAC & Ventilation
    'AHU': ['Air Handling Unit', 'Air-Handling Unit', 'Air Handler'],
    'AIR HANDLING UNIT': ['Air Handling Unit', 'AHU', 'Air Handler'],
    'FAHU': ['Fresh Air Handling Unit', 'Fresh Air Unit', 'FA Unit'],
    'FRESH AIR UNIT': ['Fresh Air Handling Unit', 'Fresh Air Unit'],
    'FRESH AIR HANDLING UNIT': ['Fresh Air Handling Unit', 'Air Handling Unit'],
    'FAU': ['Fresh Air Unit', 'Fresh Air Handling Unit'],
    'MAHU': ['Mixed Air Handling Unit', 'Air Handling Unit'],
    'PAU': ['Pre-Air Unit', 'Pre-Conditioning Air Unit'],
    'FCU': ['Fan Coil Unit', 'FC Unit'],
    'FAN COIL UNIT': ['Fan Coil Unit', 'FCU', 'Fan Coil'],
    'VAV': ['Variable Air Volume Box', 'VAV Box', 'Variable Air Volume'],
    'VRF': ['Variable Refrigerant Flow'],
    'VRV': ['Variable Refrigerant Volume', 'Variable Refrigerant Flow'],
    'DX UNIT': ['Direct Expansion Unit', 'DX Air Conditioner'],
    'SPLIT AC': ['Split AC Unit', 'Hi-Wall Split AC', 'Wall Mounted Split AC'],
    'WALL MOUNTED': ['Wall Mounted Split AC', 'Wall Mounted Split Unit', 'Wall Mounted AC Unit', 'Split AC Unit'],
    'DUCTED SPLIT': ['Ducted Split Unit', 'Ducted Split AC', 'DX Split'],
    'PACKAGE UNIT': ['Packaged Air Conditioner', 'Rooftop Package Unit', 'RTU', 'Package Unit'],
    'PACKAGE': ['Packaged Air Conditioner', 'Package Unit'],
    'PK UNIT': ['Package Unit', 'Packaged Air Conditioner'],
    'RTU': ['Rooftop Unit', 'Rooftop Package Unit', 'Package Unit'],
    'CHILLER': ['Chiller', 'Air Cooled Chiller', 'Water Cooled Chiller'],
    'AIR COOLED CHILLER': ['Air Cooled Chiller', 'Chiller'],
    'WATER COOLED CHILLER': ['Water Cooled Chiller', 'Chiller'],
    'CT': ['Cooling Tower'],
    'COOLING TOWER': ['Cooling Tower'],
    'EXHAUST FAN': ['Exhaust Fan', 'Toilet Exhaust Fan', 'Kitchen Exhaust Fan', 'Extract Fan', 'Ex Fan'],
    'EXTRACT FAN': ['Extract Fan', 'Exhaust Fan', 'Ducted Extract Fan'],
    'CHW PUMP': ['Chilled Water Pump'],
    'CHILLED WATER PUMP': ['Chilled Water Pump', 'CHW Pump'],
    'CHEMICAL DOSING': ['Chemical Dosing System', 'Chemical Dozing Unit', 'Dosing System'],
    'CHEMICAL DOSING UNIT': ['Chemical Dozing Unit', 'Chemical Dosing System'],

    # Electrical & Power
    'UPS': ['Uninterruptible Power Supply', 'UPS System'],
    'GENERATOR': ['Diesel Generator', 'Emergency Generator', 'Genset', 'Gen-set', 'DG Set'],
    'DG': ['Diesel Generator', 'DG Set'],
    'MDB': ['Main Distribution Board', 'Main Switchboard', 'MSB', 'LV Panel'],
    'DB': ['Distribution Board', 'Panel Board', 'Panelboard'],
    'TRANSFORMER': ['Transformer', 'Power Transformer'],
    'LIGHTING': ['Lighting Fixture', 'Luminaires', 'Light Fittings'],

    # Plumbing & Water
    'PUMP': ['Water Pump', 'Pump'],
    'PUMPS': ['Pump', 'Water Pump'],
    'BOOSTER PUMP': ['Water Booster Pump', 'Booster Set', 'Hydropneumatic Pump'],
    'TRANSFER PUMP': ['Transfer Pump', 'Water Transfer Pump'],
    'WATER TANK': ['Water Storage Tank'],
    'WATER PUMP': ['Water Pump'],

    # Fire Safety
    'FAS': ['Fire Alarm System'],
    'FACP': ['Fire Alarm Control Panel', 'Fire Alarm Panel'],
    'SPRINKLER': ['Sprinkler System', 'Automatic Sprinkler'],
    'FIRE PUMP': ['Fire Pump', 'Main Fire Pump'],

    # Security / ELV
    'CCTV': ['CCTV Camera'],
    'CAMERA': ['CCTV Camera'],
    'ACS': ['Access Control System', 'Access Control Panel'],
    'ACCESS CONTROL': ['Access Control Panel', 'Access Control System'],
    'BMS': ['Building Management System', 'BAS', 'Building Automation System'],

    # Vertical Transport
    'LIFT': ['Lift', 'Elevator'],
    'ELEVATOR': ['Lift', 'Elevator'],
    'ESCALATOR': ['Escalator'],
}

# Abbreviation keys this short only expand on an exact match ("DB" must not fire on "FEEDBACK")
MIN_CONTAINED_ABBREVIATION_LENGTH = 3

_TYPO_PATTERN = re.compile(
    r'\b(' + '|'.join(sorted(TYPO_CORRECTIONS, key=len, reverse=True)) + r')\b',
    re.IGNORECASE,
)
_UNIT_SUFFIX_PATTERN = re.compile(
    r'\b\d+(?:\.\d+)?\s*(?:KW|HP|TR|TON|TONS|CFM|LPM|GPM|KVA|W|BTU)\b',
    re.IGNORECASE,
)
_INSTANCE_NUMBER_PATTERN = re.compile(r'[-/]\s*\d+[A-Z]*', re.IGNORECASE)
_INSTANCE_UNIT_PATTERN = re.compile(r'[-/]\s*UNIT\s*\d*', re.IGNORECASE)
_MODEL_CODE_PATTERN = re.compile(r'\b[A-Z]{2,}\d+[-/]?\d*[A-Z]*\b')
_PUNCTUATION_PATTERN = re.compile(r'[^\w\s]|_')
_WHITESPACE_PATTERN = re.compile(r'\s+')


def _normalize_once(text: str) -> str:
    s = text.upper().strip()
    s = _TYPO_PATTERN.sub(lambda m: TYPO_CORRECTIONS[m.group(1).upper()], s)
    s = _UNIT_SUFFIX_PATTERN.sub('', s)
    s = _INSTANCE_NUMBER_PATTERN.sub('', s)
    s = _INSTANCE_UNIT_PATTERN.sub('', s)
    s = _MODEL_CODE_PATTERN.sub('', s)
    s = _PUNCTUATION_PATTERN.sub(' ', s)
    return _WHITESPACE_PATTERN.sub(' ', s).strip()


@lru_cache(maxsize=50000)
def normalize_asset_text(text: str) -> str:
    """
    Normalize an uploaded asset description for matching.

    The pipeline is re-applied until the text stops changing: removing a
    model code can leave a "<number> <unit>" pair next to each other, which
    a single pass would only strip on the next call. Every pass after the
    first only deletes characters, so this terminates.

    Examples:
        'AHU UNIT-02'            -> 'AHU UNIT'
        'Pakage Unit 25 KW'      -> 'PACKAGE UNIT'
        'Split AC/04 (Hi-Wall)'  -> 'SPLIT AC HI WALL'
    """
    if not isinstance(text, str):
        return ''
    current = _normalize_once(text)
    while True:
        nxt = _normalize_once(current)
        if nxt == current:
            return current
        current = nxt


def significant_tokens(text: str) -> Set[str]:
    """Lower-case whitespace tokens of at least MIN_TOKEN_LENGTH characters."""
    if not text:
        return set()
    return {t for t in text.lower().split() if len(t) >= MIN_TOKEN_LENGTH}


@lru_cache(maxsize=50000)
def expand_abbreviations(text: str) -> Tuple[str, ...]:
    """
    Expand an uploaded description into ordered, de-duplicated search terms.

    The original text and its normalized form always come first. Then, for
    every dictionary key, its expansions are appended when the normalized
    text equals the key, or contains it and the key is long enough not to
    fire on fragments.

    Example:
        'AHU UNIT-02' -> ('AHU UNIT-02', 'AHU UNIT', 'Air Handling Unit',
                          'Air-Handling Unit', 'Air Handler')
    """
    if not isinstance(text, str):
        return ()
    normalized = normalize_asset_text(text)
    terms = [text, normalized]

    for abbr, expansions in FM_ABBREVIATIONS.items():
        if normalized == abbr:
            terms.extend(expansions)
        elif len(abbr) >= MIN_CONTAINED_ABBREVIATION_LENGTH and abbr in normalized:
            terms.extend(expansions)

    seen = set()
    unique = []
    for term in terms:
        if term not in seen:
            seen.add(term)
            unique.append(term)
    return tuple(unique)
