"""
Tests for the category gate, prefilter, candidate scoring and ranking.

Scenarios mirror real uploads: an abbreviated AHU with an instance suffix,
a plumbing fixture that must never land on an electrical board, and a
catalog with nothing plausible at all.
"""

import pytest

from fm_asset_matcher.matcher import (
    get_candidate_assets,
    is_category_compatible,
    match_asset,
    match_assets,
    score_candidate,
    standard_code_matches,
    to_confidence,
    weighted_total,
)
from fm_asset_matcher.models import CanonicalAssetRecord, ScoreBreakdown, UploadedAssetRow
from fm_asset_matcher.normalizer import expand_abbreviations


def row(asset_type, brand='', model='', quantity=1, row_index=0):
    return UploadedAssetRow(asset_type, brand, model, quantity, row_index)


class TestCategoryGate:

    def test_domain_name_rejects_incompatible_category(self):
        assert is_category_compatible("Electrical Access Panel", "Plumbing") is False

    def test_fire_safety_text_rejects_plumbing(self):
        assert is_category_compatible("Chilled Water Pump", "HVAC") is True
        assert is_category_compatible("Fire Safety Hose Cabinet", "Plumbing") is False

    def test_alias_category_is_normalized(self):
        # "Electrical & Power" is an alias of Electrical
        assert is_category_compatible("Plumbing Riser Pump", "Electrical & Power") is False

    def test_unlisted_category_always_compatible(self):
        assert is_category_compatible("Electrical Feature Light", "Landscaping") is True
        assert is_category_compatible("Electrical Feature Light", "") is True

    def test_whole_phrase_only(self):
        assert is_category_compatible("Nonelectrical Hose Bib", "Plumbing") is True

    @pytest.mark.parametrize("text, category", [
        ("Fire Door", "Doors"),
        ("Fire Fighting Lift", "Vertical Transport"),
        ("Power Operated Door", "Doors"),
        ("Water Heater", "Electrical"),
    ])
    def test_modifier_words_do_not_veto(self, text, category):
        assert is_category_compatible(text, category) is True


class TestStandardCode:

    @pytest.mark.parametrize("text, code, expected", [
        ("AHU-001", "AHU-001", True),
        ("ahu-001", "AHU-001", True),
        ("Unit AHU-001 roof", "AHU-001", True),
        ("AHU", "AHU-001", True),
        ("FCU", "AHU-001", False),
        ("", "AHU-001", False),
        ("AHU", "", False),
    ])
    def test_matches(self, text, code, expected):
        assert standard_code_matches(text, code) is expected


class TestPrefilter:

    def test_keeps_token_overlap(self, catalog):
        candidates = get_candidate_assets(row("Booster Pump"), catalog)
        ids = {a.id for a in candidates}
        assert 'P2' in ids
        assert 'E1' not in ids

    def test_uses_expansions(self, catalog):
        ids = {a.id for a in get_candidate_assets(row("FCU-03"), catalog)}
        assert 'A2' in ids

    def test_safety_valve_returns_full_catalog(self):
        big = [CanonicalAssetRecord(f'X{i}', f'Generic Item {i}', 'Special') for i in range(40)]
        big.append(CanonicalAssetRecord('T1', 'Turnstile Gate', 'Security'))
        # 1 of 41 survives the token filter (< 5%), so nothing is filtered
        assert len(get_candidate_assets(row("Turnstile"), big)) == 41

    def test_filter_applies_above_ratio(self):
        small = [
            CanonicalAssetRecord('T1', 'Turnstile Gate', 'Security'),
            CanonicalAssetRecord('T2', 'Boom Barrier', 'Security'),
        ]
        assert [a.id for a in get_candidate_assets(row("Turnstile"), small)] == ['T1']


class TestScoring:

    def test_weighted_total(self):
        breakdown = ScoreBreakdown(1.0, 1.0, 1.0, 1.0, 1.0, 0.5)
        assert weighted_total(breakdown) == pytest.approx(0.75 + 0.10 + 0.05 + 0.03 + 0.15 + 0.5)

    def test_incompatible_identical_name_scores_zero(self):
        asset = CanonicalAssetRecord('P9', 'Electrical Panel', 'Plumbing')
        r = row("Electrical Panel")
        total, breakdown = score_candidate(r, asset, expand_abbreviations(r.asset_type))
        assert total == 0.0
        assert breakdown is None

    def test_placeholder_brand_ignored(self, catalog):
        r = row("Air Handling Unit", brand="N/A", model="-")
        _, breakdown = score_candidate(r, catalog[0], expand_abbreviations(r.asset_type))
        assert breakdown.brand_score == 0.0
        assert breakdown.model_score == 0.0

    def test_standard_code_component(self, catalog):
        r = row("AHU-001")
        _, breakdown = score_candidate(r, catalog[0], expand_abbreviations(r.asset_type))
        assert breakdown.standard_code_score == 1.0

    @pytest.mark.parametrize("score, expected", [
        (0.0, 0), (0.304, 30), (0.7449, 74), (0.7451, 75), (0.756, 76), (1.0, 100), (1.42, 100), (-0.1, 0),
    ])
    def test_to_confidence(self, score, expected):
        assert to_confidence(score) == expected


class TestMatchAsset:

    def test_ahu_example(self):
        ahu = CanonicalAssetRecord('A1', 'Air Handling Unit', 'HVAC', 'AHU-001', '')
        result = match_asset(row("AHU UNIT-02", brand="Carrier", model="39M", quantity=3), [ahu])
        assert result.suggested_match == ahu
        assert result.score_breakdown.name_score >= 0.85
        assert result.confidence >= 75
        assert result.explanation.method == 'scored'

    def test_ahu_in_full_catalog(self, catalog):
        result = match_asset(row("AHU UNIT-02", brand="Carrier", model="39M", quantity=3), catalog)
        assert result.suggested_id == 'A1'
        assert result.confidence >= 75

    def test_water_closet_against_electrical_only(self):
        board = CanonicalAssetRecord('E1', 'Distribution Board', 'Electrical')
        result = match_asset(row("Water Closet"), [board])
        assert result.suggested_match is None
        assert result.confidence == 0
        assert result.alternative_matches == ()

    @pytest.mark.parametrize("asset", [
        CanonicalAssetRecord('D1', 'Fire Door', 'Doors', 'FD-001', ''),
        CanonicalAssetRecord('L1', 'Fire Fighting Lift', 'Vertical Transport', 'FFL-001', ''),
        CanonicalAssetRecord('D2', 'Power Operated Door', 'Doors', 'POD-001', ''),
    ])
    def test_exact_name_with_domain_modifier(self, asset):
        result = match_asset(row(asset.asset_name), [asset])
        assert result.suggested_id == asset.id
        assert result.confidence >= 75

    def test_no_plausible_candidate(self):
        catalog = [CanonicalAssetRecord('Z1', 'Revolving Door', 'Doors')]
        result = match_asset(row("Quantum Flux Capacitor"), catalog)
        assert result.suggested_match is None
        assert result.confidence == 0
        assert result.suggested_id is None

    def test_alternatives_exclude_primary(self, catalog):
        # Duplicate catalog ids must not leak the primary into alternatives
        duplicated = catalog + [catalog[1]]
        result = match_asset(row("Fan Coil Unit"), duplicated)
        assert result.suggested_id == 'A2'
        assert 'A2' not in {a.id for a in result.alternative_matches}
        assert len({a.id for a in result.alternative_matches}) == len(result.alternative_matches)

    def test_alternatives_bounded(self):
        catalog = [CanonicalAssetRecord(f'P{i}', f'Pump {i}', 'Plumbing') for i in range(30)]
        result = match_asset(row("Pump"), catalog, max_alternatives=14)
        assert len(result.alternative_matches) == 14

    def test_single_word_upload(self, catalog):
        result = match_asset(row("Chiller"), catalog)
        assert result.suggested_id == 'A4'

    @pytest.mark.parametrize("text", [
        "AHU UNIT-02", "Water Closet", "Fire Pump", "Lift", "CCTV", "x", "Packge Unit 10 TR", "DB-04",
    ])
    def test_confidence_bounds(self, catalog, text):
        result = match_asset(row(text, brand="Carrier"), catalog)
        assert 0 <= result.confidence <= 100
        assert isinstance(result.confidence, int)


class TestMatchAssets:

    def test_order_and_progress(self, catalog):
        rows = [row(t, row_index=i) for i, t in enumerate(["Chiller", "Fire Pump", "Booster Pump"])]
        calls = []
        results = match_assets(rows, catalog, progress_callback=lambda c, t: calls.append((c, t)))
        assert [m.row.row_index for m in results] == [0, 1, 2]
        assert calls == [(3, 3)]
