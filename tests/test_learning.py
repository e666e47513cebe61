"""Tests for correction decay, boosts and the learned short-circuit."""

from datetime import timedelta

import pytest

from fm_asset_matcher.learning import LearningStore, recency_factor
from fm_asset_matcher.matcher import match_asset
from fm_asset_matcher.models import UploadedAssetRow

from conftest import T0

ORG = 'org-1'


class TestRecencyFactor:

    @pytest.mark.parametrize("days, expected", [
        (0, 1.0),
        (45, 0.5),
        (89, 1 - 89 / 90),
        (90, 0.0),
        (91, 0.0),
        (400, 0.0),
    ])
    def test_linear_decay(self, days, expected):
        assert recency_factor(T0 + timedelta(days=days), T0, 90) == pytest.approx(expected)

    def test_future_timestamp_counts_as_fresh(self):
        assert recency_factor(T0, T0 + timedelta(days=2), 90) == 1.0

    def test_naive_timestamp_treated_as_utc(self):
        naive = T0.replace(tzinfo=None)
        assert recency_factor(T0 + timedelta(days=45), naive, 90) == pytest.approx(0.5)

    def test_zero_window(self):
        assert recency_factor(T0, T0, 0) == 0.0


@pytest.fixture
def learning(correction_store, clock):
    return LearningStore(correction_store, clock=clock)


class TestBoost:

    def test_fresh_exact_boost(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        assert learning.boost(ORG, "Packge Unit", 'A3') == pytest.approx(0.70)

    def test_matches_on_normalized_text(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        assert learning.boost(ORG, "PACKAGE UNIT-02", 'A3') == pytest.approx(0.70)

    def test_only_for_named_asset(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        assert learning.boost(ORG, "Packge Unit", 'A1') == 0.0

    def test_decays(self, learning, clock, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        clock.advance(days=45)
        assert learning.boost(ORG, "Packge Unit", 'A3') == pytest.approx(0.35)
        clock.advance(days=46)
        assert learning.boost(ORG, "Packge Unit", 'A3') == 0.0
        # Decayed, never deleted
        assert len(learning.corrections(ORG)) == 1

    def test_fuzzy_token_subset(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Rooftop Package Unit", 'A3')])
        assert learning.boost(ORG, "Package Unit", 'A3') == pytest.approx(0.70)
        assert learning.boost(ORG, "Rooftop Package Unit North Wing", 'A3') == pytest.approx(0.70)
        assert learning.boost(ORG, "Package Chiller", 'A3') == 0.0

    def test_fuzzy_ignores_empty_token_sets(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("AC", 'A5')])
        assert learning.boost(ORG, "DB", 'A5') == 0.0

    def test_organizations_isolated(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        assert learning.boost('org-2', "Packge Unit", 'A3') == 0.0
        assert learning.boost(None, "Packge Unit", 'A3') == 0.0

    def test_highest_frequency_wins_key(self, learning, make_correction):
        learning.set_corrections(ORG, [
            make_correction("Packge Unit", 'A1', frequency=1),
            make_correction("packge unit", 'A3', frequency=5),
        ])
        assert learning.get_learned_asset_id(ORG, "Packge Unit") == 'A3'

    def test_load_limit(self, correction_store, clock, make_correction):
        store = LearningStore(correction_store, load_limit=2, clock=clock)
        store.set_corrections(ORG, [
            make_correction(f"Pump Set {name}", 'P2', frequency=freq)
            for name, freq in [("Alpha", 1), ("Beta", 7), ("Gamma", 3)]
        ])
        assert sorted(c.frequency for c in store.corrections(ORG)) == [3, 7]


class TestLearnedAssetId:

    def test_exact(self, learning, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A3')])
        assert learning.get_learned_asset_id(ORG, "Packge Unit") == 'A3'

    def test_decayed_exact_hit_returns_none(self, learning, clock, make_correction):
        learning.set_corrections(ORG, [
            make_correction("Packge Unit", 'A3', last_used=T0 - timedelta(days=120)),
            make_correction("Package Unit Rooftop", 'A1', frequency=9),
        ])
        assert learning.get_learned_asset_id(ORG, "Packge Unit") is None

    def test_fuzzy_prefers_frequency_then_recency(self, learning, make_correction):
        learning.set_corrections(ORG, [
            make_correction("Booster Pump Basement", 'P2', frequency=2, last_used=T0 - timedelta(days=10)),
            make_correction("Booster Pump Roof", 'F2', frequency=2, last_used=T0 - timedelta(days=1)),
            make_correction("Booster Pump Tank", 'A1', frequency=1),
        ])
        assert learning.get_learned_asset_id(ORG, "Booster Pump") == 'F2'

    def test_unknown(self, learning):
        assert learning.get_learned_asset_id(ORG, "Anything") is None


class TestRecordCorrection:

    def test_persists_then_mirrors(self, learning, correction_store):
        stored = learning.record_correction(ORG, "Packge Unit", 'A3')
        assert stored.frequency == 1
        assert stored.normalized_text == "PACKAGE UNIT"
        assert correction_store.load_corrections(ORG)[0].corrected_asset_id == 'A3'
        assert learning.get_learned_asset_id(ORG, "Packge Unit") == 'A3'

    def test_repeat_increments_frequency(self, learning, clock):
        learning.record_correction(ORG, "Packge Unit", 'A3')
        clock.advance(days=3)
        stored = learning.record_correction(ORG, "Packge Unit", 'A3')
        assert stored.frequency == 2
        assert stored.last_used == T0 + timedelta(days=3)

    def test_failed_write_leaves_mirror_untouched(self, learning, correction_store, make_correction):
        learning.set_corrections(ORG, [make_correction("Packge Unit", 'A1')])
        correction_store.fail_writes = True
        with pytest.raises(ConnectionError):
            learning.record_correction(ORG, "Packge Unit", 'A3')
        assert learning.get_learned_asset_id(ORG, "Packge Unit") == 'A1'


class TestShortCircuit:

    def test_learned_match_is_100_with_alternatives(self, learning, catalog):
        learning.record_correction(ORG, "Packge Unit", 'E3')
        result = match_asset(UploadedAssetRow("Packge Unit", quantity=1), catalog, learning, ORG)
        assert result.suggested_id == 'E3'
        assert result.confidence == 100
        assert result.explanation.method == 'learned'
        assert result.status == 'LEARNED'
        assert result.alternative_matches
        assert 'E3' not in {a.id for a in result.alternative_matches}

    def test_learned_asset_missing_from_catalog_scores_normally(self, learning, catalog):
        learning.record_correction(ORG, "Chiller", 'GONE')
        result = match_asset(UploadedAssetRow("Chiller", quantity=1), catalog, learning, ORG)
        assert result.suggested_id == 'A4'
        assert result.explanation.method == 'scored'

    def test_without_organization_learning_is_ignored(self, learning, catalog):
        learning.record_correction(ORG, "Packge Unit", 'E3')
        result = match_asset(UploadedAssetRow("Packge Unit", quantity=1), catalog, learning, None)
        assert result.suggested_id != 'E3'
