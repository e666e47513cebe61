"""
Shared fixtures for the asset matcher test suite.

``src/`` is put on sys.path so ``fm_asset_matcher`` imports without an
install. Everything here is in-memory; the only files touched are under
pytest's tmp_path.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

_SRC_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)

from fm_asset_matcher.models import CanonicalAssetRecord, LearningCorrection, MaintenanceTask  # noqa: E402
from fm_asset_matcher.stores import InMemoryCatalogStore, InMemoryCorrectionStore  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        if isinstance(self.now, datetime):
            self.now = self.now + timedelta(**kwargs)
        else:
            self.now = self.now + kwargs.get('seconds', 0)


class CountingCatalogStore(InMemoryCatalogStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fetch_calls = 0
        self.fail = False

    def fetch_catalog(self):
        self.fetch_calls += 1
        if self.fail:
            raise ConnectionError("catalog database unreachable")
        return super().fetch_catalog()

    def fetch_categories(self):
        if self.fail:
            raise ConnectionError("catalog database unreachable")
        return super().fetch_categories()

    def fetch_by_ids(self, ids):
        if self.fail:
            raise ConnectionError("catalog database unreachable")
        return super().fetch_by_ids(ids)


class CountingCorrectionStore(InMemoryCorrectionStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.load_calls = 0
        self.fail_loads = False
        self.fail_writes = False

    def load_corrections(self, organization_id, limit=200):
        self.load_calls += 1
        if self.fail_loads:
            raise ConnectionError("correction history unreachable")
        return super().load_corrections(organization_id, limit)

    def upsert_correction(self, organization_id, uploaded_text, normalized_text, corrected_asset_id):
        if self.fail_writes:
            raise ConnectionError("write rejected")
        return super().upsert_correction(organization_id, uploaded_text, normalized_text, corrected_asset_id)


FM_CATALOG = [
    CanonicalAssetRecord('A1', 'Air Handling Unit', 'HVAC', 'AHU-001', 'Central air handling unit with coils and fans'),
    CanonicalAssetRecord('A2', 'Fan Coil Unit', 'HVAC', 'FCU-001', 'Ceiling concealed fan coil unit'),
    CanonicalAssetRecord('A3', 'Packaged Air Conditioner', 'HVAC', 'PAC-001', 'Rooftop packaged unit'),
    CanonicalAssetRecord('A4', 'Air Cooled Chiller', 'HVAC', 'CH-001', 'Air cooled screw chiller'),
    CanonicalAssetRecord('A5', 'Split Air Conditioner', 'HVAC', 'SAC-001', 'Wall mounted split unit'),
    CanonicalAssetRecord('E1', 'Distribution Board', 'Electrical', 'DB-001', 'Low voltage distribution board'),
    CanonicalAssetRecord('E2', 'Main Distribution Board', 'Electrical', 'MDB-001', 'Main low voltage switchboard'),
    CanonicalAssetRecord('E3', 'Diesel Generator', 'Electrical', 'GEN-001', 'Standby diesel generator set'),
    CanonicalAssetRecord('P1', 'Water Closet', 'Plumbing', 'WC-001', 'Floor mounted toilet'),
    CanonicalAssetRecord('P2', 'Booster Pump', 'Plumbing', 'BP-001', 'Domestic water booster pump set'),
    CanonicalAssetRecord('P3', 'Water Heater', 'Plumbing', 'WH-001', 'Electric storage water heater'),
    CanonicalAssetRecord('F1', 'Fire Alarm Panel', 'Fire Safety', 'FAP-001', 'Addressable fire alarm control panel'),
    CanonicalAssetRecord('F2', 'Fire Pump', 'Fire Safety', 'FP-001', 'Electric fire pump'),
    CanonicalAssetRecord('S1', 'CCTV Camera', 'Security', 'CCTV-001', 'IP surveillance camera'),
    CanonicalAssetRecord('V1', 'Passenger Lift', 'Vertical Transport', 'LFT-001', 'Traction passenger elevator'),
]

FM_TASKS = {
    'A1': [
        MaintenanceTask('Replace filters', 'Monthly', 1.0, 2),
        MaintenanceTask('Inspect belts and bearings', 'Quarterly', 2.0, 1),
    ],
    'E1': [MaintenanceTask('Thermal scan', 'Annual', 1.5, 1)],
}

T0 = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def catalog():
    return list(FM_CATALOG)


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def monotonic_clock():
    return FakeClock(1000.0)


@pytest.fixture
def catalog_store():
    return CountingCatalogStore(FM_CATALOG, FM_TASKS)


@pytest.fixture
def correction_store(clock):
    return CountingCorrectionStore(clock=clock)


@pytest.fixture
def make_correction():
    def _make(text, asset_id, frequency=1, last_used=T0, normalized=None):
        from fm_asset_matcher.normalizer import normalize_asset_text
        return LearningCorrection(
            uploaded_text=text,
            normalized_text=normalized if normalized is not None else normalize_asset_text(text),
            corrected_asset_id=asset_id,
            frequency=frequency,
            last_used=last_used,
        )
    return _make
