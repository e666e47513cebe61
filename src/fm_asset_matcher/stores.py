"""
Persistence adapters: the canonical catalog and the correction history.

The resolution engine only talks to these through the CatalogStore and
CorrectionStore protocols. Two flavours ship here:
    - in-memory stores (tests, demos, embedding in another process)
    - file-backed stores: the catalog as parquet + JSON metadata (upload
      once, reuse across restarts) and corrections as a JSON document
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import pandas as pd

from .config import DATA_DIR, LEARNING_LOAD_LIMIT, LEARNING_MIN_FREQUENCY
from .learning import utc_now
from .models import (
    CanonicalAssetRecord,
    CanonicalAssetWithTasks,
    LearningCorrection,
    MaintenanceTask,
)

logger = logging.getLogger(__name__)

CATALOG_COLUMNS = ['id', 'standard_code', 'asset_name', 'category', 'description']
TASK_COLUMNS = ['asset_id', 'task_name', 'frequency', 'hours_per_task', 'task_order']


class CatalogStore(Protocol):
    def fetch_catalog(self) -> List[CanonicalAssetRecord]: ...

    def fetch_categories(self) -> List[str]: ...

    def fetch_by_ids(self, ids: Iterable[str]) -> Dict[str, CanonicalAssetWithTasks]: ...


class CorrectionStore(Protocol):
    def load_corrections(self, organization_id: str, limit: int = LEARNING_LOAD_LIMIT) -> List[LearningCorrection]: ...

    def upsert_correction(
        self,
        organization_id: str,
        uploaded_text: str,
        normalized_text: str,
        corrected_asset_id: str,
    ) -> LearningCorrection: ...


# ---------------------------------------------------------------------------
# Catalog preprocessing
# ---------------------------------------------------------------------------

def _column_key(name) -> str:
    return str(name).strip().lower().replace(' ', '_')


def clean_catalog_frame(df_catalog: pd.DataFrame) -> Tuple[pd.DataFrame, Dict]:
    """
    Clean a raw catalog table:
        1. Normalize headers ("Asset Name" → asset_name) and add missing optional columns
        2. Drop rows with null/empty id or asset_name
        3. Report duplicate ids (data quality warning; first row wins on load)

    Returns:
        - Cleaned DataFrame with CATALOG_COLUMNS as strings
        - Stats dict (includes 'warnings' list)
    """
    df = df_catalog.copy()
    df.columns = [_column_key(c) for c in df.columns]
    missing = [c for c in ('id', 'asset_name', 'category') if c not in df.columns]
    if missing:
        raise ValueError(f"Catalog is missing required columns: {', '.join(missing)}")
    for col in CATALOG_COLUMNS:
        if col not in df.columns:
            df[col] = ''
    df = df[CATALOG_COLUMNS]

    warnings = []
    original_count = len(df)

    df = df[df['id'].notna() & df['asset_name'].notna()]
    df = df.fillna('')
    for col in CATALOG_COLUMNS:
        df[col] = df[col].astype(str).str.strip()
    df = df[(df['id'] != '') & (df['asset_name'] != '')]
    null_dropped = original_count - len(df)

    id_counts = df['id'].value_counts()
    duplicate_ids = id_counts[id_counts > 1].index.tolist()
    if duplicate_ids:
        warnings.append(f"Found {len(duplicate_ids)} duplicate asset ids")
        for asset_id in duplicate_ids[:5]:
            names = df[df['id'] == asset_id]['asset_name'].unique()
            warnings.append(f"  ID {asset_id}: {len(names)} different names")

    empty_categories = int((df['category'] == '').sum())
    if empty_categories > 0:
        warnings.append(f"{empty_categories} catalog entries have no category")

    df = df.sort_values(['category', 'asset_name'], kind='stable').reset_index(drop=True)

    stats = {
        'original': original_count,
        'null_dropped': null_dropped,
        'final': len(df),
        'warnings': warnings,
    }
    return df, stats


def records_from_frame(df_catalog: pd.DataFrame) -> List[CanonicalAssetRecord]:
    return [CanonicalAssetRecord.from_mapping(row) for row in df_catalog.to_dict('records')]


def tasks_from_frame(df_tasks: Optional[pd.DataFrame]) -> Dict[str, Tuple[MaintenanceTask, ...]]:
    """Group a task table (asset_id, task_name, frequency, hours_per_task, task_order) by asset id."""
    if df_tasks is None or df_tasks.empty:
        return {}
    df = df_tasks.copy()
    df.columns = [_column_key(c) for c in df.columns]
    grouped: Dict[str, List[MaintenanceTask]] = {}
    for row in df.to_dict('records'):
        asset_id = '' if pd.isna(row.get('asset_id')) else str(row.get('asset_id')).strip()
        if not asset_id:
            continue
        hours = pd.to_numeric(row.get('hours_per_task'), errors='coerce')
        order = pd.to_numeric(row.get('task_order'), errors='coerce')
        grouped.setdefault(asset_id, []).append(MaintenanceTask(
            task_name='' if pd.isna(row.get('task_name')) else str(row.get('task_name')).strip(),
            frequency='' if pd.isna(row.get('frequency')) else str(row.get('frequency')).strip(),
            hours_per_task=float(hours) if pd.notna(hours) else 0.0,
            task_order=int(order) if pd.notna(order) else 0,
        ))
    return {k: tuple(sorted(v, key=lambda t: t.task_order)) for k, v in grouped.items()}


def parse_catalog_sheet(file, sheet_name=0) -> pd.DataFrame:
    """Read a catalog sheet (id, standard_code, asset_name, category, description) from Excel."""
    return pd.read_excel(file, sheet_name=sheet_name)


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class InMemoryCatalogStore:
    def __init__(
        self,
        records: Sequence[CanonicalAssetRecord] = (),
        tasks: Optional[Mapping[str, Sequence[MaintenanceTask]]] = None,
    ):
        self.records = list(records)
        self.tasks = {k: tuple(sorted(v, key=lambda t: t.task_order)) for k, v in (tasks or {}).items()}

    def fetch_catalog(self) -> List[CanonicalAssetRecord]:
        return list(self.records)

    def fetch_categories(self) -> List[str]:
        return sorted({r.category for r in self.records if r.category})

    def fetch_by_ids(self, ids: Iterable[str]) -> Dict[str, CanonicalAssetWithTasks]:
        wanted = set(ids)
        result = {}
        for record in self.records:
            if record.id in wanted and record.id not in result:
                result[record.id] = CanonicalAssetWithTasks(record, self.tasks.get(record.id, ()))
        return result


class InMemoryCorrectionStore:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utc_now
        self._rows: Dict[Tuple[str, str, str], LearningCorrection] = {}
        self._lock = threading.Lock()

    def load_corrections(self, organization_id: str, limit: int = LEARNING_LOAD_LIMIT) -> List[LearningCorrection]:
        with self._lock:
            rows = [c for (org, _, _), c in self._rows.items()
                    if org == organization_id and c.frequency >= LEARNING_MIN_FREQUENCY]
        rows.sort(key=lambda c: c.frequency, reverse=True)
        return rows[:limit]

    def upsert_correction(self, organization_id, uploaded_text, normalized_text, corrected_asset_id):
        key = (organization_id, uploaded_text, corrected_asset_id)
        with self._lock:
            existing = self._rows.get(key)
            stored = LearningCorrection(
                uploaded_text=uploaded_text,
                normalized_text=normalized_text,
                corrected_asset_id=corrected_asset_id,
                frequency=existing.frequency + 1 if existing else 1,
                last_used=self.clock(),
            )
            self._rows[key] = stored
        return stored


# ---------------------------------------------------------------------------
# File-backed stores
# ---------------------------------------------------------------------------

class ParquetCatalogStore:
    """
    Catalog persisted as parquet (+ JSON cleaning stats) so it survives
    app restarts: upload once, reuse forever.
    """

    def __init__(self, directory: str = os.path.join(DATA_DIR, "catalog")):
        self.directory = directory
        self.data_path = os.path.join(directory, "catalog.parquet")
        self.tasks_path = os.path.join(directory, "tasks.parquet")
        self.meta_path = os.path.join(directory, "catalog_meta.json")

    def exists(self) -> bool:
        return os.path.exists(self.data_path) and os.path.exists(self.meta_path)

    def save(self, df_catalog: pd.DataFrame, df_tasks: Optional[pd.DataFrame] = None) -> Dict:
        """Clean and save a catalog table. Returns the cleaning stats."""
        df_clean, stats = clean_catalog_frame(df_catalog)
        os.makedirs(self.directory, exist_ok=True)
        df_clean.to_parquet(self.data_path, index=False)
        if df_tasks is not None:
            df_tasks_save = df_tasks.copy()
            df_tasks_save.columns = [_column_key(c) for c in df_tasks_save.columns]
            for col in df_tasks_save.select_dtypes(include='object').columns:
                df_tasks_save[col] = df_tasks_save[col].fillna('').astype(str)
            df_tasks_save.to_parquet(self.tasks_path, index=False)
        with open(self.meta_path, "w", encoding="utf-8") as f:
            json.dump(stats, f, indent=2, default=str)
        for warning in stats['warnings']:
            logger.warning("Catalog: %s", warning)
        return stats

    def stats(self) -> Optional[Dict]:
        if not os.path.exists(self.meta_path):
            return None
        with open(self.meta_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def delete(self) -> None:
        for path in [self.data_path, self.tasks_path, self.meta_path]:
            if os.path.exists(path):
                os.remove(path)

    def _frame(self) -> pd.DataFrame:
        if not os.path.exists(self.data_path):
            raise FileNotFoundError(f"No catalog saved at {self.data_path}")
        return pd.read_parquet(self.data_path).fillna('')

    def fetch_catalog(self) -> List[CanonicalAssetRecord]:
        return records_from_frame(self._frame())

    def fetch_categories(self) -> List[str]:
        categories = self._frame()['category'].astype(str).str.strip()
        return sorted(c for c in categories.unique() if c)

    def fetch_by_ids(self, ids: Iterable[str]) -> Dict[str, CanonicalAssetWithTasks]:
        wanted = {str(i) for i in ids}
        if not wanted:
            return {}
        df = self._frame()
        df = df[df['id'].astype(str).isin(wanted)].drop_duplicates(subset=['id'])
        tasks = {}
        if os.path.exists(self.tasks_path):
            df_tasks = pd.read_parquet(self.tasks_path)
            tasks = tasks_from_frame(df_tasks[df_tasks['asset_id'].astype(str).isin(wanted)])
        return {
            record.id: CanonicalAssetWithTasks(record, tasks.get(record.id, ()))
            for record in records_from_frame(df)
        }


class JsonCorrectionStore:
    """
    Correction history as one JSON document: {organization_id: [record, ...]}.

    A repeat of an existing (organization, uploaded text, asset) triple
    increments its frequency and refreshes last_used; nothing is deleted.
    """

    def __init__(self, path: str = os.path.join(DATA_DIR, "corrections.json"),
                 clock: Optional[Callable[[], datetime]] = None):
        self.path = path
        self.clock = clock or utc_now
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, List[Dict]]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: Dict[str, List[Dict]]) -> None:
        directory = os.path.dirname(self.path) or '.'
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @staticmethod
    def _to_correction(row: Dict) -> LearningCorrection:
        return LearningCorrection(
            uploaded_text=row['uploaded_text'],
            normalized_text=row.get('normalized_text') or '',
            corrected_asset_id=row['corrected_asset_id'],
            frequency=int(row.get('frequency', 1)),
            last_used=datetime.fromisoformat(row['last_used']),
        )

    def load_corrections(self, organization_id: str, limit: int = LEARNING_LOAD_LIMIT) -> List[LearningCorrection]:
        with self._lock:
            rows = self._read().get(organization_id, [])
        corrections = [self._to_correction(r) for r in rows if int(r.get('frequency', 0)) >= LEARNING_MIN_FREQUENCY]
        corrections.sort(key=lambda c: c.frequency, reverse=True)
        return corrections[:limit]

    def upsert_correction(self, organization_id, uploaded_text, normalized_text, corrected_asset_id):
        with self._lock:
            data = self._read()
            rows = data.setdefault(organization_id, [])
            now = self.clock().isoformat()
            row = next(
                (r for r in rows
                 if r['uploaded_text'] == uploaded_text and r['corrected_asset_id'] == corrected_asset_id),
                None,
            )
            if row is None:
                row = {
                    'uploaded_text': uploaded_text,
                    'corrected_asset_id': corrected_asset_id,
                    'frequency': 0,
                }
                rows.append(row)
            row['frequency'] = int(row['frequency']) + 1
            row['normalized_text'] = normalized_text
            row['last_used'] = now
            self._write(data)
        return self._to_correction(row)
