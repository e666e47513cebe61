"""
Spreadsheet I/O around the resolution engine.

Reading: an uploaded asset inventory (.xlsx or .csv) becomes one DataFrame
per sheet plus a guessed column mapping; rows_from_dataframe() then turns a
sheet into UploadedAssetRow records.

Writing: a BatchResolution becomes a review table and an Excel workbook
(Matches / Summary / Unmatched).
"""

import io
import logging
import re
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .config import MATCH_STATUS_LEARNED, MATCH_STATUS_MATCHED, MATCH_STATUS_NO_MATCH, MATCH_STATUS_REVIEW
from .models import AssetMatch, BatchResolution, UploadedAssetRow

logger = logging.getLogger(__name__)

COLUMN_ROLES = ('asset_type', 'brand', 'model', 'quantity')

BRAND_KEYWORDS = ['brand', 'manufacturer']
MODEL_KEYWORDS = ['model']
QUANTITY_KEYWORDS = ['quantity', 'qty', 'count']

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')
_EMPTY_HEADERS = ('', 'nan', 'None')


# ---------------------------------------------------------------------------
# Column detection
# ---------------------------------------------------------------------------

def _column_role(column: str) -> Optional[str]:
    col_lower = column.lower().strip()
    if ('asset' in col_lower and 'type' in col_lower) or 'category' in col_lower:
        return 'asset_type'
    if any(kw in col_lower for kw in BRAND_KEYWORDS):
        return 'brand'
    if any(kw in col_lower for kw in MODEL_KEYWORDS):
        return 'model'
    if any(kw in col_lower for kw in QUANTITY_KEYWORDS):
        return 'quantity'
    return None


def detect_columns(columns: Sequence[str]) -> Dict[str, Optional[str]]:
    """
    Guess which header plays which role. The first header claiming a role
    keeps it; roles nobody claims map to None.
    """
    mapping: Dict[str, Optional[str]] = {role: None for role in COLUMN_ROLES}
    for col in columns:
        role = _column_role(str(col))
        if role and mapping[role] is None:
            mapping[role] = col
    return mapping


def detect_header_row(df_head: pd.DataFrame) -> int:
    """
    First of the leading five rows with at least two non-empty string
    cells (skips title and blank rows). Defaults to row 0.
    """
    for i, (_, row) in enumerate(df_head.head(5).iterrows()):
        str_vals = [v for v in row.values if isinstance(v, str) and v.strip()]
        if len(str_vals) >= 2:
            return i
    return 0


def _frame_with_header(raw: pd.DataFrame) -> pd.DataFrame:
    """Promote the detected header row of a header-less frame to column names."""
    header_row = detect_header_row(raw)
    headers = [str(v).strip() if pd.notna(v) else '' for v in raw.iloc[header_row].values]
    df = raw.iloc[header_row + 1:].copy()
    df.columns = headers

    # Drop leading empty columns (a blank index column is common)
    while len(df.columns) and str(df.columns[0]) in _EMPTY_HEADERS:
        df = df.iloc[:, 1:]
    return df.dropna(how='all').reset_index(drop=True)


def parse_upload(file) -> Dict[str, Dict]:
    """
    Parse every sheet of an uploaded inventory.

    Accepts a path or a file-like object (Streamlit's UploadedFile has a
    .name). CSV files yield a single sheet named after the file.

    Returns dict: sheet_name -> {
        'df': pd.DataFrame,
        'mapping': {'asset_type': col|None, 'brand': ..., 'model': ..., 'quantity': ...},
    }
    Empty sheets are left out.
    """
    file_name = str(getattr(file, 'name', file) or '')
    raw_sheets: Dict[str, pd.DataFrame] = {}

    if file_name.lower().endswith('.csv'):
        sheet_name = file_name.replace('\\', '/').rsplit('/', 1)[-1].rsplit('.', 1)[0] or 'Sheet 1'
        raw_sheets[sheet_name] = pd.read_csv(file, header=None, dtype=object)
    else:
        raw_sheets = pd.read_excel(file, sheet_name=None, header=None, engine='openpyxl')

    results = {}
    for sheet_name, raw in raw_sheets.items():
        if raw.dropna(how='all').empty:
            continue
        df = _frame_with_header(raw)
        mapping = detect_columns(list(df.columns))
        logger.debug("Sheet %r: %d rows, mapping %s", sheet_name, len(df), mapping)
        results[str(sheet_name)] = {'df': df, 'mapping': mapping}
    return results


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

def _cell_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    return str(value).strip()


def parse_quantity(value) -> int:
    """Leading integer of a cell: 3 -> 3, '3 nos' -> 3, 2.7 -> 2, blank or text -> 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)) and not pd.isna(value):
        return int(value)
    m = _LEADING_INT.match(_cell_text(value))
    return int(m.group(1)) if m else 0


def rows_from_dataframe(df: pd.DataFrame, mapping: Mapping[str, Optional[str]]) -> List[UploadedAssetRow]:
    """
    Build upload rows from a sheet and a column mapping.

    All rows are returned, including ones the service will skip (blank
    asset type, quantity <= 0), so the skipped count can be reported.
    row_index is the row's position in the sheet's data.

    Raises:
        ValueError: the asset type or quantity column is not mapped
    """
    asset_col = mapping.get('asset_type')
    qty_col = mapping.get('quantity')
    if not asset_col or not qty_col:
        raise ValueError("Asset type and quantity columns must be mapped")
    brand_col = mapping.get('brand')
    model_col = mapping.get('model')

    rows = []
    for position, record in enumerate(df.to_dict('records')):
        rows.append(UploadedAssetRow(
            asset_type=_cell_text(record.get(asset_col)),
            brand=_cell_text(record.get(brand_col)) if brand_col else '',
            model=_cell_text(record.get(model_col)) if model_col else '',
            quantity=parse_quantity(record.get(qty_col)),
            row_index=position,
        ))
    return rows


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def results_to_dataframe(matches: Sequence[AssetMatch]) -> pd.DataFrame:
    """One review row per match, in input order."""
    records = []
    for m in matches:
        suggested = m.suggested_match
        records.append({
            'row_index': m.row.row_index,
            'asset_type': m.row.asset_type,
            'brand': m.row.brand,
            'model': m.row.model,
            'quantity': m.row.quantity,
            'match_status': m.status,
            'confidence': m.confidence,
            'confidence_tier': m.confidence_tier,
            'matched_id': suggested.id if suggested else None,
            'matched_asset': suggested.asset_name if suggested else None,
            'matched_category': suggested.category if suggested else None,
            'standard_code': suggested.standard_code if suggested else None,
            'match_reason': m.explanation.match_reason if m.explanation else '',
            'alternatives': ', '.join(a.asset_name for a in m.alternative_matches[:5]),
        })
    columns = [
        'row_index', 'asset_type', 'brand', 'model', 'quantity', 'match_status', 'confidence',
        'confidence_tier', 'matched_id', 'matched_asset', 'matched_category', 'standard_code',
        'match_reason', 'alternatives',
    ]
    return pd.DataFrame(records, columns=columns)


def summarize(resolution: BatchResolution) -> Dict[str, int]:
    statuses = [m.status for m in resolution.matches]
    return {
        'Total Rows': len(statuses) + resolution.skipped_rows,
        'Resolved Rows': len(statuses),
        'Skipped Rows': resolution.skipped_rows,
        'Learned': statuses.count(MATCH_STATUS_LEARNED),
        'Matched': statuses.count(MATCH_STATUS_MATCHED),
        'Review Required': statuses.count(MATCH_STATUS_REVIEW),
        'No Match': statuses.count(MATCH_STATUS_NO_MATCH),
    }


def export_results_excel(resolution: BatchResolution) -> io.BytesIO:
    """Workbook with Matches, Summary and Unmatched sheets, rewound and ready to download."""
    df = results_to_dataframe(resolution.matches)
    summary = summarize(resolution)
    resolved = summary['Resolved Rows']
    found = resolved - summary['No Match']
    summary_rows = [{'Metric': k, 'Value': v} for k, v in summary.items()]
    summary_rows.append({
        'Metric': 'Match Rate',
        'Value': f"{found / resolved * 100:.1f}%" if resolved else '0.0%',
    })

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name='Matches', index=False)
        pd.DataFrame(summary_rows).to_excel(writer, sheet_name='Summary', index=False)
        df[df['match_status'] == MATCH_STATUS_NO_MATCH].to_excel(writer, sheet_name='Unmatched', index=False)
    output.seek(0)
    return output
