"""
FM Asset Matcher — Streamlit review UI

The industry standard catalog is stored with the app (data/catalog/).
Users upload their site asset inventory, review the suggested matches,
teach corrections, and download the results.

Run with:
    streamlit run src/app.py
"""

import io
import os

import pandas as pd
import streamlit as st

from fm_asset_matcher.config import (
    AUTO_SELECT_THRESHOLD,
    DATA_DIR,
    HIGH_CONFIDENCE_THRESHOLD,
    MATCH_STATUS_LEARNED,
    MATCH_STATUS_MATCHED,
    MATCH_STATUS_NO_MATCH,
    MATCH_STATUS_REVIEW,
    MEDIUM_CONFIDENCE_THRESHOLD,
    ServiceSettings,
)
from fm_asset_matcher.errors import CatalogLoadError, CorrectionRecordError
from fm_asset_matcher.logging_config import setup_logging
from fm_asset_matcher.service import AssetResolutionService, auto_selections
from fm_asset_matcher.stores import JsonCorrectionStore, ParquetCatalogStore, parse_catalog_sheet
from fm_asset_matcher.upload import (
    COLUMN_ROLES,
    export_results_excel,
    parse_upload,
    results_to_dataframe,
    rows_from_dataframe,
)

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="FM Asset Matcher",
    page_icon="🏢",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("🏢 Facilities Asset Matcher")
st.markdown("**Match site inventories to the industry standard asset catalog, and teach it your naming**")


@st.cache_resource
def get_service() -> AssetResolutionService:
    setup_logging(json_output=False)
    return AssetResolutionService(
        ParquetCatalogStore(),
        JsonCorrectionStore(os.path.join(DATA_DIR, "corrections.json")),
        settings=ServiceSettings.from_env(),
    )


service = get_service()
catalog_store = service.catalog_store

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.header("⚙️ Settings")

organization_id = st.sidebar.text_input(
    "Organization",
    value=st.session_state.get('organization_id', 'default'),
    help="Taught corrections are remembered per organization",
).strip()
st.session_state['organization_id'] = organization_id

st.sidebar.markdown("**Confidence Tiers:**")
st.sidebar.markdown(f"🟢 **HIGH (≥{HIGH_CONFIDENCE_THRESHOLD}%)**")
st.sidebar.markdown(f"🟡 **MEDIUM ({MEDIUM_CONFIDENCE_THRESHOLD}-{HIGH_CONFIDENCE_THRESHOLD - 1}%)**")
st.sidebar.markdown(f"🔴 **LOW (<{MEDIUM_CONFIDENCE_THRESHOLD}%)** — flagged on import")
st.sidebar.caption(f"Suggestions at or above {AUTO_SELECT_THRESHOLD}% are pre-selected.")

st.sidebar.divider()

with st.sidebar.expander("Admin: Asset Catalog"):
    if catalog_store.exists():
        stats = catalog_store.stats() or {}
        st.caption(f"Loaded {stats.get('final', 0):,} catalog entries")
        for warning in stats.get('warnings', []):
            st.caption(f"⚠️ {warning}")
        if st.button("Remove Catalog"):
            catalog_store.delete()
            service.clear_cache()
            st.rerun()
    else:
        st.warning("No catalog found")
    catalog_upload = st.file_uploader("Upload catalog (.xlsx)", type=["xlsx"], key="catalog_admin")
    if catalog_upload is not None and st.button("Save Catalog"):
        with st.spinner("Saving..."):
            try:
                sheets = pd.ExcelFile(catalog_upload).sheet_names
                df_catalog = parse_catalog_sheet(catalog_upload, sheet_name=sheets[0])
                df_tasks = parse_catalog_sheet(catalog_upload, sheet_name='Tasks') if 'Tasks' in sheets else None
                saved = catalog_store.save(df_catalog, df_tasks)
            except ValueError as e:
                st.error(str(e))
                st.stop()
        service.clear_cache()
        st.success(f"Saved {saved['final']:,} entries")
        st.rerun()

if not catalog_store.exists():
    st.error("Asset catalog not found. Use the Admin panel in the sidebar to upload it.")
    st.stop()

STATUS_COLORS = {
    MATCH_STATUS_LEARNED: 'background-color: #cce5ff; color: #004085',
    MATCH_STATUS_MATCHED: 'background-color: #d4edda; color: #155724',
    MATCH_STATUS_REVIEW: 'background-color: #fff3cd; color: #856404',
    MATCH_STATUS_NO_MATCH: 'background-color: #f8d7da; color: #721c24',
}


def color_status(val):
    return STATUS_COLORS.get(val, '')


tab_match, tab_review, tab_import = st.tabs(["🔗 Matching", "🎯 Review & Teach", "📦 Import Plan"])

# =========================================================================
# TAB 1: MATCHING
# =========================================================================
with tab_match:
    sample_df = pd.DataFrame({
        'Asset Type': ['AHU UNIT-02', 'Packge Unit 10 TR', 'Water Closet', 'FCU-03'],
        'Brand': ['Carrier', 'York', '', 'Daikin'],
        'Model': ['39M', '', '', 'FXMQ'],
        'Quantity': [3, 2, 24, 40],
    })
    sample_excel = io.BytesIO()
    with pd.ExcelWriter(sample_excel, engine='openpyxl') as writer:
        sample_df.to_excel(writer, sheet_name='Asset List', index=False)
    sample_excel.seek(0)
    st.download_button(
        label="📥 Download Excel Template",
        data=sample_excel,
        file_name="asset_inventory_template.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    asset_upload = st.file_uploader(
        "📁 Upload asset inventory (.xlsx or .csv)",
        type=["xlsx", "csv"],
        key="asset_upload",
    )

    if asset_upload is not None:
        try:
            sheets = parse_upload(asset_upload)
        except Exception as e:
            st.error(f"Failed to parse: {e}")
            st.stop()

        if not sheets:
            st.warning("The file has no data.")
            st.stop()

        sheet_name = st.selectbox("Sheet", list(sheets.keys()))
        info = sheets[sheet_name]
        columns = [''] + [str(c) for c in info['df'].columns]

        st.subheader("Column Mapping")
        mapping = {}
        for col, role in zip(st.columns(len(COLUMN_ROLES)), COLUMN_ROLES):
            detected = info['mapping'].get(role)
            with col:
                chosen = st.selectbox(
                    role.replace('_', ' ').title() + (" *" if role in ('asset_type', 'quantity') else ""),
                    columns,
                    index=columns.index(str(detected)) if detected is not None else 0,
                    key=f"map_{sheet_name}_{role}",
                )
            mapping[role] = chosen or None

        with st.expander("Preview Raw Data"):
            st.dataframe(info['df'].head(10), use_container_width=True, hide_index=True)

        if st.button("🚀 Run Matching", type="primary", use_container_width=True):
            try:
                rows = rows_from_dataframe(info['df'], mapping)
            except ValueError as e:
                st.error(str(e))
                st.stop()

            progress = st.progress(0, text="Matching...")

            def on_progress(current, total):
                progress.progress(current / total, text=f"Matching... {current:,}/{total:,}")

            try:
                resolution = service.resolve_batch(
                    rows, organization_id=organization_id or None, progress_callback=on_progress,
                )
            except CatalogLoadError as e:
                st.error(str(e))
                st.stop()
            progress.progress(1.0, text="✅ Complete")

            st.session_state['resolution'] = resolution
            st.session_state['selections'] = auto_selections(resolution.matches)

    resolution = st.session_state.get('resolution')
    if resolution is not None:
        if resolution.from_cache:
            st.caption("Served from recent results")
        if resolution.skipped_rows:
            st.warning(f"Skipped {resolution.skipped_rows} rows with no asset type or quantity")

        df_result = results_to_dataframe(resolution.matches)
        total = max(len(df_result), 1)
        ca, cb, cc, cd = st.columns(4)
        for metric_col, (label, status) in zip(
            (ca, cb, cc, cd),
            [("🔵 Learned", MATCH_STATUS_LEARNED), ("🟢 Matched", MATCH_STATUS_MATCHED),
             ("🟡 Review Required", MATCH_STATUS_REVIEW), ("🔴 No Match", MATCH_STATUS_NO_MATCH)],
        ):
            count = int((df_result['match_status'] == status).sum())
            metric_col.metric(label, count, f"{count / total * 100:.1f}%")

        st.dataframe(
            df_result.style.map(color_status, subset=['match_status']),
            use_container_width=True, hide_index=True,
        )
        st.download_button(
            label="📥 Download Results",
            data=export_results_excel(resolution),
            file_name="asset_matching_results.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            type="primary",
            use_container_width=True,
        )

# =========================================================================
# TAB 2: REVIEW & TEACH
# =========================================================================
with tab_review:
    resolution = st.session_state.get('resolution')
    if resolution is None:
        st.info("Run matching first.")
    else:
        selections = st.session_state.setdefault('selections', {})
        only_open = st.checkbox("Only rows needing review", value=True)
        shown = [
            m for m in resolution.matches
            if not only_open or m.status in (MATCH_STATUS_REVIEW, MATCH_STATUS_NO_MATCH)
        ]
        st.caption(f"{len(shown)} rows")

        for match in shown[:100]:
            r = match.row
            title = f"Row {r.row_index + 1}: {r.asset_type} — {match.status} ({match.confidence}%)"
            with st.expander(title):
                options = []
                if match.suggested_match is not None:
                    options.append(match.suggested_match)
                options.extend(match.alternative_matches)
                if not options:
                    st.markdown("No candidates above the confidence floor.")
                    continue

                if match.explanation is not None:
                    st.markdown(f"**Reason:** {match.explanation.match_reason}")

                ids = [None] + [o.id for o in options]
                labels = {None: "— not selected —"}
                labels.update({o.id: f"{o.asset_name} · {o.category} ({o.standard_code or o.id})" for o in options})
                current = selections.get(r.row_index)
                chosen = st.selectbox(
                    "Catalog asset",
                    ids,
                    index=ids.index(current) if current in ids else 0,
                    format_func=lambda x: labels[x],
                    key=f"sel_{r.row_index}",
                )
                selections[r.row_index] = chosen

                if chosen and organization_id and st.button("🎓 Teach this match", key=f"teach_{r.row_index}"):
                    try:
                        correction = service.record_correction(organization_id, r.asset_type, chosen)
                    except CorrectionRecordError as e:
                        st.error(f"{e} — please try again.")
                    else:
                        st.success(f"Learned '{r.asset_type}' (taught {correction.frequency}×)")

# =========================================================================
# TAB 3: IMPORT PLAN
# =========================================================================
with tab_import:
    resolution = st.session_state.get('resolution')
    if resolution is None:
        st.info("Run matching first.")
    else:
        selections = st.session_state.get('selections', {})
        unresolved = sum(1 for m in resolution.matches if not selections.get(m.row.row_index))
        if unresolved:
            st.warning(f"{unresolved} rows have no selected asset and will not be imported")

        try:
            plan = service.build_import_plan(resolution.matches, selections)
        except CatalogLoadError as e:
            st.error(str(e))
            st.stop()
        if plan:
            st.dataframe(pd.DataFrame([
                {
                    'Asset': line.asset.asset.asset_name,
                    'Category': line.asset.asset.category,
                    'Standard Code': line.asset.asset.standard_code,
                    'Quantity': line.quantity,
                    'Maintenance Tasks': len(line.asset.tasks),
                    'Rows': ', '.join(str(i + 1) for i in line.row_indices),
                    'Low Confidence Rows': ', '.join(str(i + 1) for i in line.low_confidence_rows),
                }
                for line in plan
            ]), use_container_width=True, hide_index=True)
            if any(line.low_confidence_rows for line in plan):
                st.warning(f"Some selections are below {MEDIUM_CONFIDENCE_THRESHOLD}% confidence. Check them before importing.")
        else:
            st.info("Nothing selected yet.")
