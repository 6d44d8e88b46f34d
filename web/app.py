#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path
from urllib.parse import urlparse

import pandas as pd
import requests
import streamlit as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from settings_import.config import ImportSettings
from settings_import.errors import ImportPipelineError
from settings_import.fields import IGNORE
from settings_import.importer import ImportSession
from settings_import.mapping_store import JsonFileMappingStore
from settings_import.preview import mapping_frame, results_frame, section_frame, summary_frame
from settings_import.record_store import RecordStoreError, open_record_store
from settings_import.template import TEMPLATE_FILE_NAME, template_bytes
from settings_import.wizard import (
    ACTION_IMPORT_NEW,
    ACTION_SKIP,
    ACTION_UPDATE,
    STEP_DETECT,
    STEP_DONE,
    STEP_MAPPING,
    STEP_PREVIEW,
    STEP_UPLOAD,
)

MAX_REMOTE_FILE_MB = 25
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
STEP_TITLES = {
    STEP_UPLOAD: "1. Upload",
    STEP_DETECT: "2. Detect",
    STEP_MAPPING: "3. Map columns",
    STEP_PREVIEW: "4. Preview",
    STEP_DONE: "5. Done",
}
ACTION_LABELS = {ACTION_UPDATE: "Update existing", ACTION_SKIP: "Skip", ACTION_IMPORT_NEW: "Import as new"}


@st.cache_resource(show_spinner=False)
def load_settings() -> ImportSettings:
    return ImportSettings.from_env()


def new_session() -> ImportSession:
    settings = load_settings()
    store = open_record_store(settings.store, api_key=settings.api_key, timeout=settings.timeout_seconds)
    return ImportSession(store, settings.user_id, mapping_store=JsonFileMappingStore(settings.mapping_cache))


def ensure_state() -> None:
    if "session" not in st.session_state:
        st.session_state["session"] = new_session()
    st.session_state.setdefault("error", None)


def fetch_remote_workbook(raw_url: str) -> tuple[bytes, str]:
    response = requests.get(raw_url, timeout=60, allow_redirects=True, stream=True)
    try:
        response.raise_for_status()
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            if not chunk:
                continue
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
    finally:
        response.close()
    filename = Path(urlparse(raw_url).path).name or "remote.xlsx"
    return b"".join(chunks), filename


def run_step(action) -> None:
    """Run a session call, keeping any pipeline error for display."""
    try:
        action()
        st.session_state["error"] = None
    except (ImportPipelineError, RecordStoreError, requests.RequestException, KeyError, ValueError) as exc:
        st.session_state["error"] = str(exc)
    st.rerun()


def render_upload(session: ImportSession) -> None:
    upload = st.file_uploader("Workbook", type=["xlsx", "xlsm", "xls"], key="upload_input")
    url = st.text_input("…or a public workbook URL", key="url_input")
    st.download_button(
        "Download template",
        data=template_bytes(),
        file_name=TEMPLATE_FILE_NAME,
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
    if st.button("Read workbook", type="primary", disabled=not upload and not url.strip()):
        if upload is not None:
            run_step(lambda: session.upload(upload.getvalue(), upload.name))
        else:
            def load_remote() -> None:
                content, filename = fetch_remote_workbook(url.strip())
                session.upload(content, filename)

            run_step(load_remote)


def render_detect(session: ImportSession) -> None:
    state = session.state
    st.write(f"**{state.file_name}** · sheet **{state.sheet_name}** · layout `{state.layout}`")
    present = state.sections.present()
    if not present:
        st.error("No bills, subscriptions or debts sections were found in the Settings sheet.")
    for name in present:
        table = state.sections.get(name)
        st.caption(f"{name}: {len(table.rows)} rows from '{table.section_name}'")
    cols = st.columns(2)
    if cols[0].button("Back"):
        run_step(session.back)
    if cols[1].button("Continue", type="primary", disabled=not state.can_proceed_to_mapping()):
        run_step(session.proceed_to_mapping)


def render_mapping(session: ImportSession) -> None:
    for section_state in session.state.active_sections():
        with st.expander(f"{section_state.name} ({section_state.mapping_source} mapping)", expanded=True):
            options = [IGNORE, *[target.key for target in section_state.fields]]
            for header, target in section_state.mapping.items():
                if not header:
                    continue
                choice = st.selectbox(
                    header,
                    options,
                    index=options.index(target),
                    key=f"map_{section_state.name}_{header}",
                )
                if choice != target:
                    run_step(lambda: session.update_mapping(section_state.name, header, choice))
            st.dataframe(mapping_frame(section_state), width="stretch", hide_index=True)
            invalid = len(section_state.invalid_rows())
            if invalid:
                st.warning(f"{invalid} row(s) are missing required fields with this mapping.")
    cols = st.columns(2)
    if cols[0].button("Back"):
        run_step(session.back)
    if cols[1].button("Preview", type="primary"):
        run_step(session.proceed_to_preview)


def render_preview(session: ImportSession) -> None:
    state = session.state
    st.dataframe(summary_frame(state), width="stretch", hide_index=True)
    for section_state in state.active_sections():
        st.subheader(section_state.name.title())
        st.dataframe(section_frame(section_state), width="stretch", hide_index=True)
        for index, row in enumerate(section_state.rows):
            if row.duplicate is None:
                continue
            actions = list(ACTION_LABELS)
            choice = st.radio(
                f"Row {row.row_number} matches '{row.duplicate.existing_name}' ({row.duplicate.match_type})",
                actions,
                index=actions.index(row.duplicate_action),
                format_func=ACTION_LABELS.get,
                horizontal=True,
                key=f"dup_{section_state.name}_{index}",
            )
            if choice != row.duplicate_action:
                run_step(lambda: session.set_duplicate_action(section_state.name, index, choice))
    cols = st.columns(2)
    if cols[0].button("Back"):
        run_step(session.back)
    if cols[1].button("Import", type="primary"):
        progress = st.progress(0.0, text="Importing…")

        def update_progress(processed: int, total: int) -> None:
            progress.progress(processed / total if total else 1.0, text=f"Importing {processed}/{total}")

        session.on_progress = update_progress
        run_step(session.run_import)


def render_done(session: ImportSession) -> None:
    results = session.state.results
    if results is None:
        return
    st.success("Import complete.")
    frame = results_frame(results)
    metrics = st.columns(3)
    metrics[0].metric("Added", int(frame["added"].sum()))
    metrics[1].metric("Updated", int(frame["updated"].sum()))
    metrics[2].metric("Skipped", int(frame["skipped"].sum()))
    st.dataframe(frame, width="stretch")
    if results.failures:
        st.warning("Some rows could not be written.")
        st.dataframe(
            pd.DataFrame([failure.__dict__ for failure in results.failures]),
            width="stretch",
            hide_index=True,
        )
    if session.audit_log is None:
        st.caption("The import log could not be saved.")
    if st.button("Import another file", type="primary"):
        st.session_state["session"] = new_session()
        st.rerun()


def main() -> None:
    st.set_page_config(page_title="settings-import", page_icon="📥", layout="centered")
    ensure_state()
    session: ImportSession = st.session_state["session"]

    st.title("settings-import")
    st.caption(STEP_TITLES.get(session.state.step, session.state.step))
    if st.session_state["error"]:
        st.error(st.session_state["error"])

    step = session.state.step
    if step == STEP_UPLOAD:
        render_upload(session)
    elif step == STEP_DETECT:
        render_detect(session)
    elif step == STEP_MAPPING:
        render_mapping(session)
    elif step == STEP_PREVIEW:
        render_preview(session)
    elif step == STEP_DONE:
        render_done(session)


if __name__ == "__main__":
    main()
