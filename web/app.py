#!/usr/bin/env python3
from __future__ import annotations

import time
from datetime import date
from typing import Any, Optional

import pandas as pd
import streamlit as st

from ncm_dashboard.codec import (
    coerce_datetime,
    coerce_field_input,
    format_cell,
    format_ncm,
    ratio_to_input_text,
)
from ncm_dashboard.config import settings
from ncm_dashboard.enrich import SystaxEnricher
from ncm_dashboard.errors import (
    AlreadyEditingError,
    DescriptionLookupError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from ncm_dashboard.fields import (
    DESCRIPTION_FIELD,
    EXPECTED_FIELDS,
    ID_FIELD,
    LAST_UPDATE_FIELD,
    NCM_FIELD,
    RATIO_FIELDS,
)
from ncm_dashboard.grid import ASCENDING, DataGrid
from ncm_dashboard.loader import UNSUPPORTED_FORMAT_MESSAGE, is_supported_filename
from ncm_dashboard.log import get_logger
from ncm_dashboard.lookup import NcmLookup, ReferenceTableCache, describe, external_lookup_url
from ncm_dashboard.reader import parse
from ncm_dashboard.repository import SpreadsheetRepository

ACCEPTED_UPLOAD_TYPES = ["xls", "xlsx", "csv"]
NOTICE_SECONDS = 3
PREVIEW_ROWS = 10

logger = get_logger("web")


@st.cache_resource(show_spinner=False)
def get_repository() -> SpreadsheetRepository:
    return SpreadsheetRepository()


@st.cache_resource(show_spinner=False)
def get_reference_cache() -> ReferenceTableCache:
    return ReferenceTableCache()


@st.cache_resource(show_spinner=False)
def get_lookup() -> NcmLookup:
    enricher = SystaxEnricher() if settings.ENABLE_ENRICHMENT else None
    return NcmLookup(get_reference_cache(), settings.REFERENCE_TABLE, enricher)


# ── Pure helpers ─────────────────────────────────────────────────────────────

def build_notice(message: str, now: Optional[float] = None) -> dict:
    return {"message": message, "shown_at": time.monotonic() if now is None else now}


def notice_is_active(notice: Optional[dict], now: Optional[float] = None) -> bool:
    if not notice:
        return False
    now = time.monotonic() if now is None else now
    return now - notice["shown_at"] < NOTICE_SECONDS


def upload_error_for(filename: str) -> Optional[str]:
    return None if is_supported_filename(filename) else UNSUPPORTED_FORMAT_MESSAGE


def editor_value(field: str, value: Any) -> Any:
    """Widget-friendly value for the inline editor and create form."""
    if field == LAST_UPDATE_FIELD:
        moment = coerce_datetime(value)
        return moment.date() if moment else None
    if field in RATIO_FIELDS:
        return ratio_to_input_text(value)
    return "" if value is None else str(value)


def display_rows(records: list[dict], columns: list[str]) -> list[dict]:
    return [{column: format_cell(column, record.get(column)) for column in columns} for record in records]


def preview_frame(parsed: dict) -> pd.DataFrame:
    rows = parsed["rows"][:PREVIEW_ROWS]
    return pd.DataFrame(display_rows(rows, EXPECTED_FIELDS))


def sort_label(grid: DataGrid, column: str) -> str:
    if grid.sort_field != column:
        return column
    return f"{column} {'▲' if grid.sort_direction == ASCENDING else '▼'}"


# ── Session state ────────────────────────────────────────────────────────────

def ensure_state() -> None:
    if "grid" not in st.session_state:
        grid = DataGrid(get_repository())
        try:
            grid.reload()
        except PersistenceError as exc:
            st.session_state["load_error"] = str(exc)
        st.session_state["grid"] = grid
    st.session_state.setdefault("load_error", None)
    st.session_state.setdefault("parsed_upload", None)
    st.session_state.setdefault("upload_meta", None)
    st.session_state.setdefault("upload_error", None)
    st.session_state.setdefault("notice", None)
    st.session_state.setdefault("pending_delete", None)
    st.session_state.setdefault("lookup_record", None)
    st.session_state.setdefault("lookup_result", None)
    st.session_state.setdefault("lookup_error", None)
    st.session_state.setdefault("export_bytes", None)
    st.session_state.setdefault("show_create", False)


def grid_state() -> DataGrid:
    return st.session_state["grid"]


def reload_grid() -> None:
    st.session_state["export_bytes"] = None
    try:
        grid_state().reload()
        st.session_state["load_error"] = None
    except PersistenceError as exc:
        st.session_state["load_error"] = str(exc)


# ── Upload ───────────────────────────────────────────────────────────────────

def handle_upload() -> None:
    upload = st.session_state.get("upload_input")
    st.session_state["parsed_upload"] = None
    st.session_state["upload_meta"] = None
    st.session_state["upload_error"] = None
    if upload is None:
        return
    error = upload_error_for(upload.name)
    if error:
        st.session_state["upload_error"] = error
        return
    try:
        st.session_state["parsed_upload"] = parse(upload.getvalue(), upload.name)
        st.session_state["upload_meta"] = {"file_name": upload.name, "file_size": upload.size}
    except ParseError as exc:
        st.session_state["upload_error"] = str(exc)


def render_upload_panel() -> None:
    st.subheader("Importar planilha")
    st.file_uploader(
        "Arquivo Excel ou CSV",
        type=ACCEPTED_UPLOAD_TYPES,
        key="upload_input",
        on_change=handle_upload,
    )
    if st.session_state["upload_error"]:
        st.error(st.session_state["upload_error"])

    parsed = st.session_state["parsed_upload"]
    if not parsed:
        return

    st.caption(f"Aba: {parsed['sheet_name']}  •  {len(parsed['rows'])} linhas")
    if parsed["missing_fields"]:
        st.warning("Campos não encontrados: " + ", ".join(parsed["missing_fields"]))
    st.dataframe(preview_frame(parsed), width="stretch", hide_index=True)

    if st.button("Salvar no banco", type="primary", key="save_upload"):
        try:
            result = get_repository().save_spreadsheet_data(parsed, st.session_state["upload_meta"])
        except PersistenceError as exc:
            st.error(f"Erro ao salvar: {exc}")
            return
        st.session_state["notice"] = build_notice(f"{result['total_rows']} registros importados com sucesso!")
        st.session_state["parsed_upload"] = None
        reload_grid()
        st.rerun()


# ── Toolbar, deletion and export ─────────────────────────────────────────────

def prepare_export() -> None:
    st.session_state["export_bytes"] = grid_state().export_visible()


def render_toolbar(grid: DataGrid) -> None:
    search, export, bulk = st.columns([3, 1, 1])
    query = search.text_input("Buscar", value=grid.query, placeholder="Buscar em todos os campos")
    if query != grid.query:
        grid.set_query(query)

    if st.session_state["export_bytes"] is None:
        export.button("Exportar Excel", on_click=prepare_export, width="stretch", disabled=not grid.records)
    else:
        export.download_button(
            "Baixar Excel",
            data=st.session_state["export_bytes"],
            file_name=grid.export_filename(),
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            width="stretch",
        )
    if bulk.button(
        f"Excluir selecionados ({len(grid.selected)})",
        width="stretch",
        disabled=not grid.selected or grid.deleting_multiple,
    ):
        st.session_state["pending_delete"] = grid.request_delete_selected()
        st.rerun()


def render_delete_confirmation(grid: DataGrid) -> None:
    request = st.session_state["pending_delete"]
    if request is None:
        return
    st.warning(request.message)
    confirm, cancel = st.columns(2)
    if confirm.button("Confirmar exclusão", type="primary", width="stretch"):
        st.session_state["pending_delete"] = None
        try:
            deleted = grid.confirm_delete(request)
        except PersistenceError as exc:
            st.error(f"Erro ao excluir: {exc}")
            return
        st.session_state["notice"] = build_notice(f"{deleted} registro(s) excluído(s).")
        reload_grid()
        st.rerun()
    if cancel.button("Cancelar", width="stretch"):
        st.session_state["pending_delete"] = None
        st.rerun()


# ── Grid ─────────────────────────────────────────────────────────────────────

def begin_edit(record: dict) -> None:
    try:
        grid_state().begin_edit(record)
    except AlreadyEditingError:
        st.session_state["grid_error"] = "Salve ou cancele a edição em andamento antes de editar outra linha."


def update_draft(field: str, key: str) -> None:
    grid_state().set_editing_field(field, coerce_field_input(field, st.session_state.get(key)))


def commit_edit() -> None:
    try:
        grid_state().commit_edit()
    except PersistenceError as exc:
        st.session_state["grid_error"] = f"Erro ao salvar: {exc}"
        return
    st.session_state["notice"] = build_notice("Registro atualizado.")
    reload_grid()


def render_editor_cell(container, field: str, draft: dict, record_id: str) -> None:
    key = f"edit_{record_id}_{field}"
    value = editor_value(field, draft.get(field))
    if field == LAST_UPDATE_FIELD:
        container.date_input(
            field,
            value=value,
            key=key,
            format="DD/MM/YYYY",
            label_visibility="collapsed",
            on_change=update_draft,
            args=(field, key),
        )
    else:
        container.text_input(
            field,
            value=value,
            key=key,
            label_visibility="collapsed",
            on_change=update_draft,
            args=(field, key),
        )


def render_grid(grid: DataGrid) -> None:
    columns = grid.columns()
    page = grid.page_records()
    widths = [0.5] + [1] * len(columns) + [1.4]

    header = st.columns(widths)
    header[0].checkbox(
        "Selecionar página",
        value=grid.is_page_fully_selected(),
        key=f"select_page_{grid.page}_{int(grid.is_page_fully_selected())}",
        label_visibility="collapsed",
        on_change=grid.toggle_select_all_on_page,
        args=(not grid.is_page_fully_selected(),),
        disabled=not page,
    )
    for index, column in enumerate(columns, start=1):
        header[index].button(
            sort_label(grid, column),
            key=f"sort_{column}",
            on_click=grid.set_sort,
            args=(column,),
        )
    if grid.is_page_partially_selected():
        st.caption("Seleção parcial nesta página.")

    for record in page:
        record_id = record[ID_FIELD]
        cells = st.columns(widths)
        selected = record_id in grid.selected
        cells[0].checkbox(
            "Selecionar",
            value=selected,
            key=f"select_{record_id}_{int(selected)}",
            label_visibility="collapsed",
            on_change=grid.toggle_select,
            args=(record_id, not selected),
        )
        actions = cells[-1]
        if grid.is_editing(record_id):
            for index, column in enumerate(columns, start=1):
                render_editor_cell(cells[index], column, grid.editing.draft, record_id)
            save, cancel = actions.columns(2)
            save.button("Salvar", key=f"save_{record_id}", on_click=commit_edit, disabled=grid.saving)
            cancel.button("Cancelar", key=f"cancel_{record_id}", on_click=grid.cancel_edit)
        else:
            for index, column in enumerate(columns, start=1):
                cells[index].write(format_cell(column, record.get(column)))
            edit, remove, info = actions.columns(3)
            edit.button("✏️", key=f"edit_btn_{record_id}", on_click=begin_edit, args=(record,), help="Editar")
            if remove.button("🗑️", key=f"delete_btn_{record_id}", help="Excluir", disabled=grid.deleting == record_id):
                st.session_state["pending_delete"] = grid.request_delete_one(record_id)
                st.rerun()
            if info.button("ℹ️", key=f"info_btn_{record_id}", help="Descrição NCM"):
                with st.spinner("Buscando descrição..."):
                    open_lookup(record)
                st.rerun()


def render_pagination(grid: DataGrid) -> None:
    total = len(grid.filtered_records())
    previous, label, following = st.columns([1, 3, 1])
    previous.button("Anterior", on_click=grid.previous_page, disabled=grid.page <= 1, width="stretch")
    label.caption(f"Página {grid.page} de {max(grid.total_pages, 1)}  •  {total} registros")
    following.button(
        "Próxima",
        on_click=grid.next_page,
        disabled=grid.page >= grid.total_pages,
        width="stretch",
    )


# ── Manual create ────────────────────────────────────────────────────────────

def render_create_form() -> None:
    with st.expander("Novo registro", expanded=st.session_state["show_create"]):
        with st.form("create_form", clear_on_submit=True):
            values: dict[str, Any] = {}
            form_columns = st.columns(3)
            for index, field in enumerate(EXPECTED_FIELDS):
                container = form_columns[index % 3]
                if field == LAST_UPDATE_FIELD:
                    values[field] = container.date_input(field, value=date.today(), format="DD/MM/YYYY")
                elif field in RATIO_FIELDS:
                    values[field] = container.text_input(field, placeholder="0.18 ou 18")
                else:
                    values[field] = container.text_input(field)
            values[DESCRIPTION_FIELD] = st.text_area("Descrição")
            submitted = st.form_submit_button("Criar", type="primary")

        if not submitted:
            return
        try:
            get_repository().create_record(values)
        except ValidationError as exc:
            st.error(str(exc))
            return
        except PersistenceError as exc:
            st.error(f"Erro ao criar registro: {exc}")
            return
        st.session_state["notice"] = build_notice("Registro criado com sucesso!")
        reload_grid()
        st.rerun()


# ── Lookup panel ─────────────────────────────────────────────────────────────

def open_lookup(record: dict) -> None:
    """Resolve the description once, when the panel is opened."""
    st.session_state["lookup_record"] = record
    st.session_state["lookup_result"] = None
    st.session_state["lookup_error"] = None
    try:
        st.session_state["lookup_result"] = describe(record, get_lookup())
    except DescriptionLookupError as exc:
        st.session_state["lookup_error"] = str(exc)


def close_lookup() -> None:
    st.session_state["lookup_record"] = None
    st.session_state["lookup_result"] = None
    st.session_state["lookup_error"] = None


def render_lookup_panel() -> None:
    record = st.session_state["lookup_record"]
    if record is None:
        return
    code = record.get(NCM_FIELD)
    st.subheader(f"Descrição NCM {format_ncm(code)}")
    result = st.session_state["lookup_result"]
    if st.session_state["lookup_error"]:
        st.error(f"Erro ao buscar descrição da NCM: {st.session_state['lookup_error']}")

    if result is not None:
        st.write(result.description)
        if result.unit:
            st.caption(f"Unidade tributável: {result.unit}")
        if result.chapter_description:
            st.caption(f"Capítulo {result.chapter_code}: {result.chapter_description}")
        if result.note:
            st.info(result.note)
        st.caption(f"Fonte: {result.source}")
    st.markdown(f"[Consultar NCM no Systax]({external_lookup_url(code)})")

    text = st.text_area(
        "Descrição salva",
        value=record.get(DESCRIPTION_FIELD) or (result.description if result and result.found else ""),
        key=f"description_{record[ID_FIELD]}",
    )
    save, close = st.columns(2)
    if save.button("Salvar descrição", width="stretch"):
        try:
            get_repository().save_description(record[ID_FIELD], text)
        except PersistenceError as exc:
            st.error(f"Erro ao salvar descrição: {exc}")
            return
        open_lookup({**record, DESCRIPTION_FIELD: text.strip()})
        st.session_state["notice"] = build_notice("Descrição salva.")
        reload_grid()
        st.rerun()
    if close.button("Fechar", width="stretch"):
        close_lookup()
        st.rerun()


def render_history() -> None:
    with st.expander("Histórico de importações"):
        try:
            batches = get_repository().get_import_history()
        except PersistenceError as exc:
            st.error(str(exc))
            return
        if not batches:
            st.caption("Nenhuma importação ainda.")
            return
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "Data": format_cell("uploaded_at", batch.get("uploaded_at")),
                        "Arquivo": batch.get("file_name") or "-",
                        "Aba": batch.get("sheet_name") or "-",
                        "Linhas": batch.get("total_rows"),
                    }
                    for batch in batches
                ]
            ),
            width="stretch",
            hide_index=True,
        )


@st.fragment(run_every=1)
def render_notice() -> None:
    notice = st.session_state["notice"]
    if notice_is_active(notice):
        st.success(notice["message"])
    elif notice:
        st.session_state["notice"] = None


def main() -> None:
    st.set_page_config(page_title="NCM Dashboard", page_icon="📊", layout="wide")
    ensure_state()
    grid = grid_state()

    st.title("NCM Dashboard")
    st.caption("Importe planilhas de NCM, pesquise, edite e exporte os registros.")

    render_notice()
    if st.session_state["load_error"]:
        st.error(f"Erro ao carregar dados: {st.session_state['load_error']}")
    grid_error = st.session_state.pop("grid_error", None)
    if grid_error:
        st.error(grid_error)

    render_upload_panel()
    render_create_form()
    render_lookup_panel()

    st.subheader("Registros")
    render_toolbar(grid)
    render_delete_confirmation(grid)
    if not grid.records:
        st.info("Nenhum registro. Importe uma planilha para começar.")
    else:
        render_grid(grid)
        render_pagination(grid)
    render_history()


if __name__ == "__main__":
    main()
