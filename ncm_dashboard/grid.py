"""
grid.py — In-memory working set behind the records table.

DataGrid holds the last full load of records and layers search, sorting,
pagination, a single-row edit session and a cross-page selection on top.
Persistence goes through the repository it was given; reloading after a
mutation is up to the caller.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from functools import cmp_to_key
from typing import Any, Optional

from ncm_dashboard.codec import leading_float, today_serial
from ncm_dashboard.config import PAGE_SIZE
from ncm_dashboard.errors import AlreadyEditingError, CommitInProgressError, NotEditingError
from ncm_dashboard.exporter import export_filename, export_records
from ncm_dashboard.fields import (
    EXPECTED_FIELDS,
    ID_FIELD,
    LAST_UPDATE_FIELD,
    NCM_FIELD,
    NUMERIC_FIELDS,
    RATIO_FIELDS,
    strip_internal_fields,
)
from ncm_dashboard.log import get_logger

ASCENDING = "asc"
DESCENDING = "desc"
SORT_NUMERIC_FIELDS = RATIO_FIELDS + NUMERIC_FIELDS

logger = get_logger("grid")


@dataclass
class EditSession:
    record_id: str
    draft: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeletionRequest:
    record_ids: tuple[str, ...]
    message: str
    batch: bool


def _sort_value(field_name: str, record: dict[str, Any]) -> Any:
    value = record.get(field_name)
    if field_name == NCM_FIELD:
        digits = re.sub(r"\D", "", "" if value is None else str(value))
        return int(digits) if digits else 0
    if field_name in SORT_NUMERIC_FIELDS:
        return leading_float(value)
    return "" if value is None else value


def _compare(left: Any, right: Any) -> int:
    # Ties never return 0, so equal keys keep no guaranteed order.
    try:
        greater = left > right
    except TypeError:
        greater = str(left) > str(right)
    return 1 if greater else -1


class DataGrid:
    def __init__(self, repository=None, page_size: int = PAGE_SIZE) -> None:
        self.repository = repository
        self.page_size = page_size
        self.records: list[dict[str, Any]] = []
        self.query = ""
        self.sort_field = NCM_FIELD
        self.sort_direction = ASCENDING
        self.page = 1
        self.editing: Optional[EditSession] = None
        self.selected: set[str] = set()
        self.loading = False
        self.saving = False
        self.deleting: Optional[str] = None
        self.deleting_multiple = False

    # ── Loading ──────────────────────────────────────────────────────────────

    def load(self, records: list[dict[str, Any]]) -> None:
        self.records = list(records)

    def reload(self) -> list[dict[str, Any]]:
        self.loading = True
        try:
            self.load(self.repository.get_all_data())
        finally:
            self.loading = False
        return self.records

    def columns(self) -> list[str]:
        if not self.records:
            return list(EXPECTED_FIELDS)
        present = set()
        for record in self.records:
            present.update(record.keys())
        return [name for name in EXPECTED_FIELDS if name in present]

    # ── Filter / sort / paginate ─────────────────────────────────────────────

    def set_query(self, text: str) -> None:
        self.query = text or ""
        self.page = 1

    def set_sort(self, field_name: str, direction: Optional[str] = None) -> None:
        """Header-click sorting; an explicit direction skips the toggle."""
        if direction is not None:
            self.sort_direction = direction
        elif self.sort_field == field_name and self.sort_direction == ASCENDING:
            self.sort_direction = DESCENDING
        else:
            self.sort_direction = ASCENDING
        self.sort_field = field_name

    def _matches(self, record: dict[str, Any], term: str) -> bool:
        return any(term in str(value).lower() for value in record.values() if value is not None)

    def filtered_records(self) -> list[dict[str, Any]]:
        if not self.query:
            return list(self.records)
        term = self.query.lower()
        return [record for record in self.records if self._matches(record, term)]

    def visible_records(self) -> list[dict[str, Any]]:
        records = self.filtered_records()
        if not self.sort_field:
            return records
        descending = self.sort_direction == DESCENDING

        def compare(a: dict[str, Any], b: dict[str, Any]) -> int:
            left = _sort_value(self.sort_field, a)
            right = _sort_value(self.sort_field, b)
            return _compare(right, left) if descending else _compare(left, right)

        return sorted(records, key=cmp_to_key(compare))

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.filtered_records()) / self.page_size)

    def set_page(self, page: int) -> None:
        self.page = max(1, int(page))

    def next_page(self) -> None:
        self.page = min(self.total_pages or 1, self.page + 1)

    def previous_page(self) -> None:
        self.page = max(1, self.page - 1)

    def page_records(self) -> list[dict[str, Any]]:
        start = (self.page - 1) * self.page_size
        return self.visible_records()[start:start + self.page_size]

    # ── Edit session ─────────────────────────────────────────────────────────

    def begin_edit(self, record: dict[str, Any]) -> dict[str, Any]:
        record_id = record[ID_FIELD]
        if self.editing is not None:
            if self.editing.record_id != record_id:
                raise AlreadyEditingError(f"Record {self.editing.record_id} is already being edited")
            return self.editing.draft
        self.editing = EditSession(record_id, strip_internal_fields(record))
        return self.editing.draft

    def set_editing_field(self, field_name: str, value: Any) -> None:
        if self.editing is None:
            raise NotEditingError("No record is being edited")
        self.editing.draft = {**self.editing.draft, field_name: value}

    def cancel_edit(self) -> None:
        self.editing = None

    def is_editing(self, record_id: str) -> bool:
        return self.editing is not None and self.editing.record_id == record_id

    def commit_edit(self) -> dict[str, Any]:
        """Save the draft with today's last-update date; the session survives a failed save."""
        if self.editing is None:
            raise NotEditingError("No record is being edited")
        if self.saving:
            raise CommitInProgressError(f"Record {self.editing.record_id} is already being saved")

        self.saving = True
        try:
            payload = strip_internal_fields(self.editing.draft)
            payload[LAST_UPDATE_FIELD] = today_serial()
            self.repository.update_data(self.editing.record_id, payload)
            logger.info("Committed edit for %s", self.editing.record_id)
            self.editing = None
            return payload
        finally:
            self.saving = False

    # ── Selection ────────────────────────────────────────────────────────────

    def toggle_select(self, record_id: str, on: Optional[bool] = None) -> None:
        if on is None:
            on = record_id not in self.selected
        if on:
            self.selected.add(record_id)
        else:
            self.selected.discard(record_id)

    def _page_ids(self) -> list[str]:
        return [record[ID_FIELD] for record in self.page_records() if ID_FIELD in record]

    def toggle_select_all_on_page(self, on: bool) -> None:
        for record_id in self._page_ids():
            self.toggle_select(record_id, on)

    def is_page_fully_selected(self) -> bool:
        ids = self._page_ids()
        return bool(ids) and all(record_id in self.selected for record_id in ids)

    def is_page_partially_selected(self) -> bool:
        ids = self._page_ids()
        chosen = sum(1 for record_id in ids if record_id in self.selected)
        return 0 < chosen < len(ids)

    def clear_selection(self) -> None:
        self.selected.clear()

    # ── Deletion (confirm-gated) ─────────────────────────────────────────────

    def request_delete_one(self, record_id: str) -> DeletionRequest:
        return DeletionRequest((record_id,), "Tem certeza que deseja excluir este registro?", batch=False)

    def request_delete_selected(self) -> Optional[DeletionRequest]:
        if not self.selected:
            return None
        ids = tuple(sorted(self.selected))
        return DeletionRequest(ids, f"Tem certeza que deseja excluir {len(ids)} registro(s)?", batch=True)

    def confirm_delete(self, request: DeletionRequest) -> int:
        if request.batch:
            return self._delete_selected(request.record_ids)
        return self._delete_one(request.record_ids[0])

    def _delete_one(self, record_id: str) -> int:
        self.deleting = record_id
        try:
            self.repository.delete_data(record_id)
            self.selected.discard(record_id)
            return 1
        finally:
            self.deleting = None

    def _delete_selected(self, record_ids: tuple[str, ...]) -> int:
        self.deleting_multiple = True
        try:
            deleted = self.repository.delete_multiple_data(record_ids)
            self.selected.difference_update(record_ids)
            return deleted
        finally:
            self.deleting_multiple = False

    # ── Export ───────────────────────────────────────────────────────────────

    def export_visible(self) -> bytes:
        """Workbook bytes for the full loaded record set, ignoring search and paging."""
        return export_records(self.records)

    @staticmethod
    def export_filename(day: Optional[date] = None) -> str:
        return export_filename(day)
