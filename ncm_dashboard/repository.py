"""Spreadsheet records and import history persisted through the document store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from ncm_dashboard.codec import coerce_field_input, today_serial
from ncm_dashboard.config import HISTORY_LIMIT, LIST_LIMIT, settings
from ncm_dashboard.contracts import build_import_batch
from ncm_dashboard.errors import ValidationError
from ncm_dashboard.fields import (
    DESCRIPTION_FIELD,
    EXPECTED_FIELDS,
    LAST_UPDATE_FIELD,
    NCM_FIELD,
    UPDATED_AT_FIELD,
    UPLOADED_AT_FIELD,
    denormalize_record_from_storage,
    is_blank,
    normalize_record_for_storage,
    strip_internal_fields,
    superseded_storage_names,
)
from ncm_dashboard.log import get_logger
from ncm_dashboard.store import DocumentStore

DATA_COLLECTION = "spreadsheet_data"
IMPORTS_COLLECTION = "imports"
MANUAL_SHEET_NAME = "Manual"

logger = get_logger("repository")


class SpreadsheetRepository:
    def __init__(self, store: Optional[DocumentStore] = None) -> None:
        self.store = store or DocumentStore(settings.DATABASE_URL)

    def save_spreadsheet_data(self, parsed: dict, metadata: Optional[dict[str, Any]] = None) -> dict:
        """Insert every parsed row, then append one import batch describing the upload."""
        metadata = dict(metadata or {})
        uploaded_at = datetime.now()
        document_ids: list[str] = []
        for row in parsed["rows"]:
            payload = normalize_record_for_storage(row)
            payload[UPLOADED_AT_FIELD] = uploaded_at
            payload.update(metadata)
            document_ids.append(self.store.insert(DATA_COLLECTION, payload))

        batch = build_import_batch(parsed, metadata, uploaded_at)
        self.store.insert(IMPORTS_COLLECTION, batch)
        logger.info(
            "Saved %d rows from sheet %s (%s)",
            len(document_ids),
            parsed.get("sheet_name"),
            metadata.get("file_name", "no file"),
        )
        return {"success": True, "total_rows": len(document_ids), "document_ids": document_ids}

    def get_all_data(self, limit: int = LIST_LIMIT) -> list[dict[str, Any]]:
        documents = self.store.list(DATA_COLLECTION, UPLOADED_AT_FIELD, "desc", limit)
        return [denormalize_record_from_storage(document) for document in documents]

    def get_import_history(self, limit: int = HISTORY_LIMIT) -> list[dict[str, Any]]:
        return self.store.list(IMPORTS_COLLECTION, UPLOADED_AT_FIELD, "desc", limit)

    def update_data(self, record_id: str, record: dict[str, Any]) -> None:
        fields = strip_internal_fields(record)
        payload = normalize_record_for_storage(fields)
        payload[UPDATED_AT_FIELD] = datetime.now()
        self.store.update(DATA_COLLECTION, record_id, payload, drop_keys=superseded_storage_names(fields))
        logger.info("Updated record %s", record_id)

    def delete_data(self, record_id: str) -> None:
        self.store.delete(DATA_COLLECTION, record_id)
        logger.info("Deleted record %s", record_id)

    def delete_multiple_data(self, record_ids: Iterable[str]) -> int:
        deleted = self.store.delete_many(DATA_COLLECTION, record_ids)
        logger.info("Deleted %d records", deleted)
        return deleted

    def create_record(self, draft: dict[str, Any]) -> dict:
        """Manual entry: NCM is required and the last-update date defaults to today."""
        if is_blank(draft.get(NCM_FIELD)):
            raise ValidationError("NCM é obrigatório")

        record = {field: coerce_field_input(field, draft.get(field)) for field in EXPECTED_FIELDS}
        if is_blank(record[LAST_UPDATE_FIELD]):
            record[LAST_UPDATE_FIELD] = today_serial()
        description = draft.get(DESCRIPTION_FIELD)
        if not is_blank(description):
            record[DESCRIPTION_FIELD] = str(description).strip()

        parsed = {
            "rows": [record],
            "headers": list(EXPECTED_FIELDS),
            "sheet_name": MANUAL_SHEET_NAME,
        }
        return self.save_spreadsheet_data(parsed, {"file_name": MANUAL_SHEET_NAME})

    def save_description(self, record_id: str, text: str) -> str:
        description = (text or "").strip()
        self.store.update(DATA_COLLECTION, record_id, {DESCRIPTION_FIELD: description})
        return description
