"""Shared payload shapes for import batches and CLI JSON output."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

CONTRACT_VERSIONS = {
    "ncm_dashboard.import_summary": "1.0.0",
    "ncm_dashboard.lookup": "1.0.0",
    "ncm_dashboard.listing": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_import_batch(
    parsed: dict[str, Any],
    metadata: Optional[dict[str, Any]],
    uploaded_at: datetime,
) -> dict[str, Any]:
    batch = {
        "total_rows": len(parsed["rows"]),
        "headers": list(parsed.get("headers") or []),
        "sheet_name": parsed.get("sheet_name"),
        "uploaded_at": uploaded_at,
    }
    batch.update(metadata or {})
    return batch


def build_import_summary(
    *,
    file_name: str,
    parsed: dict[str, Any],
    saved: Optional[dict[str, Any]] = None,
    warnings: Optional[list[str]] = None,
) -> dict[str, Any]:
    return {
        "contract": build_contract("ncm_dashboard.import_summary"),
        "generated_at": utc_now_iso(),
        "status": "saved" if saved else "dry_run",
        "input_file": file_name,
        "sheet_name": parsed.get("sheet_name"),
        "headers": list(parsed.get("headers") or []),
        "missing_fields": list(parsed.get("missing_fields") or []),
        "rows_parsed": len(parsed["rows"]),
        "rows_saved": saved["total_rows"] if saved else 0,
        "document_ids": list(saved["document_ids"]) if saved else [],
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
    }
