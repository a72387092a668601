"""
fields.py — Canonical field names for NCM tariff records.

Spreadsheet headers arrive in many spellings ("Última Atualização", "PIS ",
"U$/KG\nconsiderado"). Everything downstream works with one fixed set of
logical names; the document store gets a storage-safe variant of each.

Public API:
    to_logical_name("ULTIMA ATUALIZAÇÃO")      -> "ultima atualização"
    to_storage_name("U$/KG considerado")       -> "U_por_KG_considerado"
    from_storage_name("U_por_KG_considerado")  -> "U$/KG considerado"
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

NCM_FIELD = "NCM"
LAST_UPDATE_FIELD = "ultima atualização"
CEST_FIELD = "CEST"
USD_PER_KG_FIELD = "U$/KG considerado"
DESCRIPTION_FIELD = "descricao"

EXPECTED_FIELDS = [
    NCM_FIELD,
    LAST_UPDATE_FIELD,
    CEST_FIELD,
    "IVA",
    "II",
    "IPI",
    "PIS",
    "COFINS",
    "ICMS",
    USD_PER_KG_FIELD,
    "Santos",
    "Itajai",
]

RATIO_FIELDS = ("IVA", "II", "IPI", "PIS", "COFINS", "ICMS")
NUMERIC_FIELDS = (USD_PER_KG_FIELD, "Santos", "Itajai")

ID_FIELD = "id"
UPLOADED_AT_FIELD = "uploaded_at"
UPDATED_AT_FIELD = "updated_at"
TIMESTAMP_FIELDS = (UPLOADED_AT_FIELD, UPDATED_AT_FIELD)
INTERNAL_FIELDS = (UPLOADED_AT_FIELD, UPDATED_AT_FIELD, "file_name", "file_size")

# Known spellings seen in real uploads, matched after whitespace/case/accent folding.
FIELD_VARIANTS: dict[str, list[str]] = {
    NCM_FIELD: ["ncm", "código ncm", "codigo ncm"],
    LAST_UPDATE_FIELD: ["última atualização", "ultima atualizacao", "Última Atualização"],
    CEST_FIELD: ["cest"],
    "IVA": ["iva", "mva"],
    "II": ["ii"],
    "IPI": ["ipi"],
    "PIS": ["pis", "PIS "],
    "COFINS": ["cofins"],
    "ICMS": ["icms"],
    USD_PER_KG_FIELD: [
        "U$/KG considerado",
        "U$/KG\nconsiderado",
        "u$/kg considerado",
        "US$/KG considerado",
    ],
    "Santos": ["santos"],
    "Itajai": ["Itajaí", "itajai", "itajaí"],
}

STORAGE_NAMES = {
    USD_PER_KG_FIELD: "U_por_KG_considerado",
    LAST_UPDATE_FIELD: "ultima_atualizacao",
}
LOGICAL_NAMES = {storage: logical for logical, storage in STORAGE_NAMES.items()}

# Names written by older imports that ran the generic sanitizer on these fields.
LEGACY_STORAGE_NAMES = {
    "U_por__KG_considerado": USD_PER_KG_FIELD,
    "ultima_atualização": LAST_UPDATE_FIELD,
}

_FORBIDDEN_STORAGE_CHARS = re.compile(r"[$/~*\[\]\s]")


def collapse_whitespace(text: Any) -> str:
    if text is None:
        return ""
    return re.sub(r"\s+", " ", str(text).replace("\r", "")).strip()


def fold(text: str) -> str:
    """Lower-case and strip accents for tolerant comparisons."""
    decomposed = unicodedata.normalize("NFD", collapse_whitespace(text).lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


_FOLDED_VARIANTS = {
    field: {fold(field), *(fold(variant) for variant in variants)}
    for field, variants in FIELD_VARIANTS.items()
}


def _match_fragments(folded: str) -> str | None:
    if "ncm" in folded and "considerado" not in folded:
        return NCM_FIELD
    if "cest" in folded:
        return CEST_FIELD
    if "ultima" in folded and "atualizacao" in folded:
        return LAST_UPDATE_FIELD
    if "u$" in folded and "kg" in folded and "considerado" in folded:
        return USD_PER_KG_FIELD
    return None


def to_logical_name(raw_header: Any) -> str:
    """Map raw header text to a logical field name, or return it cleaned but unmatched."""
    cleaned = collapse_whitespace(raw_header)
    if not cleaned:
        return ""
    if cleaned in EXPECTED_FIELDS:
        return cleaned

    folded = fold(cleaned)
    for field in EXPECTED_FIELDS:
        if folded in _FOLDED_VARIANTS[field]:
            return field

    return _match_fragments(folded) or cleaned


def sanitize_storage_name(name: str) -> str:
    return _FORBIDDEN_STORAGE_CHARS.sub("_", name)


def to_storage_name(logical_name: str) -> str:
    mapped = STORAGE_NAMES.get(logical_name, logical_name)
    if mapped != logical_name:
        return mapped
    if _FORBIDDEN_STORAGE_CHARS.search(logical_name):
        return sanitize_storage_name(logical_name)
    return logical_name


def from_storage_name(storage_name: str) -> str:
    if storage_name in LOGICAL_NAMES:
        return LOGICAL_NAMES[storage_name]
    return LEGACY_STORAGE_NAMES.get(storage_name, storage_name)


def normalize_record_for_storage(record: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in record.items():
        if key in INTERNAL_FIELDS:
            normalized[key] = value
        else:
            normalized[to_storage_name(key)] = value
    return normalized


def denormalize_record_from_storage(document: dict[str, Any]) -> dict[str, Any]:
    denormalized: dict[str, Any] = {}
    for key, value in document.items():
        if key in INTERNAL_FIELDS or key == ID_FIELD:
            denormalized[key] = value
        else:
            denormalized[from_storage_name(key)] = value
    return denormalized


def superseded_storage_names(record: dict[str, Any]) -> list[str]:
    """Legacy storage keys that a write of `record` replaces."""
    return [legacy for legacy, logical in LEGACY_STORAGE_NAMES.items() if logical in record]


def strip_internal_fields(record: dict[str, Any]) -> dict[str, Any]:
    """Copy of a record without id and store-managed timestamps."""
    return {
        key: value
        for key, value in record.items()
        if key not in (ID_FIELD, UPLOADED_AT_FIELD, UPDATED_AT_FIELD)
    }


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and not value.strip()
