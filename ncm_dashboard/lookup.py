"""
lookup.py — NCM code -> description from the bundled reference table.

The reference table is read at most once per cache object. Callers that
arrive while a load is running wait on the same future instead of starting
a second read. When the table has no entry, an optional enricher gets a
chance; after that the result points the user to the external lookup page.
"""

from __future__ import annotations

import re
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ncm_dashboard.codec import format_ncm
from ncm_dashboard.errors import DescriptionLookupError
from ncm_dashboard.fields import DESCRIPTION_FIELD, NCM_FIELD, collapse_whitespace, is_blank
from ncm_dashboard.loader import load_path
from ncm_dashboard.log import get_logger

REFERENCE_SOURCE = "Tabela NCM 2022 - Receita Federal do Brasil"
EXTERNAL_SOURCE = "Systax - Classificação Fiscal"
EXTERNAL_LOOKUP_URL = "https://www.systax.com.br/classificacaofiscal/ncm/{code}"
DEFAULT_DESCRIPTION = "Descrição não disponível"
MIN_CODE_LENGTH = 8

UNLOADED = "unloaded"
LOADING = "loading"
READY = "ready"

logger = get_logger("lookup")


@dataclass
class LookupResult:
    description: str
    source: str
    found: bool = True
    unit: Optional[str] = None
    link: Optional[str] = None
    note: Optional[str] = None
    chapter_code: Optional[str] = None
    chapter_description: Optional[str] = None
    ncm_table: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "source": self.source,
            "found": self.found,
            "unit": self.unit,
            "link": self.link,
            "note": self.note,
            "chapter_code": self.chapter_code,
            "chapter_description": self.chapter_description,
            "ncm_table": list(self.ncm_table),
        }


def clean_code(code: Any) -> str:
    return re.sub(r"[.\s]", "", "" if code is None else str(code))


def external_lookup_url(code: Any) -> str:
    return EXTERNAL_LOOKUP_URL.format(code=re.sub(r"\D", "", clean_code(code)))


class ReferenceTableCache:
    """Process-scoped holder for the loaded reference table."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = UNLOADED
        self._data: Optional[dict[str, dict[str, Any]]] = None
        self._pending: Optional[Future] = None

    @property
    def state(self) -> str:
        return self._state

    def get(self, loader: Callable[[], dict[str, dict[str, Any]]]) -> dict[str, dict[str, Any]]:
        with self._lock:
            if self._state == READY:
                return self._data
            if self._state == LOADING:
                pending = self._pending
                owner = False
            else:
                pending = Future()
                self._pending = pending
                self._state = LOADING
                owner = True

        if not owner:
            return pending.result()

        try:
            data = loader()
        except Exception as exc:
            with self._lock:
                self._state = UNLOADED
                self._pending = None
            pending.set_exception(exc)
            raise

        with self._lock:
            self._data = data
            self._state = READY
            self._pending = None
        pending.set_result(data)
        return data

    def clear(self) -> None:
        with self._lock:
            if self._state == LOADING:
                return
            self._data = None
            self._state = UNLOADED


def _detect_reference_columns(header: list[Any]) -> tuple[int, int, Optional[int]]:
    ncm_col, desc_col, unit_col = 0, 1, None
    for index, cell in enumerate(header):
        text = collapse_whitespace(cell).lower()
        if "ncm" in text or "código" in text:
            ncm_col = index
        if "descrição" in text or "descricao" in text or "desc" in text:
            desc_col = index
        if "utrib" in text or "u.trib" in text or "unidade" in text:
            unit_col = index
    return ncm_col, desc_col, unit_col


def load_reference_table(path: Path | str) -> dict[str, dict[str, Any]]:
    """Read the reference sheet into {clean code: {description, unit}}."""
    rows = load_path(path)["rows"]
    if not rows:
        return {}
    ncm_col, desc_col, unit_col = _detect_reference_columns(rows[0])

    table: dict[str, dict[str, Any]] = {}
    for row in rows[1:]:
        if ncm_col >= len(row) or row[ncm_col] is None:
            continue
        raw_code = row[ncm_col]
        if isinstance(raw_code, float) and raw_code.is_integer():
            raw_code = int(raw_code)
        code = clean_code(raw_code)
        if len(code) < MIN_CODE_LENGTH:
            continue
        description = row[desc_col] if desc_col < len(row) else None
        unit = row[unit_col] if unit_col is not None and unit_col < len(row) else None
        table[code] = {
            "description": collapse_whitespace(description) or DEFAULT_DESCRIPTION,
            "unit": None if is_blank(unit) else collapse_whitespace(unit),
        }
    logger.info("Loaded reference table %s with %d codes", path, len(table))
    return table


class NcmLookup:
    def __init__(
        self,
        cache: ReferenceTableCache,
        table_path: Path | str,
        enricher=None,
    ) -> None:
        self.cache = cache
        self.table_path = Path(table_path)
        self.enricher = enricher

    def _table(self) -> dict[str, dict[str, Any]]:
        try:
            return self.cache.get(lambda: load_reference_table(self.table_path))
        except (OSError, ValueError) as exc:
            raise DescriptionLookupError(f"Não foi possível carregar a tabela NCM: {exc}") from exc

    def lookup(self, code: Any) -> LookupResult:
        clean = clean_code(code)
        if len(clean) < MIN_CODE_LENGTH:
            raise DescriptionLookupError("NCM inválido")

        table = self._table()
        entry = table.get(clean)
        if entry is None:
            for key, value in table.items():
                if clean in key or key in clean:
                    entry = value
                    break
        if entry is not None:
            return LookupResult(
                description=entry["description"],
                unit=entry.get("unit"),
                source=REFERENCE_SOURCE,
                link=external_lookup_url(clean),
            )

        if self.enricher is not None:
            enriched = self.enricher.try_enrich(clean)
            if enriched is not None:
                return enriched
            logger.info("No external description for %s", clean)

        formatted = format_ncm(clean)
        return LookupResult(
            description=f"NCM {formatted} não encontrado na tabela. Verifique se o código está correto.",
            source=REFERENCE_SOURCE,
            found=False,
            link=external_lookup_url(clean),
            note="Este código NCM não foi encontrado na tabela oficial.",
        )


def describe(record: dict[str, Any], lookup: NcmLookup) -> LookupResult:
    """A saved description wins over the reference table."""
    saved = record.get(DESCRIPTION_FIELD)
    if not is_blank(saved):
        return LookupResult(
            description=str(saved).strip(),
            source="Descrição salva",
            link=external_lookup_url(record.get(NCM_FIELD)),
        )
    return lookup.lookup(record.get(NCM_FIELD))
