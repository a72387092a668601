"""Best-effort NCM descriptions scraped from the Systax classification pages."""

from __future__ import annotations

import re
from typing import Optional

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ncm_dashboard.codec import format_ncm
from ncm_dashboard.log import get_logger
from ncm_dashboard.lookup import EXTERNAL_SOURCE, LookupResult, external_lookup_url

NCM_CELL_RE = re.compile(r"^\d{8}$|^\d{4}\.\d{2}\.\d{2}$")
MIN_DESCRIPTION_LENGTH = 6
MAX_CHAPTER_DESCRIPTION = 300

logger = get_logger("enrich")


def get_session() -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": "ncm-dashboard/0.1"})
    return session


def _cell_text(cell) -> str:
    return re.sub(r"\s+", " ", cell.get_text(" ", strip=True)).strip()


def parse_ncm_rows(html: str, code: str) -> list[dict[str, str]]:
    """Collect (ncm, description) pairs from the first table on the page."""
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table")
    if table is None:
        return []

    formatted = format_ncm(code)
    rows: list[dict[str, str]] = []
    for tr in table.find_all("tr"):
        cells = [_cell_text(td) for td in tr.find_all("td")]
        if len(cells) < 2:
            continue
        for index, text in enumerate(cells[:-1]):
            if NCM_CELL_RE.match(text) or code in text or formatted in text:
                ncm = text if NCM_CELL_RE.match(text) else formatted
                description = cells[index + 1]
                if len(description) >= MIN_DESCRIPTION_LENGTH:
                    rows.append({"ncm": format_ncm(ncm), "description": description})
                break
    return rows


def parse_chapter_description(html: str, chapter_code: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "strong"]):
        if _cell_text(heading) != chapter_code:
            continue
        sibling = heading.find_next(["p", "div"])
        if sibling is None:
            continue
        text = _cell_text(sibling)
        if len(text) > MAX_CHAPTER_DESCRIPTION:
            text = text[:MAX_CHAPTER_DESCRIPTION] + "..."
        return text or None
    return None


class SystaxEnricher:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10) -> None:
        self.session = session or get_session()
        self.timeout = timeout

    def try_enrich(self, code: str) -> Optional[LookupResult]:
        """Description for a clean NCM code, or None when the page gives nothing usable."""
        url = external_lookup_url(code)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Systax request failed for %s: %s", code, exc)
            return None

        rows = parse_ncm_rows(response.text, code)
        if not rows:
            return None

        formatted = format_ncm(code)
        match = next((row for row in rows if row["ncm"] == formatted), rows[0])
        chapter_code = code[:4]
        return LookupResult(
            description=match["description"],
            source=EXTERNAL_SOURCE,
            link=url,
            chapter_code=chapter_code,
            chapter_description=parse_chapter_description(response.text, chapter_code),
            ncm_table=rows,
        )
