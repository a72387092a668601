"""Runtime settings, read from the environment and an optional .env file."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

PAGE_SIZE = 50
LIST_LIMIT = 1000
HISTORY_LIMIT = 50

_FALSE_VALUES = {"0", "false", "no", "off", "nao", "não"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in _FALSE_VALUES


class Settings:
    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./ncm_dashboard.db")
        self.REFERENCE_TABLE: Path = Path(
            os.getenv(
                "NCM_REFERENCE_TABLE",
                str(BASE_DIR / "sample-data" / "tabela_ncm_sample.csv"),
            )
        )
        self.ENABLE_ENRICHMENT: bool = _env_flag("NCM_ENABLE_ENRICHMENT", True)
        self.LOG_DIR: Path = Path(
            os.getenv("NCM_DASHBOARD_LOG_DIR", str(Path.home() / ".ncm_dashboard" / "logs"))
        )


settings = Settings()
