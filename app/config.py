"""Environment-driven settings for catalog ingestion.

Values come from the process environment; a `.env` file at the project root is
loaded first and only fills keys that are not already set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "https://jp.shop.usm.com"
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_DEEPL_URL = "https://api-free.deepl.com/v2/translate"


def load_env_file(path: Optional[str] = None) -> None:
    """Load KEY=VALUE pairs from a .env file if present.

    Only sets variables that aren't already present in the process environment.
    Avoids an external dependency on python-dotenv for this small use case.
    """
    try:
        if path is None:
            root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
            path = os.path.join(root_dir, ".env")
        if not os.path.isfile(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                s = line.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                key, val = s.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key and (key not in os.environ or not os.environ[key]):
                    os.environ[key] = val
    except OSError:
        # Silent fail; loading .env is best-effort
        pass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


@dataclass
class IngestSettings:
    """Top-level settings that control crawling, translation and storage."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    batch_size: int = 5
    user_agent: str = DEFAULT_USER_AGENT
    translator_provider: str = "deepl"
    deepl_api_key: Optional[str] = None
    deepl_api_url: str = DEFAULT_DEEPL_URL
    source_lang: str = "JA"
    target_lang: str = "KO"
    translate_batch_limit: int = 50
    store: str = "neo4j"

    @property
    def headers(self) -> dict:
        return {"User-Agent": self.user_agent}

    @classmethod
    def from_env(cls) -> "IngestSettings":
        load_env_file()
        return cls(
            base_url=(os.getenv("CATALOG_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            timeout=_env_float("CRAWL_TIMEOUT", 30.0),
            batch_size=max(1, _env_int("CRAWL_BATCH_SIZE", 5)),
            user_agent=os.getenv("CRAWL_USER_AGENT") or DEFAULT_USER_AGENT,
            translator_provider=(os.getenv("TRANSLATOR_PROVIDER") or "deepl").lower(),
            deepl_api_key=os.getenv("DEEPL_API_KEY"),
            deepl_api_url=os.getenv("DEEPL_API_URL") or DEFAULT_DEEPL_URL,
            source_lang=(os.getenv("TRANSLATE_SOURCE_LANG") or "JA").upper(),
            target_lang=(os.getenv("TRANSLATE_TARGET_LANG") or "KO").upper(),
            translate_batch_limit=max(1, _env_int("TRANSLATE_BATCH_LIMIT", 50)),
            store=(os.getenv("CATALOG_STORE") or "neo4j").lower(),
        )
