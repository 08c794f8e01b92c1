from __future__ import annotations
"""
Configuration for the business-directory search backend.

Paths, tuning constants and the environment-driven settings objects
live here.  Nothing in this module touches the catalog itself; the
store, the keyword runtime and the API receive a ``StoreSettings``
instance explicitly.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Literal, Mapping

from loguru import logger
from pydantic import BaseModel, Field

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = PROJECT_ROOT / "data"
LEXICON_DIR = PACKAGE_DIR / "data"
LOG_DIR = PROJECT_ROOT / "logs"

DEFAULT_COMPANIES_JSONL_PATH = DATA_DIR / "companies.jsonl"
DEFAULT_BLACKLIST_PATH = Path(tempfile.gettempdir()) / "bizsearch-liquidated-blacklist.json"

LEXICON_PATH = LEXICON_DIR / "lexicon.ru.json"
GEO_DICTIONARY_PATH = LEXICON_DIR / "keyword_geo.ru.json"
SYNONYM_RULES_PATH = LEXICON_DIR / "keyword_synonyms.ru.json"
OVERRIDES_PATH = LEXICON_DIR / "overrides.json"

# Keyword derivation
DEFAULT_MAX_KEYWORDS = 10
MAX_KEYWORDS_LIMIT = 10
MAX_PHRASE_WORDS = 6
MAX_VARIANTS_PER_CORE = 1
MIN_BUY_KEYWORDS = 2
MAX_SYNONYMS_PER_PHRASE = 3

# Base scores per extraction pattern.  Transactional variants must
# outrank the bare phrase of the same source.
BASE_SCORES: Dict[str, float] = {
    "service": 120,
    "service_order": 129,
    "service_call": 126,
    "service_services": 124,
    "service_synonym": 117,
    "product": 118,
    "product_sale": 127,
    "product_buy": 126,
    "product_buy_wholesale": 125,
    "product_purchase": 123,
    "product_purchase_wholesale": 122,
    "product_synonym": 114,
    "repeated_head": 112,
    "repeated_head_sale": 110,
    "repeated_head_buy": 109,
    "product_list_description": 109,
    "product_list_about": 106,
    "activity_description": 84,
    "activity_about": 81,
    "rubric": 58,
    "category": 54,
}

VOLUME_BOOST_FACTOR = 8.0
LENGTH_PENALTY_FREE_WORDS = 3
LENGTH_PENALTY_PER_WORD = 0.4

# Catalog / search result policy
SEARCH_DEFAULT_LIMIT = 24
SEARCH_MAX_LIMIT = 200
RUBRIC_DEFAULT_LIMIT = 24
RUBRIC_MAX_LIMIT = 200
SUGGEST_DEFAULT_LIMIT = 8
SUGGEST_MAX_LIMIT = 20
SUGGEST_MIN_QUERY_CHARS = 2
COMPANIES_MAX_IDS = 200
RUBRIC_HINTS_DEFAULT_LIMIT = 8
RUBRIC_HINTS_MAX_LIMIT = 12
RUBRIC_HINTS_MAX_TOKENS = 8
RUBRIC_HINTS_MAX_CHARS = 600

REGION_SLUGS: List[str] = ["minsk", "minsk-region", "brest", "vitebsk", "gomel", "grodno", "mogilev"]

# Accelerated full-text engine
DEFAULT_FULLTEXT_INDEX = "companies"
DEFAULT_FULLTEXT_TIMEOUT = 1.5
FULLTEXT_CONNECT_TIMEOUT = 0.5
HTTP_USER_AGENT = "bizsearch/0.1 (+catalog search backend)"

# Env names
STATS_FILES_ENV_KEYS: List[str] = [
    "KEYWORDS_STATS_FILES",
    "KEYWORD_STATS_FILES",
    "KEYWORDS_WORDSTAT_CSV",
    "KEYWORDS_ANALYTICS_CSV",
    "KEYWORDS_GA_CSV",
    "KEYWORDS_GSC_CSV",
    "KEYWORDS_METRIKA_CSV",
]
STRICT_STATS_ENV_KEYS: List[str] = ["KEYWORDS_STRICT_STATS", "KEYWORD_STRICT_STATS"]
FALLBACK_MODE_ENV_KEYS: List[str] = ["KEYWORDS_FALLBACK_MODE", "KEYWORD_FALLBACK_MODE"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


# Settings schemas
class KeywordSettings(BaseModel):
    stats_files: List[str] = Field(default_factory=list)
    strict_stats: bool = False
    fallback_mode: Literal["rubrics", "short"] = "rubrics"
    max_keywords: int = Field(default=DEFAULT_MAX_KEYWORDS, ge=1, le=MAX_KEYWORDS_LIMIT)


class FullTextSettings(BaseModel):
    url: str = ""
    api_key: str = ""
    index: str = DEFAULT_FULLTEXT_INDEX
    timeout: float = Field(default=DEFAULT_FULLTEXT_TIMEOUT, gt=0)

    @property
    def enabled(self) -> bool:
        return bool(self.url.strip())


class StoreSettings(BaseModel):
    companies_path: Path = DEFAULT_COMPANIES_JSONL_PATH
    blacklist_path: Path = DEFAULT_BLACKLIST_PATH
    log_level: str = "INFO"
    keywords: KeywordSettings = Field(default_factory=KeywordSettings)
    fulltext: FullTextSettings = Field(default_factory=FullTextSettings)


def env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def _first_env(env: Mapping[str, str], keys: List[str]) -> str:
    for key in keys:
        value = (env.get(key) or "").strip()
        if value:
            return value
    return ""


def load_keyword_settings(env: Mapping[str, str] | None = None) -> KeywordSettings:
    env = os.environ if env is None else env
    from .stats import parse_stats_paths

    files: List[str] = []
    for key in STATS_FILES_ENV_KEYS:
        for path in parse_stats_paths(env.get(key)):
            if path not in files:
                files.append(path)

    mode = _first_env(env, FALLBACK_MODE_ENV_KEYS).lower()
    return KeywordSettings(
        stats_files=files,
        strict_stats=env_flag(_first_env(env, STRICT_STATS_ENV_KEYS)),
        fallback_mode="short" if mode == "short" else "rubrics",
    )


def load_settings(env: Mapping[str, str] | None = None) -> StoreSettings:
    """
    Build settings from environment variables.  ``env`` defaults to
    ``os.environ``; tests pass a plain dict.
    """
    env = os.environ if env is None else env

    companies_path = (env.get("BIZSEARCH_COMPANIES_JSONL_PATH") or "").strip()
    blacklist_path = (env.get("BIZSEARCH_LIQUIDATED_BLACKLIST_PATH") or "").strip()
    timeout_raw = (env.get("MEILI_TIMEOUT") or "").strip()
    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_FULLTEXT_TIMEOUT
    except ValueError:
        logger.warning("Ignoring invalid MEILI_TIMEOUT={!r}", timeout_raw)
        timeout = DEFAULT_FULLTEXT_TIMEOUT
    if timeout <= 0:
        timeout = DEFAULT_FULLTEXT_TIMEOUT

    return StoreSettings(
        companies_path=Path(companies_path) if companies_path else DEFAULT_COMPANIES_JSONL_PATH,
        blacklist_path=Path(blacklist_path) if blacklist_path else DEFAULT_BLACKLIST_PATH,
        log_level=(env.get("BIZSEARCH_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
        keywords=load_keyword_settings(env),
        fulltext=FullTextSettings(
            url=(env.get("MEILI_URL") or "").strip(),
            api_key=(env.get("MEILI_API_KEY") or "").strip(),
            index=(env.get("MEILI_INDEX") or DEFAULT_FULLTEXT_INDEX).strip() or DEFAULT_FULLTEXT_INDEX,
            timeout=timeout,
        ),
    )


def configure_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """Replace loguru's default sink; optionally add a rotating file sink."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        path = Path(log_file)
        if not path.is_absolute():
            LOG_DIR.mkdir(exist_ok=True)
            path = LOG_DIR / path
        logger.add(str(path), level=level.upper(), rotation="10 MB", retention=5, encoding="utf-8")
