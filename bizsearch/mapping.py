from __future__ import annotations

"""
Record-level transforms applied while loading the catalog.

Raw records are sanitized (placeholder logos dropped, curated logo/map/
website overrides applied, websites de-duplicated per host) and mapped
into the ``CompanySummary`` objects returned by list endpoints.  The
override tables are data (``bizsearch/data/overrides.json``), keyed by
company id in either its original or lower-cased form.
"""

import json
import math
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
from urllib.parse import urlsplit

from loguru import logger
from pydantic import BaseModel, Field

from .config import OVERRIDES_PATH
from .lexicon import Lexicon, default_lexicon
from .normalize import basic_clean, compact_alnum, fold_yo, normalize_whitespace
from .schemas import CompanyRecord, CompanySummary


class MapOverride(BaseModel):
    address: str = ""
    lat: float | None = None
    lng: float | None = None


class RecordOverrides(BaseModel):
    logos: Dict[str, str] = Field(default_factory=dict)
    maps: Dict[str, MapOverride] = Field(default_factory=dict)
    websites: Dict[str, List[str]] = Field(default_factory=dict)
    keywords: Dict[str, List[str]] = Field(default_factory=dict)


def load_overrides(path: str | Path = OVERRIDES_PATH) -> RecordOverrides:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    overrides = RecordOverrides.model_validate(raw)
    logger.debug(
        "Loaded overrides: {} logos, {} maps, {} websites, {} keyword lists",
        len(overrides.logos),
        len(overrides.maps),
        len(overrides.websites),
        len(overrides.keywords),
    )
    return overrides


@lru_cache(maxsize=1)
def default_overrides() -> RecordOverrides:
    return load_overrides(OVERRIDES_PATH)


def _lookup(table: Mapping[str, Any], company_id: str):
    raw = (company_id or "").strip()
    if not raw:
        return None
    if raw in table:
        return table[raw]
    return table.get(raw.lower())


# ---------------------------
# Field normalization
# ---------------------------

PLACEHOLDER_LOGO_SUFFIXES = ("/images/icons/og-icon.png",)
PLACEHOLDER_LOGO_MARKERS = ("/images/logo/no-logo", "/images/logo/no_logo")


def normalize_logo_url(raw: str) -> str:
    url = (raw or "").strip()
    if not url:
        return ""
    low = url.lower()
    if low.endswith(PLACEHOLDER_LOGO_SUFFIXES):
        return ""
    if any(marker in low for marker in PLACEHOLDER_LOGO_MARKERS):
        return ""
    return url


def normalize_websites(raw: Sequence[Any] | None) -> List[str]:
    """
    One URL per host (``www.`` ignored).  A root URL beats a deep link;
    between equals the shorter wins.  Entries without a host are kept
    at the end, de-duplicated case-insensitively.
    """
    if not isinstance(raw, (list, tuple)):
        return []

    by_host: Dict[str, tuple] = {}
    fallback: List[str] = []
    fallback_seen = set()

    for item in raw:
        if not isinstance(item, str):
            continue
        trimmed = item.strip()
        if not trimmed:
            continue

        parts = urlsplit(trimmed)
        if parts.scheme and parts.netloc:
            url = trimmed
        else:
            url = "https://" + trimmed.lstrip("/")
            parts = urlsplit(url)

        try:
            host = (parts.hostname or "").lower()
        except ValueError:
            host = ""
        if not host or " " in host:
            key = trimmed.lower()
            if key not in fallback_seen:
                fallback_seen.add(key)
                fallback.append(trimmed)
            continue

        host_key = re.sub(r"^www\.", "", host)
        is_root = parts.path in ("", "/")
        existing = by_host.get(host_key)
        if existing is None:
            by_host[host_key] = (url, is_root)
            continue
        if is_root and not existing[1]:
            by_host[host_key] = (url, is_root)
        elif is_root == existing[1] and len(url) < len(existing[0]):
            by_host[host_key] = (url, is_root)

    return [url for url, _ in by_host.values()] + fallback


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def sanitize_company_record(record: CompanyRecord, overrides: RecordOverrides | None = None) -> CompanyRecord:
    overrides = overrides or default_overrides()
    company_id = record.company_id
    update: Dict[str, Any] = {}

    logo = normalize_logo_url(record.logo_url)
    logo_override = _lookup(overrides.logos, company_id)
    update["logo_url"] = logo_override or logo

    map_override = _lookup(overrides.maps, company_id)
    if map_override is not None:
        if map_override.address.strip():
            update["address"] = map_override.address.strip()
        extra = dict(record.extra) or {"lat": None, "lng": None}
        if _finite(map_override.lat):
            extra["lat"] = map_override.lat
        if _finite(map_override.lng):
            extra["lng"] = map_override.lng
        update["extra"] = extra

    website_override = _lookup(overrides.websites, company_id)
    if website_override is not None:
        update["websites"] = normalize_websites(website_override)
    else:
        update["websites"] = normalize_websites(record.websites)

    return record.model_copy(update=update)


def keyword_override(company_id: str, overrides: RecordOverrides | None = None) -> List[str] | None:
    """Curated phrases for a company, whitespace-collapsed and de-duplicated case-insensitively."""
    phrases = _lookup((overrides or default_overrides()).keywords, company_id)
    if not phrases:
        return None
    out: List[str] = []
    seen = set()
    for phrase in phrases:
        normalized = normalize_whitespace(str(phrase or ""))
        if not normalized or normalized.lower() in seen:
            continue
        seen.add(normalized.lower())
        out.append(normalized)
    return out or None


# ---------------------------
# Summaries
# ---------------------------

def build_company_summary(record: CompanyRecord, region: str | None) -> CompanySummary:
    category = record.primary_category
    rubric = record.primary_rubric
    return CompanySummary(
        id=record.source_id,
        source=record.source,
        unp=record.unp,
        name=record.name,
        address=record.address,
        city=record.city,
        region=region or "",
        work_hours=dict(record.work_hours),
        phones_ext=list(record.phones_ext),
        phones=list(record.phones),
        emails=list(record.emails),
        websites=list(record.websites),
        description=basic_clean(record.description or record.about),
        about=basic_clean(record.about),
        logo_url=record.logo_url,
        primary_category_slug=category.slug if category else None,
        primary_category_name=category.name if category else None,
        primary_rubric_slug=rubric.slug if rubric else None,
        primary_rubric_name=rubric.name if rubric else None,
    )


def logo_rank(summary: CompanySummary | None) -> int:
    """2 for a real logo image, 1 for a named company without one."""
    if summary is None:
        return 0
    if normalize_logo_url(summary.logo_url):
        return 2
    return 1 if summary.name.strip() else 0


_INITIALISM_NOISE_RE = re.compile(r"[№«»\"'“”„]")
_NON_ALNUM_RE = re.compile(r"[\W_]+")


def name_initialism(name: str, lexicon: Lexicon | None = None) -> str:
    """``ООО "Минский Завод Колёсных Тягачей"`` -> ``мзкт``; numbers are kept whole."""
    legal_forms = (lexicon or default_lexicon()).search.legal_form_words
    text = _INITIALISM_NOISE_RE.sub(" ", fold_yo((name or "").lower()))
    parts: List[str] = []
    for token in _NON_ALNUM_RE.sub(" ", text).split():
        if token in legal_forms:
            continue
        parts.append(token if token.isdigit() else token[0])
    return compact_alnum("".join(parts))


def build_search_text(record: CompanyRecord) -> str:
    fields = [
        record.name,
        record.description,
        record.about,
        record.address,
        " ".join(record.phones),
        " ".join(record.emails),
        " ".join(record.websites),
    ]
    return " ".join(f for f in fields if f).lower()
