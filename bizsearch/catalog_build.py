from __future__ import annotations

"""
Build an in-memory catalog snapshot from the JSONL export.

The export is streamed line by line.  Blank lines, lines that are not
valid JSON objects and records that fail schema validation are skipped;
records without an id or matching the exclusion registry are dropped.
Every index and aggregate counter is filled in the same pass, and the
resulting ``CatalogSnapshot`` is never modified afterwards apart from
its lazy keyword memo tables.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Tuple

from loguru import logger
from pydantic import ValidationError

from .location import classify_region, region_alias_keys
from .mapping import RecordOverrides, build_company_summary, build_search_text, sanitize_company_record
from .normalize import collation_key
from .schemas import CategoryRef, CompanyRecord, CompanySummary, RubricRef

ExclusionPredicate = Callable[[CompanyRecord], bool]


class CatalogSourceNotFound(FileNotFoundError):
    """The catalog JSONL file does not exist."""


def resolve_catalog_path(path: str | Path) -> Path:
    resolved = Path(path)
    if not resolved.is_file():
        raise CatalogSourceNotFound(
            f"companies.jsonl not found at {resolved}. "
            f"Set BIZSEARCH_COMPANIES_JSONL_PATH or place the export there."
        )
    return resolved


@dataclass
class LoadStats:
    kept: int = 0
    invalid: int = 0
    missing_id: int = 0
    excluded: int = 0


def iter_catalog_records(
    path: str | Path,
    is_excluded: ExclusionPredicate | None = None,
    stats: LoadStats | None = None,
) -> Iterator[CompanyRecord]:
    """Yield valid, non-excluded records in file order."""
    stats = stats if stats is not None else LoadStats()
    with open(path, "rb") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                data = json.loads(line.decode("utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("not an object")
                record = CompanyRecord.model_validate(data)
            except (ValueError, ValidationError):
                stats.invalid += 1
                continue
            if not record.company_id:
                stats.missing_id += 1
                continue
            if is_excluded is not None and is_excluded(record):
                stats.excluded += 1
                continue
            yield record


# ---------------------------
# Snapshot
# ---------------------------

@dataclass
class CatalogSnapshot:
    source_path: str
    mtime: float
    updated_at: str | None = None

    companies_by_id: Dict[str, CompanyRecord] = field(default_factory=dict)
    summaries_by_id: Dict[str, CompanySummary] = field(default_factory=dict)
    region_by_id: Dict[str, str | None] = field(default_factory=dict)
    search_text_by_id: Dict[str, str] = field(default_factory=dict)
    keyword_phrases_by_id: Dict[str, List[str]] = field(default_factory=dict)
    keyword_tokens_by_id: Dict[str, List[str]] = field(default_factory=dict)

    categories_by_slug: Dict[str, CategoryRef] = field(default_factory=dict)
    rubrics_by_slug: Dict[str, RubricRef] = field(default_factory=dict)
    rubric_slugs_by_category: Dict[str, List[str]] = field(default_factory=dict)
    company_ids_by_rubric: Dict[str, List[str]] = field(default_factory=dict)

    company_count_by_region: Dict[str, int] = field(default_factory=dict)
    category_count_all: Dict[str, int] = field(default_factory=dict)
    category_count_by_region: Dict[str, Dict[str, int]] = field(default_factory=dict)
    rubric_count_all: Dict[str, int] = field(default_factory=dict)
    rubric_count_by_region: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def company_count(self) -> int:
        return len(self.companies_by_id)

    def companies_in_region(self, region: str | None) -> int:
        if not region:
            return self.company_count
        return sum(self.company_count_by_region.get(key, 0) for key in region_alias_keys(region))

    def category_count(self, slug: str, region: str | None = None) -> int:
        if not region:
            return self.category_count_all.get(slug, 0)
        return sum(self.category_count_by_region.get(key, {}).get(slug, 0) for key in region_alias_keys(region))

    def rubric_count(self, slug: str, region: str | None = None) -> int:
        if not region:
            return self.rubric_count_all.get(slug, 0)
        return sum(self.rubric_count_by_region.get(key, {}).get(slug, 0) for key in region_alias_keys(region))


def _bump(counter: Dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


def _index_record(snapshot: CatalogSnapshot, record: CompanyRecord) -> None:
    cid = record.company_id
    region = classify_region(record.city, record.region, record.address)

    snapshot.companies_by_id[cid] = record
    snapshot.region_by_id[cid] = region
    snapshot.summaries_by_id[cid] = build_company_summary(record, region)
    snapshot.search_text_by_id[cid] = build_search_text(record)

    if region:
        _bump(snapshot.company_count_by_region, region)

    for cat in record.categories:
        if not cat.slug:
            continue
        snapshot.categories_by_slug.setdefault(cat.slug, cat)
        _bump(snapshot.category_count_all, cat.slug)
        if region:
            _bump(snapshot.category_count_by_region.setdefault(region, {}), cat.slug)

    rubric_slugs: List[str] = []
    for rubric in record.rubrics:
        if not rubric.slug or not rubric.category_slug:
            continue
        snapshot.rubrics_by_slug.setdefault(rubric.slug, rubric)
        _bump(snapshot.rubric_count_all, rubric.slug)
        if region:
            _bump(snapshot.rubric_count_by_region.setdefault(region, {}), rubric.slug)
        in_category = snapshot.rubric_slugs_by_category.setdefault(rubric.category_slug, [])
        if rubric.slug not in in_category:
            in_category.append(rubric.slug)
        if rubric.slug not in rubric_slugs:
            rubric_slugs.append(rubric.slug)

    for slug in rubric_slugs:
        snapshot.company_ids_by_rubric.setdefault(slug, []).append(cid)


def build_catalog_snapshot(
    path: str | Path,
    is_excluded: ExclusionPredicate | None = None,
    overrides: RecordOverrides | None = None,
) -> CatalogSnapshot:
    """
    End-to-end: stream the JSONL export -> sanitize -> classify -> index.

    Raises ``CatalogSourceNotFound`` when the file is missing.
    """
    source = resolve_catalog_path(path)
    mtime = source.stat().st_mtime
    started = time.perf_counter()
    logger.info("Loading catalog from {}", source)

    snapshot = CatalogSnapshot(
        source_path=str(source),
        mtime=mtime,
        updated_at=datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
    )
    stats = LoadStats()
    for record in iter_catalog_records(source, is_excluded, stats):
        _index_record(snapshot, sanitize_company_record(record, overrides))
        stats.kept += 1

    for rubric_slugs in snapshot.rubric_slugs_by_category.values():
        rubric_slugs.sort(key=lambda s: _rubric_sort_key(snapshot, s))

    logger.info(
        "Catalog loaded in {:.2f}s: {} companies, {} categories, {} rubrics "
        "(invalid={}, missing_id={}, excluded={})",
        time.perf_counter() - started,
        snapshot.company_count,
        len(snapshot.categories_by_slug),
        len(snapshot.rubrics_by_slug),
        stats.invalid,
        stats.missing_id,
        stats.excluded,
    )
    return snapshot


def _rubric_sort_key(snapshot: CatalogSnapshot, slug: str) -> Tuple[str, str]:
    rubric = snapshot.rubrics_by_slug.get(slug)
    return collation_key((rubric.name if rubric else "") or slug), slug
