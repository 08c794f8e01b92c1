from __future__ import annotations

"""
Catalog store handle.

``CatalogService`` owns the current ``CatalogSnapshot`` and its
lifecycle: the snapshot is rebuilt when the source file's mtime
changes, concurrent callers asking for the same (path, mtime) share one
in-flight build, and a failed rebuild keeps serving the previous
snapshot.  All read operations (catalog tree, rubric pages, company
cards, suggestions, rubric hints, search) run against one immutable
snapshot per call.
"""

import os
import re
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Iterable, List, Tuple

from loguru import logger

from .catalog_build import (
    CatalogSnapshot,
    build_catalog_snapshot,
    iter_catalog_records,
    resolve_catalog_path,
)
from .config import (
    COMPANIES_MAX_IDS,
    RUBRIC_DEFAULT_LIMIT,
    RUBRIC_HINTS_DEFAULT_LIMIT,
    RUBRIC_HINTS_MAX_CHARS,
    RUBRIC_HINTS_MAX_LIMIT,
    RUBRIC_HINTS_MAX_TOKENS,
    RUBRIC_MAX_LIMIT,
    SUGGEST_DEFAULT_LIMIT,
    SUGGEST_MAX_LIMIT,
    SUGGEST_MIN_QUERY_CHARS,
    StoreSettings,
)
from .exclusions import ExclusionRegistry
from .keywords import KeywordRuntime, generate_company_keyword_phrases, phrases_to_search_tokens
from .lexicon import Lexicon, default_lexicon
from .location import region_matches
from .mapping import RecordOverrides, default_overrides, keyword_override, sanitize_company_record
from .normalize import collation_key, compact_alnum
from .ranking import SearchQuery, compact_name_match, score_service_tokens, search_companies, tokenize_service_text
from .schemas import (
    CatalogResponse,
    CatalogStats,
    CategoryEntry,
    CompanyRecord,
    CompanyResponse,
    CompanySummary,
    PageInfo,
    PrimaryRefs,
    RubricEntry,
    RubricHint,
    RubricInfo,
    RubricResponse,
    SearchResponse,
    SuggestResponse,
    Suggestion,
)

DASH_VARIANTS_RE = re.compile(r"[-‐‑‒–—―]")
MAX_CATEGORY_HINTS = 2


class RubricNotFound(LookupError):
    """No rubric with the requested slug exists in the catalog."""


class CompanyNotFound(LookupError):
    """No (non-excluded) company with the requested id exists."""


def normalize_company_id_for_match(raw: str) -> str:
    return DASH_VARIANTS_RE.sub("", (raw or "").lower())


def rubric_url(category_slug: str, slug: str) -> str:
    return f"/catalog/{category_slug}/{'/'.join(slug.split('/')[1:])}"


def company_url(company_id: str) -> str:
    return f"/company/{company_id}"


def _primary(record: CompanyRecord) -> PrimaryRefs:
    category = record.primary_category
    rubric = record.primary_rubric
    return PrimaryRefs(
        category_slug=category.slug if category else None,
        rubric_slug=rubric.slug if rubric else None,
    )


class CatalogService:
    def __init__(
        self,
        settings: StoreSettings | None = None,
        exclusions: ExclusionRegistry | None = None,
        keyword_runtime: KeywordRuntime | None = None,
        lexicon: Lexicon | None = None,
        overrides: RecordOverrides | None = None,
    ):
        self.settings = settings or StoreSettings()
        self.exclusions = exclusions or ExclusionRegistry(self.settings.blacklist_path)
        self.keyword_runtime = keyword_runtime or KeywordRuntime(self.settings.keywords)
        self.lexicon = lexicon or default_lexicon()
        self.overrides = overrides or default_overrides()

        self._snapshot: CatalogSnapshot | None = None
        self._lock = threading.Lock()
        self._inflight: Tuple[Tuple[str, float], Future] | None = None

    # ---------------------------
    # Snapshot lifecycle
    # ---------------------------

    @property
    def source_path(self) -> Path:
        return Path(self.settings.companies_path)

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> CatalogSnapshot:
        """
        Current snapshot, rebuilding it first if the source file changed.

        Only one build runs per (path, mtime); other callers wait on it.
        If the build fails and an older snapshot exists, that snapshot
        is returned instead of the error.
        """
        try:
            path = resolve_catalog_path(self.source_path)
            key = (str(path), os.stat(path).st_mtime)
        except FileNotFoundError:
            if self._snapshot is not None:
                logger.warning("Catalog source {} disappeared; serving stale snapshot", self.source_path)
                return self._snapshot
            raise

        current = self._snapshot
        if current is not None and (current.source_path, current.mtime) == key:
            return current

        with self._lock:
            current = self._snapshot
            if current is not None and (current.source_path, current.mtime) == key:
                return current
            if self._inflight is not None and self._inflight[0] == key:
                future = self._inflight[1]
                owner = False
            else:
                future = Future()
                self._inflight = (key, future)
                owner = True

        if owner:
            try:
                snapshot = build_catalog_snapshot(path, self.exclusions.is_excluded, self.overrides)
            except Exception as e:
                future.set_exception(e)
            else:
                self._snapshot = snapshot
                future.set_result(snapshot)
            finally:
                with self._lock:
                    if self._inflight is not None and self._inflight[1] is future:
                        self._inflight = None

        try:
            return future.result()
        except Exception as e:
            stale = self._snapshot
            if stale is not None:
                logger.warning("Catalog reload failed ({}); serving stale snapshot from {}", e, stale.updated_at)
                return stale
            raise

    def reload(self) -> CatalogSnapshot:
        return self.snapshot()

    def warm(self) -> None:
        self.snapshot()

    # ---------------------------
    # Keywords (memoized per snapshot)
    # ---------------------------

    def build_keyword_phrases(self, record: CompanyRecord) -> List[str]:
        override = keyword_override(record.company_id, self.overrides)
        if override:
            return override
        return generate_company_keyword_phrases(record, self.keyword_runtime.options(), self.lexicon)

    def keyword_phrases(self, snapshot: CatalogSnapshot, company_id: str) -> List[str]:
        cid = (company_id or "").strip()
        if not cid:
            return []
        cached = snapshot.keyword_phrases_by_id.get(cid)
        if cached is not None:
            return cached
        record = snapshot.companies_by_id.get(cid)
        if record is None:
            return []
        phrases = self.build_keyword_phrases(record)
        snapshot.keyword_phrases_by_id[cid] = phrases
        return phrases

    def keyword_tokens(self, snapshot: CatalogSnapshot, company_id: str) -> List[str]:
        cid = (company_id or "").strip()
        cached = snapshot.keyword_tokens_by_id.get(cid)
        if cached is not None:
            return cached
        tokens = phrases_to_search_tokens(self.keyword_phrases(snapshot, cid), self.lexicon)
        if cid:
            snapshot.keyword_tokens_by_id[cid] = tokens
        return tokens

    # ---------------------------
    # Read operations
    # ---------------------------

    def catalog(self, region: str | None = None) -> CatalogResponse:
        snap = self.snapshot()
        categories: List[CategoryEntry] = []
        ordered = sorted(snap.categories_by_slug.values(), key=lambda c: (collation_key(c.name or c.slug), c.slug))
        for cat in ordered:
            rubrics: List[RubricEntry] = []
            for slug in snap.rubric_slugs_by_category.get(cat.slug, []):
                rubric = snap.rubrics_by_slug.get(slug)
                if rubric is None:
                    continue
                rubrics.append(RubricEntry(
                    slug=rubric.slug,
                    name=rubric.name or rubric.slug,
                    url=rubric.url,
                    count=snap.rubric_count(rubric.slug, region),
                ))
            categories.append(CategoryEntry(
                slug=cat.slug,
                name=cat.name or cat.slug,
                url=cat.url,
                company_count=snap.category_count(cat.slug, region),
                rubrics=rubrics,
            ))

        return CatalogResponse(
            stats=CatalogStats(
                companies_total=snap.companies_in_region(region),
                categories_total=len(snap.categories_by_slug),
                rubrics_total=len(snap.rubrics_by_slug),
                updated_at=snap.updated_at,
                source_path=snap.source_path,
            ),
            categories=categories,
        )

    def rubric_companies(
        self,
        slug: str,
        region: str | None = None,
        query: str | None = None,
        offset: int = 0,
        limit: int = RUBRIC_DEFAULT_LIMIT,
    ) -> RubricResponse:
        snap = self.snapshot()
        rubric = snap.rubrics_by_slug.get(slug)
        if rubric is None:
            raise RubricNotFound(slug)

        q = (query or "").strip().lower()
        filtered: List[str] = []
        for cid in snap.company_ids_by_rubric.get(slug, []):
            if not region_matches(region, snap.region_by_id.get(cid)):
                continue
            if q and q not in snap.search_text_by_id.get(cid, ""):
                continue
            filtered.append(cid)

        offset = max(0, int(offset or 0))
        limit = max(1, min(RUBRIC_MAX_LIMIT, int(limit or RUBRIC_DEFAULT_LIMIT)))
        companies = [snap.summaries_by_id[cid] for cid in filtered[offset:offset + limit] if cid in snap.summaries_by_id]

        return RubricResponse(
            rubric=RubricInfo(
                slug=rubric.slug,
                name=rubric.name or rubric.slug,
                url=rubric.url,
                category_slug=rubric.category_slug,
                category_name=rubric.category_name or rubric.category_slug,
                count=snap.rubric_count(rubric.slug, region),
            ),
            companies=companies,
            page=PageInfo(offset=offset, limit=limit, total=len(filtered)),
        )

    def _find_company_cold(self, raw_id: str) -> Tuple[str, CompanyRecord] | None:
        """Stream the source file for one id before any snapshot exists."""
        target_lower = raw_id.lower()
        target_normalized = normalize_company_id_for_match(raw_id)
        fallback: Tuple[str, CompanyRecord] | None = None
        path = resolve_catalog_path(self.source_path)
        for record in iter_catalog_records(path, self.exclusions.is_excluded):
            cid = record.company_id
            if cid == raw_id or cid.lower() == target_lower:
                return cid, sanitize_company_record(record, self.overrides)
            if fallback is None and target_normalized and normalize_company_id_for_match(cid) == target_normalized:
                fallback = (cid, sanitize_company_record(record, self.overrides))
        return fallback

    def get_company(self, company_id: str) -> CompanyResponse:
        raw_id = (company_id or "").strip()
        if not raw_id:
            raise CompanyNotFound(raw_id)

        if self._snapshot is None:
            found = self._find_company_cold(raw_id)
            if found is not None:
                cid, record = found
                return CompanyResponse(
                    id=cid,
                    company=record,
                    generated_keywords=self.build_keyword_phrases(record),
                    primary=_primary(record),
                )

        snap = self.snapshot()
        cid = raw_id
        record = snap.companies_by_id.get(cid)
        if record is None:
            normalized = DASH_VARIANTS_RE.sub("", raw_id)
            if normalized and normalized != raw_id:
                cid = normalized
                record = snap.companies_by_id.get(cid)
        if record is None:
            raise CompanyNotFound(raw_id)

        return CompanyResponse(
            id=cid,
            company=record,
            generated_keywords=self.keyword_phrases(snap, cid),
            primary=_primary(record),
        )

    def suggest(self, query: str, region: str | None = None, limit: int = SUGGEST_DEFAULT_LIMIT) -> SuggestResponse:
        """Categories, then rubrics (name substring), then companies (name, compact id, initialism)."""
        snap = self.snapshot()
        q = (query or "").strip().lower()
        limit = max(1, min(SUGGEST_MAX_LIMIT, int(limit or SUGGEST_DEFAULT_LIMIT)))
        if len(q) < SUGGEST_MIN_QUERY_CHARS:
            return SuggestResponse(query=query or "", suggestions=[])

        q_compact = compact_alnum(q)
        suggestions: List[Suggestion] = []

        for cat in snap.categories_by_slug.values():
            if len(suggestions) >= limit:
                break
            if q not in cat.name.lower():
                continue
            suggestions.append(Suggestion(
                type="category",
                slug=cat.slug,
                name=cat.name or cat.slug,
                url=f"/catalog/{cat.slug}",
                count=snap.category_count(cat.slug, region),
            ))

        for rubric in snap.rubrics_by_slug.values():
            if len(suggestions) >= limit:
                break
            if q not in rubric.name.lower():
                continue
            suggestions.append(Suggestion(
                type="rubric",
                slug=rubric.slug,
                name=rubric.name or rubric.slug,
                url=rubric_url(rubric.category_slug, rubric.slug),
                category_name=rubric.category_name or rubric.category_slug,
                count=snap.rubric_count(rubric.slug, region),
            ))

        for cid, summary in snap.summaries_by_id.items():
            if len(suggestions) >= limit:
                break
            if not region_matches(region, snap.region_by_id.get(cid)):
                continue
            if q not in summary.name.lower() and not compact_name_match(snap, cid, q_compact, self.lexicon):
                continue
            if self.exclusions.is_excluded(summary):
                continue
            suggestions.append(Suggestion(
                type="company",
                id=cid,
                name=summary.name,
                url=company_url(cid),
                subtitle=summary.address or summary.city or "",
            ))

        return SuggestResponse(query=query or "", suggestions=suggestions)

    def rubric_hints(self, text: str, limit: int = RUBRIC_HINTS_DEFAULT_LIMIT) -> List[RubricHint]:
        """
        Rubrics and categories that best match free text.  Up to two
        categories of the best rubric matches come first, then the
        rubrics themselves; when no rubric matches a known category,
        categories are ranked on their own names.
        """
        snap = self.snapshot()
        limit = max(1, min(RUBRIC_HINTS_MAX_LIMIT, int(limit or RUBRIC_HINTS_DEFAULT_LIMIT)))
        tokens = tokenize_service_text((text or "")[:RUBRIC_HINTS_MAX_CHARS], self.lexicon)[:RUBRIC_HINTS_MAX_TOKENS]
        if not tokens:
            return []

        scored = []
        for rubric in snap.rubrics_by_slug.values():
            name_score = score_service_tokens(tokenize_service_text(rubric.name, self.lexicon), tokens)
            category_score = score_service_tokens(
                tokenize_service_text(rubric.category_name or rubric.category_slug, self.lexicon), tokens
            )
            score = name_score * 3 + category_score
            if score <= 0:
                continue
            category_slug = rubric.category_slug or rubric.slug.split("/")[0]
            scored.append((score, snap.rubric_count(rubric.slug), rubric, category_slug))
        scored.sort(key=lambda m: (-m[0], -m[1], collation_key(m[2].slug)))

        category_hints: List[RubricHint] = []
        seen = set()
        for _, _, _, category_slug in scored:
            if len(category_hints) >= min(MAX_CATEGORY_HINTS, limit):
                break
            key = category_slug.strip().lower()
            cat = snap.categories_by_slug.get(category_slug.strip())
            if not key or key in seen or cat is None:
                continue
            seen.add(key)
            category_hints.append(RubricHint(type="category", slug=cat.slug, name=cat.name or cat.slug, url=f"/catalog/{cat.slug}"))

        rubric_hints = [
            RubricHint(
                type="rubric",
                slug=rubric.slug,
                name=rubric.name or rubric.slug,
                url=rubric_url(rubric.category_slug, rubric.slug),
                category_slug=category_slug,
                category_name=rubric.category_name or rubric.category_slug,
            )
            for _, _, rubric, category_slug in scored[:max(0, limit - len(category_hints))]
        ]
        if category_hints:
            return (category_hints + rubric_hints)[:limit]

        category_matches = []
        for cat in snap.categories_by_slug.values():
            score = score_service_tokens(tokenize_service_text(cat.name or cat.slug, self.lexicon), tokens)
            if score > 0:
                category_matches.append((score, snap.category_count(cat.slug), cat))
        category_matches.sort(key=lambda m: (-m[0], -m[1], collation_key(m[2].slug)))
        fallback = [
            RubricHint(type="category", slug=cat.slug, name=cat.name or cat.slug, url=f"/catalog/{cat.slug}")
            for _, _, cat in category_matches[:limit]
        ]
        return fallback or rubric_hints[:limit]

    def search(self, params: SearchQuery) -> SearchResponse:
        snap = self.snapshot()
        return search_companies(snap, params, lambda cid: self.keyword_tokens(snap, cid), self.lexicon)

    def companies_summary(self, ids: Iterable[str]) -> List[CompanySummary]:
        snap = self.snapshot()
        out: List[CompanySummary] = []
        for raw in list(ids)[:COMPANIES_MAX_IDS]:
            summary = snap.summaries_by_id.get((raw or "").strip())
            if summary is not None:
                out.append(summary)
        return out

    def company_count(self) -> int | None:
        return self._snapshot.company_count if self._snapshot is not None else None
