from __future__ import annotations

"""
Client for the accelerated full-text engine (a Meilisearch index) and
the search policy that combines it with the in-process ranking engine.

The engine is tried first with a short timeout.  Its answer is used
when it returns companies, or when the request carries no query signal
at all; otherwise (empty result, timeout, HTTP or decoding error) the
in-process ranking engine answers instead.
"""

from typing import Any, Dict, List, Sequence

import httpx
from loguru import logger

from .config import FULLTEXT_CONNECT_TIMEOUT, HTTP_USER_AGENT, FullTextSettings
from .exclusions import ExclusionRegistry, escape_filter_value
from .location import split_service_and_city
from .mapping import normalize_websites
from .ranking import SearchQuery
from .schemas import CompanySummary, SearchResponse

RETRIEVED_ATTRIBUTES: List[str] = [
    "id", "source", "unp", "name", "description", "about", "address", "city",
    "region", "phones", "phones_ext", "emails", "websites", "logo_url",
    "primary_category_slug", "primary_category_name",
    "primary_rubric_slug", "primary_rubric_name",
    "work_hours_status", "work_hours_time",
]


class FullTextError(Exception):
    """The full-text engine could not answer (transport, HTTP status or payload)."""


def document_to_summary(doc: Dict[str, Any]) -> CompanySummary:
    work_hours = {}
    if doc.get("work_hours_status"):
        work_hours["status"] = doc["work_hours_status"]
    if doc.get("work_hours_time"):
        work_hours["work_time"] = doc["work_hours_time"]
    return CompanySummary(
        id=str(doc.get("id") or ""),
        source=doc.get("source") or "",
        unp=str(doc.get("unp") or ""),
        name=doc.get("name") or "",
        address=doc.get("address") or "",
        city=doc.get("city") or "",
        region=doc.get("region") or "",
        work_hours=work_hours,
        phones_ext=doc.get("phones_ext") or [],
        phones=doc.get("phones") or [],
        emails=doc.get("emails") or [],
        websites=normalize_websites(doc.get("websites") or []),
        description=doc.get("description") or "",
        about=doc.get("about") or "",
        logo_url=doc.get("logo_url") or "",
        primary_category_slug=doc.get("primary_category_slug"),
        primary_category_name=doc.get("primary_category_name"),
        primary_rubric_slug=doc.get("primary_rubric_slug"),
        primary_rubric_name=doc.get("primary_rubric_name"),
    )


def build_search_payload(
    params: SearchQuery,
    keywords: str | None = None,
    exclusion_filters: Sequence[str] = (),
) -> Dict[str, Any]:
    offset, limit = params.page()
    filters: List[str] = []
    if params.region:
        filters.append(f'region = "{escape_filter_value(params.region)}"')
    if params.category:
        filters.append(f'category_slugs = "{escape_filter_value(params.category)}"')
    if params.rubric:
        filters.append(f'rubric_slugs = "{escape_filter_value(params.rubric)}"')
    filters.extend(exclusion_filters)

    company = (params.query or "").strip()
    service = (params.service or "").strip()
    extra = (keywords or "").strip()
    city = (params.city or "").strip()
    terms = [t for t in (company, service, extra, city) if t]
    q = " ".join(terms)

    attributes: List[str] = []
    if company:
        attributes.append("name")
    if service or extra:
        attributes.append("keywords")
    if city:
        attributes += ["city", "address"]

    payload: Dict[str, Any] = {
        "q": q,
        "offset": offset,
        "limit": limit,
        "attributesToRetrieve": RETRIEVED_ATTRIBUTES,
    }
    if filters:
        payload["filter"] = filters
    if attributes:
        payload["attributesToSearchOn"] = attributes
    if q:
        payload["matchingStrategy"] = "all"
    return payload


class FullTextClient:
    def __init__(
        self,
        settings: FullTextSettings,
        exclusions: ExclusionRegistry | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings
        self.exclusions = exclusions
        headers = {"User-Agent": HTTP_USER_AGENT}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        self._client = httpx.Client(
            base_url=settings.url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(settings.timeout, connect=min(settings.timeout, FULLTEXT_CONNECT_TIMEOUT)),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def search(self, params: SearchQuery, keywords: str | None = None) -> SearchResponse:
        exclusion_filters = self.exclusions.engine_filters() if self.exclusions is not None else []
        payload = build_search_payload(params, keywords, exclusion_filters)
        try:
            r = self._client.post(f"/indexes/{self.settings.index}/search", json=payload)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPError as e:
            raise FullTextError(f"full-text search failed: {e}") from e
        except ValueError as e:
            raise FullTextError(f"full-text search returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("hits"), list):
            raise FullTextError("full-text search returned an unexpected payload")
        companies = [document_to_summary(hit) for hit in data["hits"] if isinstance(hit, dict)]
        total = int(data.get("estimatedTotalHits") or data.get("totalHits") or len(companies))
        return SearchResponse(query=params.query or "", total=total, companies=companies)


# ---------------------------
# Result policy
# ---------------------------

def canonical_slug(company_id: str) -> str:
    return (company_id or "").strip().lower()


def dedupe_by_canonical_slug(companies: Sequence[CompanySummary]) -> List[CompanySummary]:
    """One company per slug; an entry whose id already is the slug wins."""
    out: List[CompanySummary] = []
    index_by_slug: Dict[str, int] = {}
    for company in companies:
        slug = canonical_slug(company.id)
        existing_index = index_by_slug.get(slug)
        if existing_index is None:
            index_by_slug[slug] = len(out)
            out.append(company)
            continue
        existing = out[existing_index]
        if existing.id != canonical_slug(existing.id) and company.id == slug:
            out[existing_index] = company
    return out


def _clean(result: SearchResponse, exclusions: ExclusionRegistry | None) -> SearchResponse:
    companies = dedupe_by_canonical_slug(result.companies)
    kept = [c for c in companies if exclusions is None or not exclusions.is_excluded(c)]
    removed = len(companies) - len(kept)
    return SearchResponse(query=result.query, total=max(0, result.total - removed), companies=kept)


def search_with_fallback(
    service,
    params: SearchQuery,
    fulltext: FullTextClient | None = None,
    keywords: str | None = None,
) -> SearchResponse:
    """
    Search through the full-text engine when configured, falling back
    to ``service.search`` (a ``CatalogService``).  A city mentioned in
    the service text is moved to the city filter first.
    """
    service_text, city = split_service_and_city(params.service, params.city)
    params = SearchQuery(
        query=params.query or "",
        service=service_text,
        city=city,
        region=params.region or None,
        rubric=params.rubric or None,
        category=params.category or None,
        offset=params.offset,
        limit=params.limit,
    )
    exclusions = getattr(service, "exclusions", None)
    has_query = any(
        (v or "").strip() for v in (params.query, params.service, keywords, params.city)
    )

    if fulltext is not None:
        try:
            result = _clean(fulltext.search(params, keywords), exclusions)
        except FullTextError as e:
            logger.warning("Full-text engine unavailable, using in-process search: {}", e)
        else:
            if not has_query or result.companies:
                return result
            logger.debug("Full-text engine returned nothing for {!r}; using in-process search", params.service or params.query)

    return _clean(service.search(params), exclusions)
