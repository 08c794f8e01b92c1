from __future__ import annotations

"""
FastAPI application exposing the catalog read operations.

- ``/api/search`` tries the full-text engine first and falls back to
  the in-process ranking engine
- unknown rubrics and companies are 404s, distinct from empty results
- excluded companies are never returned, even if they were blacklisted
  after the current snapshot was built
"""

import threading
from typing import List

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .catalog_build import CatalogSourceNotFound
from .config import (
    COMPANIES_MAX_IDS,
    RUBRIC_DEFAULT_LIMIT,
    RUBRIC_HINTS_DEFAULT_LIMIT,
    SEARCH_DEFAULT_LIMIT,
    SUGGEST_DEFAULT_LIMIT,
    configure_logging,
    load_settings,
)
from .fulltext import FullTextClient, search_with_fallback
from .ranking import SearchQuery
from .schemas import (
    CatalogResponse,
    CompaniesResponse,
    CompanyResponse,
    HealthResponse,
    RubricHintsResponse,
    RubricResponse,
    SearchResponse,
    SuggestResponse,
)
from .store import CatalogService, CompanyNotFound, RubricNotFound


def _opt(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def create_app(
    service: CatalogService | None = None,
    fulltext: FullTextClient | None = None,
    warm: bool = True,
) -> FastAPI:
    log_level = None
    if service is None:
        settings = load_settings()
        log_level = settings.log_level
        service = CatalogService(settings)
        if fulltext is None and settings.fulltext.enabled:
            fulltext = FullTextClient(settings.fulltext, exclusions=service.exclusions)

    app = FastAPI(title="bizsearch")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service
    app.state.fulltext = fulltext

    def _warm() -> None:
        try:
            service.warm()
        except CatalogSourceNotFound as e:
            logger.warning("Catalog warmup skipped: {}", e)

    @app.on_event("startup")
    def startup_event() -> None:
        if log_level:
            configure_logging(log_level)
        if warm:
            logger.info("Starting catalog warmup...")
            threading.Thread(target=_warm, name="catalog-warmup", daemon=True).start()

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        if fulltext is not None:
            fulltext.close()

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="healthy", companies=service.company_count())

    @app.get("/api/catalog", response_model=CatalogResponse)
    def catalog(region: str | None = None) -> CatalogResponse:
        return service.catalog(_opt(region))

    @app.get("/api/rubric", response_model=RubricResponse)
    def rubric(
        slug: str = "",
        region: str | None = None,
        q: str | None = None,
        offset: int = 0,
        limit: int = RUBRIC_DEFAULT_LIMIT,
    ) -> RubricResponse:
        slug = slug.strip()
        if not slug:
            raise HTTPException(status_code=400, detail="missing_slug")
        try:
            data = service.rubric_companies(slug, _opt(region), q, offset, limit)
        except RubricNotFound:
            raise HTTPException(status_code=404, detail="rubric_not_found")
        kept = [c for c in data.companies if not service.exclusions.is_excluded(c)]
        removed = len(data.companies) - len(kept)
        data.page.total = max(0, data.page.total - removed)
        data.companies = kept
        return data

    @app.get("/api/company/{company_id}", response_model=CompanyResponse)
    def company(company_id: str) -> CompanyResponse:
        company_id = company_id.strip()
        if not company_id:
            raise HTTPException(status_code=400, detail="missing_id")
        if service.exclusions.is_excluded_id(company_id):
            raise HTTPException(status_code=404, detail="company_not_found")
        try:
            data = service.get_company(company_id)
        except CompanyNotFound:
            raise HTTPException(status_code=404, detail="company_not_found")
        if service.exclusions.is_excluded(data.company):
            raise HTTPException(status_code=404, detail="company_not_found")
        return data

    @app.get("/api/suggest", response_model=SuggestResponse)
    def suggest(q: str = "", region: str | None = None, limit: int = SUGGEST_DEFAULT_LIMIT) -> SuggestResponse:
        return service.suggest(q, _opt(region), limit)

    @app.get("/api/rubric-hints", response_model=RubricHintsResponse)
    def rubric_hints(text: str = "", limit: int = RUBRIC_HINTS_DEFAULT_LIMIT) -> RubricHintsResponse:
        return RubricHintsResponse(hints=service.rubric_hints(text, limit))

    @app.get("/api/search", response_model=SearchResponse)
    def search(
        q: str = "",
        service_query: str = Query("", alias="service"),
        keywords: str | None = None,
        region: str | None = None,
        city: str | None = None,
        rubric: str | None = None,
        category: str | None = None,
        offset: int = 0,
        limit: int = SEARCH_DEFAULT_LIMIT,
    ) -> SearchResponse:
        params = SearchQuery(
            query=q,
            service=service_query,
            city=city or "",
            region=_opt(region),
            rubric=_opt(rubric),
            category=_opt(category),
            offset=offset,
            limit=limit,
        )
        return search_with_fallback(service, params, fulltext, _opt(keywords))

    @app.get("/api/companies", response_model=CompaniesResponse)
    def companies(ids: str = "") -> CompaniesResponse:
        wanted: List[str] = [s.strip() for s in ids.split(",") if s.strip()][:COMPANIES_MAX_IDS]
        if not wanted:
            return CompaniesResponse(companies=[])
        found = service.companies_summary(wanted)
        return CompaniesResponse(companies=[c for c in found if not service.exclusions.is_excluded(c)])

    return app


app = create_app()
