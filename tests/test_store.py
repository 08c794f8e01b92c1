from __future__ import annotations

import os
import threading
import time

import pytest

import bizsearch.store as store_module
from bizsearch.catalog_build import CatalogSourceNotFound
from bizsearch.ranking import SearchQuery
from bizsearch.store import CatalogService, CompanyNotFound, RubricNotFound, rubric_url

from conftest import make_records, write_jsonl


def bump_mtime(path, seconds: float = 10.0) -> None:
    st = os.stat(path)
    os.utime(path, (st.st_atime, st.st_mtime + seconds))


# --------------------------------------------------------------------------- #
# Snapshot lifecycle
# --------------------------------------------------------------------------- #


class TestLifecycle:
    def test_lazy_load(self, service):
        assert not service.loaded
        assert service.company_count() is None
        service.warm()
        assert service.loaded
        assert service.company_count() == 4

    def test_same_mtime_reuses_snapshot(self, service):
        assert service.snapshot() is service.snapshot()

    def test_reload_on_mtime_change(self, service, catalog_path):
        first = service.snapshot()
        write_jsonl(catalog_path, make_records()[:2])
        bump_mtime(catalog_path)
        second = service.reload()
        assert second is not first
        assert second.company_count == 2

    def test_missing_source_without_snapshot(self, settings, exclusions, tmp_path):
        settings = settings.model_copy(update={"companies_path": tmp_path / "absent.jsonl"})
        with pytest.raises(CatalogSourceNotFound):
            CatalogService(settings, exclusions=exclusions).snapshot()

    def test_missing_source_serves_stale(self, service, catalog_path):
        first = service.snapshot()
        os.remove(catalog_path)
        assert service.snapshot() is first

    def test_failed_rebuild_serves_stale(self, service, catalog_path, monkeypatch):
        first = service.snapshot()

        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(store_module, "build_catalog_snapshot", boom)
        bump_mtime(catalog_path)
        assert service.snapshot() is first

    def test_concurrent_callers_share_one_build(self, service, monkeypatch):
        calls = []
        real_build = store_module.build_catalog_snapshot

        def slow_build(*args, **kwargs):
            calls.append(1)
            time.sleep(0.2)
            return real_build(*args, **kwargs)

        monkeypatch.setattr(store_module, "build_catalog_snapshot", slow_build)
        results = []
        threads = [threading.Thread(target=lambda: results.append(service.snapshot())) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(calls) == 1
        assert len({id(r) for r in results}) == 1

    def test_excluded_companies_not_loaded(self, settings, exclusions):
        exclusions.remember_liquidated({"source_id": "nowhere"})
        service = CatalogService(settings, exclusions=exclusions)
        assert service.company_count() is None
        assert "nowhere" not in service.snapshot().companies_by_id


# --------------------------------------------------------------------------- #
# Catalog and rubric pages
# --------------------------------------------------------------------------- #


class TestCatalog:
    def test_tree(self, service):
        data = service.catalog()
        assert data.stats.companies_total == 4
        assert data.stats.categories_total == 2
        assert data.stats.rubrics_total == 2
        assert [c.slug for c in data.categories] == ["services", "food"]
        food = data.categories[1]
        assert food.company_count == 2
        assert [(r.slug, r.count) for r in food.rubrics] == [("food/dairy", 2)]

    def test_tree_by_region(self, service):
        data = service.catalog("gomel")
        assert data.stats.companies_total == 2
        counts = {c.slug: c.company_count for c in data.categories}
        assert counts == {"services": 1, "food": 1}

    def test_rubric_filtered_by_region(self, service):
        page = service.rubric_companies("services/repair", region="gomel")
        assert [c.id for c in page.companies] == ["obuvgomel"]
        assert page.page.total == 1
        assert page.rubric.count == 1
        assert page.rubric.category_name == "Бытовые услуги"

    def test_rubric_text_filter_and_paging(self, service):
        page = service.rubric_companies("services/repair", query="иванов")
        assert [c.id for c in page.companies] == ["nowhere"]

        page = service.rubric_companies("services/repair", offset=1, limit=1)
        assert [c.id for c in page.companies] == ["nowhere"]
        assert (page.page.offset, page.page.limit, page.page.total) == (1, 1, 2)

    def test_unknown_rubric(self, service):
        with pytest.raises(RubricNotFound):
            service.rubric_companies("food/none")

    def test_rubric_url(self):
        assert rubric_url("food", "food/dairy") == "/catalog/food/dairy"


# --------------------------------------------------------------------------- #
# Company cards
# --------------------------------------------------------------------------- #


class TestCompany:
    def test_get_company(self, service):
        data = service.get_company("gomelmoloko")
        assert data.id == "gomelmoloko"
        assert data.primary.rubric_slug == "food/dairy"
        assert data.generated_keywords == ["купить молоко", "молочная промышленность", "продукты питания"]

    def test_dash_variant(self, service):
        service.warm()
        assert service.get_company("obuv-gomel").id == "obuvgomel"

    def test_cold_lookup_does_not_build_snapshot(self, service):
        data = service.get_company("OBUVGOMEL")
        assert data.id == "obuvgomel"
        assert not service.loaded

    def test_cold_lookup_dash_variant(self, service):
        assert service.get_company("obuv–gomel").id == "obuvgomel"
        assert not service.loaded

    def test_unknown_company(self, service):
        with pytest.raises(CompanyNotFound):
            service.get_company("nope")
        with pytest.raises(CompanyNotFound):
            service.get_company("   ")

    def test_keyword_memo(self, service):
        snap = service.snapshot()
        first = service.keyword_tokens(snap, "syrodel")
        assert service.keyword_tokens(snap, "syrodel") is first
        assert "syrodel" in snap.keyword_phrases_by_id
        assert service.keyword_tokens(snap, "missing") == []


# --------------------------------------------------------------------------- #
# Discovery
# --------------------------------------------------------------------------- #


class TestSuggest:
    def test_mixed_suggestions(self, service):
        result = service.suggest("мол")
        assert [(s.type, s.slug or s.id) for s in result.suggestions] == [
            ("rubric", "food/dairy"),
            ("company", "gomelmoloko"),
        ]
        assert result.suggestions[0].url == "/catalog/food/dairy"
        assert result.suggestions[1].url == "/company/gomelmoloko"

    def test_short_query(self, service):
        assert service.suggest("м").suggestions == []

    def test_region_filters_companies(self, service):
        assert [s.id for s in service.suggest("ооо", region="gomel").suggestions] == []
        assert [s.id for s in service.suggest("ооо", region="minsk").suggestions] == ["syrodel"]

    def test_initialism(self, service):
        assert [s.id for s in service.suggest("гмк").suggestions] == ["gomelmoloko"]

    def test_excluded_after_load(self, service):
        service.warm()
        service.exclusions.remember_liquidated({"unp": "400000001"})
        assert [s.type for s in service.suggest("мол").suggestions] == ["rubric"]

    def test_limit(self, service):
        assert len(service.suggest("о", limit=1).suggestions) == 0
        assert len(service.suggest("ооо", limit=1).suggestions) == 1


class TestRubricHints:
    def test_category_then_rubric(self, service):
        hints = service.rubric_hints("молоко и сыр")
        assert [(h.type, h.slug) for h in hints] == [("category", "food"), ("rubric", "food/dairy")]

    def test_no_tokens(self, service):
        assert service.rubric_hints("купить и заказать") == []

    def test_limit_one(self, service):
        hints = service.rubric_hints("ремонт обуви", limit=1)
        assert [(h.type, h.slug) for h in hints] == [("category", "services")]


class TestBatch:
    def test_companies_summary(self, service):
        found = service.companies_summary(["syrodel", " gomelmoloko ", "missing", ""])
        assert [c.id for c in found] == ["syrodel", "gomelmoloko"]

    def test_search_delegates_to_ranking(self, service):
        result = service.search(SearchQuery(service="молоко"))
        assert [c.id for c in result.companies] == ["gomelmoloko", "syrodel"]
