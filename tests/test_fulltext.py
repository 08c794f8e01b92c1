from __future__ import annotations

import json

import httpx
import pytest

from bizsearch.config import FullTextSettings
from bizsearch.exclusions import ExclusionRegistry
from bizsearch.fulltext import (
    FullTextClient,
    FullTextError,
    build_search_payload,
    dedupe_by_canonical_slug,
    search_with_fallback,
)
from bizsearch.ranking import SearchQuery
from bizsearch.schemas import CompanySummary

ENGINE = FullTextSettings(url="http://meili.test/", api_key="secret", index="companies")


def hit(cid: str, **extra):
    doc = {"id": cid, "name": cid.upper(), "websites": ["www.example.by/", "https://example.by/about"]}
    doc.update(extra)
    return doc


def make_client(handler, exclusions=None) -> FullTextClient:
    return FullTextClient(ENGINE, exclusions=exclusions, transport=httpx.MockTransport(handler))


def ids(result):
    return [c.id for c in result.companies]


# --------------------------------------------------------------------------- #
# Payload
# --------------------------------------------------------------------------- #


class TestPayload:
    def test_filters_and_attributes(self):
        params = SearchQuery(query="Каблучок", service="ремонт", city="Гомель", region="gomel", rubric='a"b')
        payload = build_search_payload(params, "обувь", ['id != "x"'])
        assert payload["q"] == "Каблучок ремонт обувь Гомель"
        assert payload["filter"] == ['region = "gomel"', 'rubric_slugs = "a\\"b"', 'id != "x"']
        assert payload["attributesToSearchOn"] == ["name", "keywords", "city", "address"]
        assert payload["matchingStrategy"] == "all"
        assert (payload["offset"], payload["limit"]) == (0, 24)

    def test_empty_query(self):
        payload = build_search_payload(SearchQuery(region="minsk"))
        assert payload["q"] == ""
        assert "attributesToSearchOn" not in payload
        assert "matchingStrategy" not in payload


# --------------------------------------------------------------------------- #
# Client
# --------------------------------------------------------------------------- #


class TestClient:
    def test_search_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"hits": [hit("abc")], "estimatedTotalHits": 7})

        result = make_client(handler).search(SearchQuery(service="ремонт"))
        assert seen["path"] == "/indexes/companies/search"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["q"] == "ремонт"
        assert result.total == 7
        assert ids(result) == ["abc"]
        assert result.companies[0].websites == ["https://www.example.by/"]

    def test_exclusion_filters_sent(self, tmp_path):
        registry = ExclusionRegistry(tmp_path / "bl.json", ids=["Dead"], unps=["123"])
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"hits": []})

        make_client(handler, registry).search(SearchQuery(query="x"))
        assert bodies[0]["filter"] == ['id != "dead"', 'unp != "123"']

    @pytest.mark.parametrize("response", [
        httpx.Response(500, text="oops"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"results": []}),
    ])
    def test_errors_are_wrapped(self, response):
        with pytest.raises(FullTextError):
            make_client(lambda request: response).search(SearchQuery(query="x"))

    def test_transport_error_is_wrapped(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(FullTextError):
            make_client(handler).search(SearchQuery(query="x"))


# --------------------------------------------------------------------------- #
# Fallback policy
# --------------------------------------------------------------------------- #


class TestFallback:
    def test_engine_result_used(self, service):
        client = make_client(lambda r: httpx.Response(200, json={"hits": [hit("remote")]}))
        assert ids(search_with_fallback(service, SearchQuery(service="молоко"), client)) == ["remote"]
        assert not service.loaded

    def test_engine_failure_falls_back(self, service):
        client = make_client(lambda r: httpx.Response(503))
        result = search_with_fallback(service, SearchQuery(service="молоко"), client)
        assert ids(result) == ["gomelmoloko", "syrodel"]

    def test_empty_engine_result_falls_back(self, service):
        client = make_client(lambda r: httpx.Response(200, json={"hits": [], "estimatedTotalHits": 0}))
        assert ids(search_with_fallback(service, SearchQuery(service="сыр"), client)) == ["gomelmoloko", "syrodel"]

    def test_no_query_keeps_empty_engine_result(self, service):
        client = make_client(lambda r: httpx.Response(200, json={"hits": []}))
        result = search_with_fallback(service, SearchQuery(region="gomel"), client)
        assert result.companies == []
        assert not service.loaded

    def test_without_engine(self, service):
        assert ids(search_with_fallback(service, SearchQuery(service="молоко Гомель"))) == ["gomelmoloko"]

    def test_city_moved_out_of_service_text(self, service):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"hits": [hit("remote")]})

        search_with_fallback(service, SearchQuery(service="ремонт обуви в Гомеле"), make_client(handler))
        assert bodies[0]["q"] == "ремонт обуви Гомель"

    def test_excluded_hits_removed(self, service):
        service.exclusions.remember_liquidated({"source_id": "dead", "unp": "999"})
        client = make_client(lambda r: httpx.Response(
            200, json={"hits": [hit("dead"), hit("alive", unp="999"), hit("ok")], "estimatedTotalHits": 3}
        ))
        result = search_with_fallback(service, SearchQuery(query="x"), client)
        assert ids(result) == ["ok"]
        assert result.total == 1


class TestDedupe:
    def test_canonical_id_wins(self):
        companies = [CompanySummary(id="ABC"), CompanySummary(id="xyz"), CompanySummary(id="abc")]
        assert [c.id for c in dedupe_by_canonical_slug(companies)] == ["abc", "xyz"]

    def test_first_kept_when_neither_canonical(self):
        companies = [CompanySummary(id="ABC", name="first"), CompanySummary(id="Abc", name="second")]
        assert [c.name for c in dedupe_by_canonical_slug(companies)] == ["first"]
