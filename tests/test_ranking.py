from __future__ import annotations

import pytest

from bizsearch.ranking import (
    DAIRY_TOKEN,
    SHORT_STEM_EXCEPTIONS,
    SearchQuery,
    canonical_service_token,
    expand_company_tokens,
    is_cheese_token,
    is_forest_token,
    is_gas_token,
    matches_service_token,
    score_service_tokens,
    tokenize_service_text,
)

# --------------------------------------------------------------------------- #
# Short-stem exceptions
# --------------------------------------------------------------------------- #


class TestShortStems:
    @pytest.mark.parametrize("token", ["сыр", "сыры", "сыров", "сырный", "сырная", "сырки"])
    def test_cheese(self, token):
        assert is_cheese_token(token)

    @pytest.mark.parametrize("token", ["сырье", "сырьё", "сырой", "сырая", "сырокопченая", "сыровяленая", "сырость"])
    def test_not_cheese(self, token):
        assert not is_cheese_token(token)

    @pytest.mark.parametrize("token, expected", [
        ("газ", True), ("газовый", True), ("газоснабжение", True),
        ("газета", False), ("газон", False), ("газель", False), ("газированная", False),
    ])
    def test_gas(self, token, expected):
        assert is_gas_token(token) is expected

    @pytest.mark.parametrize("token, expected", [
        ("лес", True), ("лесоматериалы", True), ("лестница", False), ("лестничный", False),
    ])
    def test_forest(self, token, expected):
        assert is_forest_token(token) is expected

    def test_table_is_used_for_short_query_tokens(self):
        assert SHORT_STEM_EXCEPTIONS["газ"] is is_gas_token
        assert matches_service_token(["газоснабжение"], "газ")
        assert not matches_service_token(["газоны", "газета"], "газ")
        assert not matches_service_token(["лестница"], "лес")


# --------------------------------------------------------------------------- #
# Token matching
# --------------------------------------------------------------------------- #


class TestServiceTokens:
    @pytest.mark.parametrize("raw, expected", [
        ("молоко", [DAIRY_TOKEN]),
        ("Молочной продукции", [DAIRY_TOKEN]),
        ("сыр", [DAIRY_TOKEN]),
        ("купить сыры оптом", [DAIRY_TOKEN]),
        ("сыр и вино", ["сыр", "вино"]),
        ("Ремонт «Холодильников»", ["ремонт", "холодильников"]),
        ("компания по ремонту", ["ремонту"]),
        ("купить услуги", []),
    ])
    def test_tokenize_service_text(self, lexicon, raw, expected):
        assert tokenize_service_text(raw, lexicon) == expected

    def test_canonical_service_token(self):
        assert canonical_service_token("Молоко") == DAIRY_TOKEN
        assert canonical_service_token("Ёмкости") == "емкости"

    def test_expand_company_tokens(self):
        assert expand_company_tokens(["сыры", "кефир", "молоко"]) == ["сыры", DAIRY_TOKEN, "кефир", "молоко"]

    @pytest.mark.parametrize("company_tokens, token, expected", [
        (["ремонт", "холодильников"], "ремонт", True),
        (["ремонтные"], "ремонт", True),
        (["ремонт"], "ремонтные", True),
        (["рем"], "ремонтные", False),
        (["тв"], "тв", True),
        (["твердые"], "тв", False),
        (["обуви"], "молочная", False),
        ([], "", True),
    ])
    def test_matches_service_token(self, company_tokens, token, expected):
        assert matches_service_token(company_tokens, token) is expected

    def test_score(self):
        assert score_service_tokens(["ремонт", "холодильников"], ["ремонт", "холод"]) == 3


# --------------------------------------------------------------------------- #
# Search
# --------------------------------------------------------------------------- #


def ids(result):
    return [c.id for c in result.companies]


class TestSearch:
    def test_no_signal_returns_nothing(self, service):
        result = service.search(SearchQuery(region="gomel"))
        assert result.total == 0
        assert result.companies == []

    def test_dairy_query_matches_dairy_companies_only(self, service):
        assert ids(service.search(SearchQuery(service="молоко"))) == ["gomelmoloko", "syrodel"]

    def test_cheese_query_collapses_to_dairy(self, service):
        assert ids(service.search(SearchQuery(service="сыр"))) == ["gomelmoloko", "syrodel"]

    def test_service_query_with_region(self, service):
        assert ids(service.search(SearchQuery(service="ремонт", region="gomel"))) == ["obuvgomel"]

    def test_service_query_unclassified_company_excluded_by_region(self, service):
        assert "nowhere" not in ids(service.search(SearchQuery(service="холодильников", region="minsk")))
        assert ids(service.search(SearchQuery(service="холодильников"))) == ["nowhere"]

    def test_name_query(self, service):
        assert ids(service.search(SearchQuery(query="сыродел"))) == ["syrodel"]

    def test_name_query_initialism(self, service):
        assert ids(service.search(SearchQuery(query="ГМК"))) == ["gomelmoloko"]

    def test_name_match_outranks_address_match(self, service):
        result = service.search(SearchQuery(query="гомел"))
        assert ids(result) == ["gomelmoloko", "obuvgomel"]

    def test_name_and_service(self, service):
        assert ids(service.search(SearchQuery(query="каблучок", service="ремонт обуви"))) == ["obuvgomel"]
        assert ids(service.search(SearchQuery(query="каблучок", service="молоко"))) == []

    def test_exact_city(self, service):
        assert ids(service.search(SearchQuery(service="молоко", city="г. Минск"))) == ["syrodel"]

    def test_address_like_city_uses_tokens(self, service):
        assert ids(service.search(SearchQuery(city="ул. Победы"))) == ["obuvgomel"]

    def test_taxonomy_filters(self, service):
        assert ids(service.search(SearchQuery(query="о", rubric="services/repair"))) == ["nowhere", "obuvgomel"]
        assert ids(service.search(SearchQuery(service="ремонт", category="food"))) == []

    def test_paging(self, service):
        result = service.search(SearchQuery(service="молоко", offset=1, limit=1))
        assert result.total == 2
        assert ids(result) == ["syrodel"]

    def test_limit_clamped(self):
        assert SearchQuery(limit=10_000).page() == (0, 200)
        assert SearchQuery(offset=-5, limit=0).page() == (0, 24)
