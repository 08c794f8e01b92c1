from __future__ import annotations

import pytest

from bizsearch.mapping import (
    MapOverride,
    RecordOverrides,
    build_company_summary,
    keyword_override,
    logo_rank,
    name_initialism,
    normalize_logo_url,
    normalize_websites,
    sanitize_company_record,
)
from bizsearch.schemas import CompanyRecord, CompanySummary


class TestWebsites:
    def test_one_per_host_root_preferred(self):
        raw = ["https://example.by/contacts", "www.example.by", "https://EXAMPLE.by/contacts/"]
        assert normalize_websites(raw) == ["https://www.example.by"]

    def test_shorter_of_equals(self):
        assert normalize_websites(["https://a.by/long/path", "https://a.by/x"]) == ["https://a.by/x"]

    def test_hostless_entries_kept_once(self):
        assert normalize_websites(["", "  ", 5, "https://a.by", "not a url", "NOT A URL"]) == [
            "https://a.by",
            "not a url",
        ]

    @pytest.mark.parametrize("raw", [None, "https://a.by", {"url": "x"}])
    def test_non_list(self, raw):
        assert normalize_websites(raw) == []


@pytest.mark.parametrize("raw, expected", [
    ("https://cdn.by/logo.png", "https://cdn.by/logo.png"),
    ("https://site.by/images/icons/og-icon.png", ""),
    ("https://site.by/images/logo/no-logo.svg", ""),
    ("  ", ""),
])
def test_normalize_logo_url(raw, expected):
    assert normalize_logo_url(raw) == expected


class TestSanitize:
    def test_overrides_applied_by_lowercased_id(self):
        overrides = RecordOverrides(
            logos={"acme": "https://cdn.by/acme.png"},
            maps={"acme": MapOverride(address="Минск, ул. Ленина, 1", lat=53.9, lng=float("nan"))},
            websites={"acme": ["acme.by", "https://acme.by/about"]},
        )
        record = CompanyRecord(
            source_id="ACME",
            logo_url="https://site.by/images/icons/og-icon.png",
            address="old",
            websites=["https://old.by"],
        )
        clean = sanitize_company_record(record, overrides)
        assert clean.logo_url == "https://cdn.by/acme.png"
        assert clean.address == "Минск, ул. Ленина, 1"
        assert clean.extra == {"lat": 53.9, "lng": None}
        assert clean.websites == ["https://acme.by"]
        assert record.address == "old"

    def test_without_overrides(self):
        record = CompanyRecord(source_id="x", logo_url="https://site.by/images/logo/no_logo.png", websites=["b.by"])
        clean = sanitize_company_record(record, RecordOverrides())
        assert clean.logo_url == ""
        assert clean.websites == ["https://b.by"]

    def test_shipped_map_override(self):
        clean = sanitize_company_record(CompanyRecord(source_id="MSU-23", address="?"))
        assert clean.address == "Минск, Белорусская улица, 17"


def test_keyword_override():
    overrides = RecordOverrides(keywords={"acme": ["  купить   бетон ", "Купить бетон", "", "доставка бетона"]})
    assert keyword_override("Acme", overrides) == ["купить бетон", "доставка бетона"]
    assert keyword_override("other", overrides) is None
    assert keyword_override("", overrides) is None


@pytest.mark.parametrize("name, expected", [
    ('ООО "Минский Завод Колёсных Тягачей"', "мзкт"),
    ("ОАО «Гомельский молочный комбинат»", "гмк"),
    ("Автобусный парк № 6", "ап6"),
    ("", ""),
])
def test_name_initialism(lexicon, name, expected):
    assert name_initialism(name, lexicon) == expected


def test_summary_and_logo_rank(records):
    summary = build_company_summary(records[0], "gomel")
    assert summary.id == "gomelmoloko"
    assert summary.region == "gomel"
    assert summary.primary_category_name == "Продукты питания"
    assert logo_rank(summary) == 1
    assert logo_rank(CompanySummary(id="x", logo_url="https://cdn.by/l.png")) == 2
    assert logo_rank(CompanySummary(id="x")) == 0
    assert logo_rank(None) == 0
