from __future__ import annotations

import pytest

from bizsearch.catalog_build import (
    CatalogSourceNotFound,
    LoadStats,
    build_catalog_snapshot,
    iter_catalog_records,
)
from bizsearch.exclusions import ExclusionRegistry
from bizsearch.mapping import RecordOverrides

from conftest import make_records, write_jsonl


class TestIterRecords:
    def test_bad_lines_are_skipped(self, tmp_path):
        path = write_jsonl(
            tmp_path / "c.jsonl",
            ["", "not json", "[1, 2]", {"name": "без id"}, {"source_id": "ok", "name": "Ок"}],
        )
        stats = LoadStats()
        ids = [r.company_id for r in iter_catalog_records(path, stats=stats)]
        assert ids == ["ok"]
        assert (stats.invalid, stats.missing_id) == (2, 1)

    def test_exclusion_predicate(self, tmp_path):
        path = write_jsonl(tmp_path / "c.jsonl", make_records())
        registry = ExclusionRegistry(None, ids=["NOWHERE"], unps=["400 000 001"])
        stats = LoadStats()
        ids = [r.company_id for r in iter_catalog_records(path, registry.is_excluded, stats)]
        assert ids == ["syrodel", "obuvgomel"]
        assert stats.excluded == 2


class TestSnapshot:
    def test_missing_source(self, tmp_path):
        with pytest.raises(CatalogSourceNotFound):
            build_catalog_snapshot(tmp_path / "nope.jsonl")

    def test_indices_and_counters(self, catalog_path):
        snap = build_catalog_snapshot(catalog_path, overrides=RecordOverrides())
        assert snap.company_count == 4
        assert snap.region_by_id == {
            "gomelmoloko": "gomel",
            "syrodel": "minsk",
            "obuvgomel": "gomel",
            "nowhere": None,
        }
        assert snap.company_count_by_region == {"gomel": 2, "minsk": 1}
        assert snap.companies_in_region("gomel") == 2
        assert snap.companies_in_region(None) == 4
        assert snap.category_count("food") == 2
        assert snap.category_count("food", "minsk") == 1
        assert snap.rubric_count("services/repair") == 2
        assert snap.rubric_count("services/repair", "gomel") == 1
        assert snap.rubric_count("services/repair", "brest") == 0
        assert snap.company_ids_by_rubric["food/dairy"] == ["gomelmoloko", "syrodel"]
        assert snap.rubric_slugs_by_category == {"food": ["food/dairy"], "services": ["services/repair"]}
        assert snap.updated_at

    def test_summary_and_search_text(self, catalog_path):
        snap = build_catalog_snapshot(catalog_path, overrides=RecordOverrides())
        summary = snap.summaries_by_id["gomelmoloko"]
        assert summary.region == "gomel"
        assert summary.primary_rubric_slug == "food/dairy"
        assert "гомельский молочный" in snap.search_text_by_id["gomelmoloko"]
        assert "+375 232 000000" in snap.search_text_by_id["gomelmoloko"]

    def test_rubrics_sorted_by_name(self, tmp_path):
        rows = [
            {
                "source_id": "a",
                "categories": [{"slug": "c", "name": "Ц"}],
                "rubrics": [
                    {"slug": "c/z", "name": "Ёлки", "category_slug": "c"},
                    {"slug": "c/a", "name": "Яблоки", "category_slug": "c"},
                    {"slug": "c/m", "name": "арбузы", "category_slug": "c"},
                ],
            }
        ]
        snap = build_catalog_snapshot(write_jsonl(tmp_path / "c.jsonl", rows), overrides=RecordOverrides())
        assert snap.rubric_slugs_by_category["c"] == ["c/m", "c/z", "c/a"]

    def test_rubric_without_category_ignored(self, tmp_path):
        rows = [{"source_id": "a", "rubrics": [{"slug": "x/y", "name": "Без категории"}]}]
        snap = build_catalog_snapshot(write_jsonl(tmp_path / "c.jsonl", rows), overrides=RecordOverrides())
        assert snap.rubrics_by_slug == {}
        assert snap.company_count == 1


def test_undecodable_line_is_skipped(tmp_path):
    path = tmp_path / "c.jsonl"
    path.write_bytes(
        b'{"source_id": "a", "name": "A"}\n'
        + b'{"source_id": "b", "name": "\xff\xfe broken"}\n'
        + b'{"source_id": "c", "name": "C"}\n'
    )
    stats = LoadStats()
    assert [r.company_id for r in iter_catalog_records(path, stats=stats)] == ["a", "c"]
    assert stats.invalid == 1
    snap = build_catalog_snapshot(path, overrides=RecordOverrides())
    assert set(snap.companies_by_id) == {"a", "c"}
