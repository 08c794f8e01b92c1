from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from bizsearch.config import KeywordSettings, StoreSettings
from bizsearch.exclusions import ExclusionRegistry
from bizsearch.keywords import KeywordRuntime
from bizsearch.lexicon import default_lexicon
from bizsearch.schemas import CompanyRecord
from bizsearch.store import CatalogService

# --------------------------------------------------------------------------- #
# Catalog records
# --------------------------------------------------------------------------- #

FOOD = {"slug": "food", "name": "Продукты питания", "url": "/catalog/food"}
SERVICES = {"slug": "services", "name": "Бытовые услуги", "url": "/catalog/services"}
DAIRY_RUBRIC = {
    "slug": "food/dairy",
    "name": "Молочная промышленность",
    "url": "/catalog/food/dairy",
    "category_slug": "food",
    "category_name": "Продукты питания",
}
REPAIR_RUBRIC = {
    "slug": "services/repair",
    "name": "Ремонт обуви",
    "url": "/catalog/services/repair",
    "category_slug": "services",
    "category_name": "Бытовые услуги",
}


def make_records() -> List[Dict[str, Any]]:
    return [
        {
            "source_id": "gomelmoloko",
            "source": "belarusinfo",
            "unp": "400000001",
            "name": "ОАО «Гомельский молочный комбинат»",
            "city": "Гомель",
            "address": "246000, г. Гомель, ул. Советская, 1",
            "phones": ["+375 232 000000"],
            "categories": [FOOD],
            "rubrics": [DAIRY_RUBRIC],
            "products": [{"name": "Молоко"}],
        },
        {
            "source_id": "syrodel",
            "unp": "100000002",
            "name": "ООО «Сыродел»",
            "city": "Минск",
            "categories": [FOOD],
            "rubrics": [DAIRY_RUBRIC],
            "products": [{"name": "Сыры твердые"}],
        },
        {
            "source_id": "obuvgomel",
            "unp": "400000003",
            "name": "Мастерская «Каблучок»",
            "city": "Гомель",
            "address": "г. Гомель, ул. Победы, 5",
            "categories": [SERVICES],
            "rubrics": [REPAIR_RUBRIC],
            "services_list": [{"name": "Ремонт обуви"}],
        },
        {
            "source_id": "nowhere",
            "name": "ИП Иванов",
            "categories": [SERVICES],
            "rubrics": [REPAIR_RUBRIC],
            "services_list": [{"name": "Ремонт и обслуживание холодильников"}],
        },
    ]


def write_jsonl(path: Path, rows: List[Any]) -> Path:
    with open(path, "w", encoding="utf-8") as f:
        for row in rows:
            f.write((row if isinstance(row, str) else json.dumps(row, ensure_ascii=False)) + "\n")
    return path


# --------------------------------------------------------------------------- #
# Fixtures
# --------------------------------------------------------------------------- #

@pytest.fixture
def lexicon():
    return default_lexicon()


@pytest.fixture
def records() -> List[CompanyRecord]:
    return [CompanyRecord.model_validate(r) for r in make_records()]


@pytest.fixture
def catalog_path(tmp_path) -> Path:
    return write_jsonl(tmp_path / "companies.jsonl", make_records())


@pytest.fixture
def settings(tmp_path, catalog_path) -> StoreSettings:
    return StoreSettings(
        companies_path=catalog_path,
        blacklist_path=tmp_path / "blacklist.json",
        keywords=KeywordSettings(),
    )


@pytest.fixture
def exclusions(settings) -> ExclusionRegistry:
    return ExclusionRegistry(settings.blacklist_path)


@pytest.fixture
def service(settings, exclusions) -> CatalogService:
    return CatalogService(
        settings,
        exclusions=exclusions,
        keyword_runtime=KeywordRuntime(settings.keywords),
    )
