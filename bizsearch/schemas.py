from __future__ import annotations
"""
Pydantic schemas for catalog records and read-API responses.

``CompanyRecord`` is deliberately lenient: catalog exports are noisy,
so ``None`` collapses to an empty value, scalar ids are coerced to
strings, and list entries that are not objects are dropped.  Unknown
fields are kept so that a company page can show everything the export
carried.
"""

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value
    return ""


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    out: List[str] = []
    for item in value:
        text = _as_text(item).strip()
        if text:
            out.append(text)
    return out


def _as_object_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, dict)]


# ---------------------------
# Catalog records
# ---------------------------

class CategoryRef(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    slug: str = ""
    name: str = ""
    url: str = ""

    @field_validator("slug", "name", "url", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _as_text(v).strip()


class RubricRef(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    slug: str = ""
    name: str = ""
    url: str = ""
    category_slug: str = ""
    category_name: str = ""

    @field_validator("slug", "name", "url", "category_slug", "category_name", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _as_text(v).strip()


class CatalogItem(BaseModel):
    """A service or product entry as authored on the company card."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = ""
    description: str = ""

    @field_validator("name", "description", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _as_text(v)


class CompanyRecord(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    source_id: str = ""
    source: str = ""
    unp: str = ""
    name: str = ""
    description: str = ""
    about: str = ""
    address: str = ""
    city: str = ""
    region: str = ""
    country: str = ""
    logo_url: str = ""
    phones: List[str] = Field(default_factory=list)
    phones_ext: List[Any] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    websites: List[str] = Field(default_factory=list)
    work_hours: Dict[str, Any] = Field(default_factory=dict)
    categories: List[CategoryRef] = Field(default_factory=list)
    rubrics: List[RubricRef] = Field(default_factory=list)
    services_list: List[CatalogItem] = Field(default_factory=list)
    products: List[CatalogItem] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "source_id", "source", "unp", "name", "description", "about",
        "address", "city", "region", "country", "logo_url",
        mode="before",
    )
    @classmethod
    def _text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("phones", "emails", "websites", mode="before")
    @classmethod
    def _text_list(cls, v: Any) -> List[str]:
        return _as_text_list(v)

    @field_validator("phones_ext", mode="before")
    @classmethod
    def _any_list(cls, v: Any) -> List[Any]:
        return list(v) if isinstance(v, (list, tuple)) else []

    @field_validator("work_hours", "extra", mode="before")
    @classmethod
    def _mapping(cls, v: Any) -> Dict[str, Any]:
        return dict(v) if isinstance(v, dict) else {}

    @field_validator("categories", "rubrics", mode="before")
    @classmethod
    def _refs(cls, v: Any) -> List[Dict[str, Any]]:
        return _as_object_list(v)

    @field_validator("services_list", "products", mode="before")
    @classmethod
    def _items(cls, v: Any) -> List[Dict[str, Any]]:
        if not isinstance(v, (list, tuple)):
            return []
        out: List[Dict[str, Any]] = []
        for item in v:
            if isinstance(item, dict):
                out.append(item)
            elif isinstance(item, str) and item.strip():
                out.append({"name": item})
        return out

    @property
    def company_id(self) -> str:
        return self.source_id.strip()

    @property
    def primary_category(self) -> CategoryRef | None:
        return self.categories[0] if self.categories else None

    @property
    def primary_rubric(self) -> RubricRef | None:
        return self.rubrics[0] if self.rubrics else None


# ---------------------------
# Read API responses
# ---------------------------

class CompanySummary(BaseModel):
    id: str
    source: str = ""
    unp: str = ""
    name: str = ""
    address: str = ""
    city: str = ""
    region: str = ""
    work_hours: Dict[str, Any] = Field(default_factory=dict)
    phones_ext: List[Any] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    websites: List[str] = Field(default_factory=list)
    description: str = ""
    about: str = ""
    logo_url: str = ""
    primary_category_slug: str | None = None
    primary_category_name: str | None = None
    primary_rubric_slug: str | None = None
    primary_rubric_name: str | None = None


class RubricEntry(BaseModel):
    slug: str
    name: str
    url: str = ""
    count: int = 0


class CategoryEntry(BaseModel):
    slug: str
    name: str
    url: str = ""
    company_count: int = 0
    rubrics: List[RubricEntry] = Field(default_factory=list)


class CatalogStats(BaseModel):
    companies_total: int
    categories_total: int
    rubrics_total: int
    updated_at: str | None = None
    source_path: str = ""


class CatalogResponse(BaseModel):
    stats: CatalogStats
    categories: List[CategoryEntry]


class RubricInfo(BaseModel):
    slug: str
    name: str
    url: str = ""
    category_slug: str
    category_name: str
    count: int = 0


class PageInfo(BaseModel):
    offset: int
    limit: int
    total: int


class RubricResponse(BaseModel):
    rubric: RubricInfo
    companies: List[CompanySummary]
    page: PageInfo


class PrimaryRefs(BaseModel):
    category_slug: str | None = None
    rubric_slug: str | None = None


class CompanyResponse(BaseModel):
    id: str
    company: CompanyRecord
    generated_keywords: List[str]
    primary: PrimaryRefs


class Suggestion(BaseModel):
    type: Literal["category", "rubric", "company"]
    name: str
    url: str
    slug: str | None = None
    id: str | None = None
    category_name: str | None = None
    subtitle: str | None = None
    count: int | None = None


class SuggestResponse(BaseModel):
    query: str
    suggestions: List[Suggestion]


class RubricHint(BaseModel):
    type: Literal["category", "rubric"]
    slug: str
    name: str
    url: str
    category_slug: str | None = None
    category_name: str | None = None


class RubricHintsResponse(BaseModel):
    hints: List[RubricHint]


class SearchResponse(BaseModel):
    query: str = ""
    total: int = 0
    companies: List[CompanySummary] = Field(default_factory=list)


class CompaniesResponse(BaseModel):
    companies: List[CompanySummary]


class HealthResponse(BaseModel):
    status: str
    companies: int | None = None
