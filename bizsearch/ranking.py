from __future__ import annotations

"""
In-process ranking engine: the search used when the full-text engine is
unavailable or returns nothing.

Service queries are matched against each company's derived keyword
tokens with a per-token rule (exact, prefix, or bounded reverse prefix)
so that inflected Russian forms find each other without a stemmer.
A few short stems are ambiguous enough to need hand-written predicates;
they live in ``SHORT_STEM_EXCEPTIONS``.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

from .catalog_build import CatalogSnapshot
from .config import SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT
from .lexicon import Lexicon, default_lexicon
from .location import is_address_like, normalize_city_for_filter, region_matches, tokenize_location
from .mapping import logo_rank, name_initialism
from .normalize import collation_key, compact_alnum, fold_yo
from .schemas import CompanyRecord, SearchResponse

DAIRY_TOKEN = "молочная"
INITIALISM_MIN_CHARS = 2
INITIALISM_MAX_CHARS = 6
REVERSE_PREFIX_MIN_CHARS = 4

NAME_PREFIX_BONUS = 20
NAME_CONTAINS_BONUS = 10
NAME_FALLBACK_BONUS = 5

_QUOTES_RE = re.compile(r"[«»\"'“”„]")
_NON_TOKEN_RE = re.compile(r"[^\w-]+|_")


def _fold(token: str) -> str:
    return fold_yo((token or "").strip().lower())


# ---------------------------
# Short-stem exceptions
# ---------------------------

CHEESE_NON_FORMS_RE = re.compile(r"^сыр(?:о|ой|ая|ое|ые|ого|ому|ым|ых|ую)$")


def is_cheese_token(raw: str) -> bool:
    """``сыр``/``сыры``/``сырный`` but not raw materials, ``сырой`` or cured meat."""
    t = _fold(raw)
    if not t.startswith("сыр"):
        return False
    if t.startswith("сырь") or CHEESE_NON_FORMS_RE.match(t):
        return False
    return not t.startswith(("сырост", "сырокопч", "сыровял"))


def is_gas_token(raw: str) -> bool:
    t = _fold(raw)
    if not t.startswith("газ"):
        return False
    return not t.startswith(("газет", "газон", "газел", "газир"))


def is_forest_token(raw: str) -> bool:
    t = _fold(raw)
    return t.startswith("лес") and not t.startswith("лест")


SHORT_STEM_EXCEPTIONS: Dict[str, Callable[[str], bool]] = {
    "сыр": is_cheese_token,
    "сыры": is_cheese_token,
    "сыра": is_cheese_token,
    "газ": is_gas_token,
    "лес": is_forest_token,
}


# ---------------------------
# Service tokens
# ---------------------------

def canonical_service_token(token: str) -> str:
    """Dairy forms (``молоко``, ``молочной``, ``сыры``) collapse to ``молочная``."""
    t = _fold(token)
    if t.startswith("молок") or t.startswith("молочн"):
        return DAIRY_TOKEN
    return t


def _is_descriptor(token: str, lexicon: Lexicon) -> bool:
    if token in lexicon.search.descriptor_stop_words:
        return True
    return any(token.startswith(prefix) for prefix in lexicon.search.descriptor_prefixes)


def tokenize_service_text(raw: str, lexicon: Lexicon | None = None) -> List[str]:
    """
    Demand tokens of a service/product query.  Transactional verbs and
    descriptor words (``компания``, ``производство`` ...) are dropped;
    dairy forms are canonicalized, and a cheese-only query becomes the
    dairy token.
    """
    lex = lexicon or default_lexicon()
    cleaned = _NON_TOKEN_RE.sub(" ", _QUOTES_RE.sub(" ", fold_yo((raw or "").lower())))
    picked: List[str] = []
    for token in cleaned.split():
        if len(token) < 2 or token in lex.stop_words or token in lex.search.query_stop_words:
            continue
        if _is_descriptor(token, lex):
            continue
        picked.append(canonical_service_token(token))
    if picked and all(is_cheese_token(t) for t in picked):
        return [DAIRY_TOKEN]
    return picked


def expand_company_tokens(tokens: Iterable[str]) -> List[str]:
    """Company keyword tokens plus their canonical forms."""
    out: List[str] = []
    seen = set()
    for token in tokens:
        for form in (token, DAIRY_TOKEN if is_cheese_token(token) else canonical_service_token(token)):
            if form and form not in seen:
                seen.add(form)
                out.append(form)
    return out


def matches_service_token(company_tokens: Sequence[str], token: str) -> bool:
    if not token:
        return True
    exception = SHORT_STEM_EXCEPTIONS.get(token)
    if exception is not None:
        return any(exception(t) for t in company_tokens)
    if len(token) <= 2:
        return token in company_tokens
    for t in company_tokens:
        if t == token or t.startswith(token):
            return True
        if len(t) >= REVERSE_PREFIX_MIN_CHARS and token.startswith(t):
            return True
    return False


def matches_service_tokens(company_tokens: Sequence[str], query_tokens: Sequence[str]) -> bool:
    if not query_tokens:
        return False
    return all(matches_service_token(company_tokens, t) for t in query_tokens)


def score_service_tokens(company_tokens: Sequence[str], query_tokens: Sequence[str]) -> int:
    """2 per exact token hit, 1 per prefix hit."""
    score = 0
    for token in query_tokens:
        if not token:
            continue
        if token in company_tokens:
            score += 2
        elif any(t.startswith(token) for t in company_tokens):
            score += 1
    return score


# ---------------------------
# Search
# ---------------------------

@dataclass
class SearchQuery:
    query: str = ""
    service: str = ""
    city: str = ""
    region: str | None = None
    rubric: str | None = None
    category: str | None = None
    offset: int = 0
    limit: int = SEARCH_DEFAULT_LIMIT

    def page(self) -> tuple:
        offset = max(0, int(self.offset or 0))
        limit = max(1, min(SEARCH_MAX_LIMIT, int(self.limit or SEARCH_DEFAULT_LIMIT)))
        return offset, limit


def in_taxonomy(record: CompanyRecord, rubric: str | None, category: str | None) -> bool:
    if rubric and not any(r.slug == rubric for r in record.rubrics):
        return False
    if category:
        slugs = {c.slug for c in record.categories} | {r.category_slug for r in record.rubrics}
        if category not in slugs:
            return False
    return True


def compact_name_match(snapshot: CatalogSnapshot, cid: str, q_compact: str, lexicon: Lexicon) -> bool:
    """Letters/digits-only match against the name, the id and, for short queries, the initialism."""
    if not q_compact:
        return False
    summary = snapshot.summaries_by_id.get(cid)
    name = summary.name if summary else ""
    if q_compact in compact_alnum(name) or q_compact in compact_alnum(cid):
        return True
    if INITIALISM_MIN_CHARS <= len(q_compact) <= INITIALISM_MAX_CHARS:
        return q_compact in name_initialism(name, lexicon)
    return False


def search_companies(
    snapshot: CatalogSnapshot,
    params: SearchQuery,
    keyword_tokens: Callable[[str], List[str]],
    lexicon: Lexicon | None = None,
) -> SearchResponse:
    lex = lexicon or default_lexicon()
    q = (params.query or "").strip().lower()
    q_norm = fold_yo(q)
    q_compact = compact_alnum(q)
    service_tokens = tokenize_service_text(params.service or "", lex)
    raw_city = (params.city or "").strip()
    city_tokens = tokenize_location(raw_city)
    city_norm = normalize_city_for_filter(raw_city)
    exact_city = bool(city_norm) and not is_address_like(raw_city)
    offset, limit = params.page()

    # No query signal at all: nothing to return, even with a region.
    if not q and not service_tokens and not city_tokens and not city_norm:
        return SearchResponse(query=params.query or "", total=0, companies=[])

    matches = []
    for cid, search_text in snapshot.search_text_by_id.items():
        if not region_matches(params.region, snapshot.region_by_id.get(cid)):
            continue
        record = snapshot.companies_by_id[cid]
        if (params.rubric or params.category) and not in_taxonomy(record, params.rubric, params.category):
            continue

        summary = snapshot.summaries_by_id.get(cid)
        if exact_city:
            if normalize_city_for_filter(summary.city if summary else "") != city_norm:
                continue
        elif city_tokens:
            haystack = f"{summary.city} {summary.address}".lower() if summary else ""
            if not all(token in haystack for token in city_tokens):
                continue

        company_tokens = expand_company_tokens(keyword_tokens(cid)) if service_tokens else []

        if q and service_tokens:
            matched = q in search_text and matches_service_tokens(company_tokens, service_tokens)
        elif service_tokens:
            matched = matches_service_tokens(company_tokens, service_tokens)
        elif q:
            matched = q in search_text or compact_name_match(snapshot, cid, q_compact, lex)
        else:
            matched = True
        if not matched:
            continue

        name = summary.name if summary and summary.name else cid
        score = score_service_tokens(company_tokens, service_tokens) if service_tokens else 0
        if q_norm:
            name_norm = fold_yo(name.lower())
            if name_norm.startswith(q_norm):
                score += NAME_PREFIX_BONUS
            elif q_norm in name_norm:
                score += NAME_CONTAINS_BONUS
            else:
                score += NAME_FALLBACK_BONUS
        matches.append((-score, -logo_rank(summary), collation_key(name), cid))

    matches.sort(key=lambda m: m[:3])
    companies = [
        snapshot.summaries_by_id[m[3]]
        for m in matches[offset:offset + limit]
        if m[3] in snapshot.summaries_by_id
    ]
    return SearchResponse(query=params.query or "", total=len(matches), companies=companies)
