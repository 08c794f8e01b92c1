from __future__ import annotations

"""
Heuristic word tables used by keyword derivation and service-query
matching.  The production tables ship as JSON under ``bizsearch/data``;
tests build a ``Lexicon`` directly from small fixture tables.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, List

from loguru import logger
from pydantic import BaseModel, Field, PrivateAttr

from .config import GEO_DICTIONARY_PATH, LEXICON_PATH, SYNONYM_RULES_PATH
from .normalize import normalize_phrase, split_words


class SynonymRule(BaseModel):
    match: List[str] = Field(default_factory=list)
    synonyms: List[str] = Field(default_factory=list)


class GeoDictionary(BaseModel):
    countries: List[str] = Field(default_factory=list)
    cities: List[str] = Field(default_factory=list)


class SearchLexicon(BaseModel):
    query_stop_words: FrozenSet[str] = frozenset()
    descriptor_stop_words: FrozenSet[str] = frozenset()
    descriptor_prefixes: List[str] = Field(default_factory=list)
    legal_form_words: FrozenSet[str] = frozenset()


class Lexicon(BaseModel):
    stop_words: FrozenSet[str] = frozenset()
    edge_trim_words: FrozenSet[str] = frozenset()
    generic_single_words: FrozenSet[str] = frozenset()
    generic_subject_stems: List[str] = Field(default_factory=list)
    rubric_category_single_word_blocklist: FrozenSet[str] = frozenset()
    disallowed_words: FrozenSet[str] = frozenset()
    disallowed_stems: List[str] = Field(default_factory=list)
    activity_trigger_stems: List[str] = Field(default_factory=list)
    auxiliary_forbidden_tokens: FrozenSet[str] = frozenset()
    auxiliary_forbidden_stems: List[str] = Field(default_factory=list)
    aux_product_hint_stems: List[str] = Field(default_factory=list)
    aux_product_hint_exclusions: List[str] = Field(default_factory=list)
    callback_service_stems: List[str] = Field(default_factory=list)
    identity_legal_forms: FrozenSet[str] = frozenset()
    transactional_prefixes: List[str] = Field(default_factory=list)
    product_list_context_pattern: str = r"(?!)"
    food_taxonomy_pattern: str = r"(?!)"
    cargo_pattern: str = r"(?!)"
    geo: GeoDictionary = Field(default_factory=GeoDictionary)
    synonyms: List[SynonymRule] = Field(default_factory=list)
    search: SearchLexicon = Field(default_factory=SearchLexicon)

    _edge_words: FrozenSet[str] = PrivateAttr(default=frozenset())
    _geo_phrases: FrozenSet[str] = PrivateAttr(default=frozenset())
    _geo_tokens: FrozenSet[str] = PrivateAttr(default=frozenset())
    _synonym_rules: List[SynonymRule] = PrivateAttr(default_factory=list)
    _transactional_prefix_re: re.Pattern = PrivateAttr()
    _product_list_context_re: re.Pattern = PrivateAttr()
    _food_taxonomy_re: re.Pattern = PrivateAttr()
    _cargo_re: re.Pattern = PrivateAttr()

    def model_post_init(self, __context) -> None:
        self._edge_words = frozenset(self.stop_words | self.edge_trim_words)

        geo = [normalize_phrase(v) for v in self.geo.countries + self.geo.cities]
        self._geo_phrases = frozenset(p for p in geo if p)
        self._geo_tokens = frozenset(t for p in self._geo_phrases for t in split_words(p))

        rules: List[SynonymRule] = []
        for rule in self.synonyms:
            match = [m for m in (normalize_phrase(v) for v in rule.match) if m]
            syns = [s for s in (normalize_phrase(v) for v in rule.synonyms) if s]
            if match and syns:
                rules.append(SynonymRule(match=match, synonyms=syns))
        self._synonym_rules = rules

        # longest prefixes first so "купить оптом" wins over "купить"
        prefixes = sorted((p for p in self.transactional_prefixes if p), key=len, reverse=True)
        if prefixes:
            alternation = "|".join(re.escape(p) for p in prefixes)
            self._transactional_prefix_re = re.compile(rf"^(?:{alternation})\s+")
        else:
            self._transactional_prefix_re = re.compile(r"(?!)")
        self._product_list_context_re = re.compile(self.product_list_context_pattern)
        self._food_taxonomy_re = re.compile(self.food_taxonomy_pattern)
        self._cargo_re = re.compile(self.cargo_pattern)

    # ---- derived tables ----

    @property
    def edge_words(self) -> FrozenSet[str]:
        """Stop words plus filler verbs trimmed from phrase edges."""
        return self._edge_words

    @property
    def geo_phrases(self) -> FrozenSet[str]:
        return self._geo_phrases

    @property
    def geo_tokens(self) -> FrozenSet[str]:
        return self._geo_tokens

    @property
    def synonym_rules(self) -> List[SynonymRule]:
        return self._synonym_rules

    @property
    def transactional_prefix_re(self) -> re.Pattern:
        return self._transactional_prefix_re

    @property
    def product_list_context_re(self) -> re.Pattern:
        return self._product_list_context_re

    @property
    def food_taxonomy_re(self) -> re.Pattern:
        return self._food_taxonomy_re

    @property
    def cargo_re(self) -> re.Pattern:
        return self._cargo_re

    # ---- stem predicates ----

    def is_activity_trigger(self, token: str) -> bool:
        return bool(token) and token.startswith(tuple(self.activity_trigger_stems))

    def is_generic_subject(self, token: str) -> bool:
        if not token:
            return True
        return token.startswith(tuple(self.generic_subject_stems))

    def is_product_hint(self, token: str) -> bool:
        if not token or token.startswith(tuple(self.aux_product_hint_exclusions)):
            return False
        return token.startswith(tuple(self.aux_product_hint_stems))

    def is_callback_service(self, token: str) -> bool:
        return bool(token) and token.startswith(tuple(self.callback_service_stems))


def _read_json(path: Path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_lexicon(
    path: Path = LEXICON_PATH,
    geo_path: Path | None = GEO_DICTIONARY_PATH,
    synonyms_path: Path | None = SYNONYM_RULES_PATH,
) -> Lexicon:
    data = dict(_read_json(Path(path)))
    if geo_path is not None and Path(geo_path).exists():
        data["geo"] = _read_json(Path(geo_path))
    if synonyms_path is not None and Path(synonyms_path).exists():
        data["synonyms"] = _read_json(Path(synonyms_path))
    lexicon = Lexicon.model_validate(data)
    logger.debug(
        "Loaded lexicon from {} ({} stop words, {} geo phrases, {} synonym rules)",
        path,
        len(lexicon.stop_words),
        len(lexicon.geo_phrases),
        len(lexicon.synonym_rules),
    )
    return lexicon


@lru_cache(maxsize=1)
def default_lexicon() -> Lexicon:
    return load_lexicon()
