from __future__ import annotations

"""
Keyword candidate extraction.

A company record is mined by five producers: structured services and
products, a repeated-head list detector over the description, an
activity-verb window scan over free text, a parenthetical product-list
scan for food-industry companies, and the rubric/category names.  Every
phrase is normalized and passed through ``is_safe_phrase`` before it is
handed to scoring, so callers only ever see safe, normalized phrases.

All functions here are total: malformed input yields fewer candidates,
never an exception.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .config import BASE_SCORES, MAX_PHRASE_WORDS, MAX_SYNONYMS_PER_PHRASE
from .lexicon import Lexicon, default_lexicon
from .normalize import (
    dedupe_preserve_order,
    is_digits,
    normalize_phrase,
    normalize_whitespace,
    split_words,
    strip_markup,
    tokenize,
    trim_edge_words,
    words_count,
)
from .schemas import CatalogItem, CompanyRecord


class Source(str, Enum):
    SERVICE = "service"
    PRODUCT = "product"
    AUX_TEXT = "aux_text"
    RUBRIC = "rubric"
    CATEGORY = "category"

    @property
    def priority(self) -> int:
        return SOURCE_PRIORITY[self]

    @property
    def is_taxonomy(self) -> bool:
        return self in (Source.RUBRIC, Source.CATEGORY)


SOURCE_PRIORITY: Dict[Source, int] = {
    Source.SERVICE: 5,
    Source.PRODUCT: 4,
    Source.AUX_TEXT: 3,
    Source.RUBRIC: 2,
    Source.CATEGORY: 1,
}


@dataclass(frozen=True)
class RawCandidate:
    phrase: str
    source: Source
    base_score: float


# ---------------------------
# Text splitting helpers
# ---------------------------

BULLETS_RE = re.compile(r"[•●·▪‣◦]")
SLASH_RE = re.compile(r"\s*/\s*")
SOFT_BREAKS_RE = re.compile(r"[\r\f\v]+")
PART_SPLIT_RE = re.compile(r"[\n,;|]+")
SENTENCE_SPLIT_RE = re.compile(r"[\n.!?;:]+")
HAS_LETTER_RE = re.compile(r"[a-zа-я]", re.IGNORECASE)
HAS_DIGIT_RE = re.compile(r"\d")

BRAND_DECORATION_RES = [
    re.compile(r"«[^»]{1,120}»"),
    re.compile(r'"[^"]{1,120}"'),
    re.compile(r"„[^“]{1,120}“"),
    re.compile(r"\([^)]{1,120}\)"),
]

PARENTHETICAL_RE = re.compile(r"\(([^()]{2,200})\)")
LIST_ITEM_SPLIT_RE = re.compile(r"[;,/]+")
LIST_AND_SPLIT_RE = re.compile(r"\s+и\s+")
LIST_ITEM_NOISE_RES = [
    re.compile(r"\bи\s+т\.?\s*д\b\.?", re.IGNORECASE),
    re.compile(r"\bи\s+др\b\.?", re.IGNORECASE),
    re.compile(r"\bи\s+друг(?:ое|ие)\b", re.IGNORECASE),
    re.compile(r"\bт\.?\s*д\b\.?", re.IGNORECASE),
    re.compile(r"\bпроч(?:ее|ие)\b", re.IGNORECASE),
    re.compile(r"[()]"),
]
DRY_BABY_FOOD_RE = re.compile(r"сух[а-я]*\s+детск[а-я]*\s+питани[а-я]*")
BABY_FOOD_RE = re.compile(r"детск[а-я]*\s+питани[а-я]*")

CONTEXT_WINDOW_CHARS = 90
PRODUCT_LIST_MAX_WORDS = 4
REPEATED_HEAD_MAX_WORDS = 5
REPEATED_HEAD_MIN_PARTS = 3
STRUCTURED_DESCRIPTION_PARTS = 3


def split_raw_to_parts(raw: str) -> List[str]:
    """Split an authored list on commas, semicolons, pipes, newlines, slashes and bullets."""
    text = strip_markup(raw or "")
    text = BULLETS_RE.sub("\n", text)
    text = SLASH_RE.sub("\n", text)
    text = SOFT_BREAKS_RE.sub("\n", text)
    return [part.strip() for part in PART_SPLIT_RE.split(text) if part.strip()]


def strip_brand_decorations(raw: str) -> str:
    text = raw or ""
    for pattern in BRAND_DECORATION_RES:
        text = pattern.sub(" ", text)
    return text


def core_phrase(phrase: str, lexicon: Lexicon) -> str:
    """Phrase with a leading transactional prefix (buy/order/sale...) removed."""
    stripped = lexicon.transactional_prefix_re.sub("", (phrase or "").strip(), count=1)
    return normalize_phrase(stripped.strip())


class CandidateExtractor:
    def __init__(self, lexicon: Lexicon | None = None):
        self.lexicon = lexicon or default_lexicon()

    # ---------------------------
    # Phrase shaping
    # ---------------------------

    def normalize_candidate(self, raw: str) -> str:
        phrase = normalize_phrase(raw)
        if not phrase:
            return ""
        tokens = [t for t in phrase.split(" ") if len(t) > 1 or is_digits(t)]
        return " ".join(trim_edge_words(tokens, self.lexicon.edge_words))

    def has_activity_trigger(self, phrase: str) -> bool:
        return any(self.lexicon.is_activity_trigger(t) for t in split_words(phrase))

    def has_product_hint(self, phrase: str) -> bool:
        return any(self.lexicon.is_product_hint(t) for t in split_words(phrase))

    def expand_conjunctive_phrase(self, raw: str) -> List[str]:
        """
        Split ``A и B`` into its halves.  A one-word half borrows context
        from the other: ``производство мебели и дверей`` gives
        ``производство дверей``; ``ремонт и обслуживание холодильников``
        gives ``ремонт холодильников``.
        """
        lex = self.lexicon
        raw_normalized = normalize_phrase(raw)
        if not raw_normalized:
            return []

        tokens = trim_edge_words(raw_normalized.split(" "), lex.edge_words)
        normalized = self.normalize_candidate(" ".join(tokens))
        if not normalized:
            return []
        if len(tokens) < 3:
            return [normalized]

        and_indexes = [i for i, t in enumerate(tokens) if t == "и"]
        if len(and_indexes) != 1:
            return [normalized]
        idx = and_indexes[0]
        if idx <= 0 or idx >= len(tokens) - 1:
            return [normalized]

        left_tokens = tokens[:idx]
        right_tokens = tokens[idx + 1:]
        left = self.normalize_candidate(" ".join(left_tokens))
        right = self.normalize_candidate(" ".join(right_tokens))

        if len(right_tokens) == 1 and len(left_tokens) >= 2:
            expanded = ""
            if len(left_tokens) >= 3:
                expanded = self.normalize_candidate(" ".join(left_tokens[:-1] + right_tokens))
            if expanded:
                right = expanded
            elif lex.is_activity_trigger(left_tokens[0]):
                right = self.normalize_candidate(f"{left_tokens[0]} {right_tokens[0]}") or right
        elif len(left_tokens) == 1 and len(right_tokens) >= 2 and lex.is_activity_trigger(left_tokens[0]):
            left = self.normalize_candidate(" ".join(left_tokens + right_tokens[1:])) or left

        out = dedupe_preserve_order([left, right])
        return out or [normalized]

    # ---------------------------
    # Producers
    # ---------------------------

    def collect_structured_phrases(self, items: Sequence[CatalogItem]) -> List[str]:
        out: List[str] = []
        for item in items or []:
            for part in split_raw_to_parts(strip_brand_decorations(item.name)):
                for variant in self.expand_conjunctive_phrase(part):
                    if variant and words_count(variant) <= MAX_PHRASE_WORDS:
                        out.append(variant)

            for part in split_raw_to_parts(item.description)[:STRUCTURED_DESCRIPTION_PARTS]:
                for variant in self.expand_conjunctive_phrase(part):
                    if not variant or words_count(variant) > MAX_PHRASE_WORDS:
                        continue
                    if self.has_activity_trigger(variant):
                        out.append(variant)
        return dedupe_preserve_order(out)

    def extract_activity_phrases(self, raw: str) -> List[str]:
        """Windows of up to six tokens around activity verbs, per sentence."""
        edge = self.lexicon.edge_words
        text = strip_markup(raw or "")
        text = SOFT_BREAKS_RE.sub("\n", text)
        text = BULLETS_RE.sub("\n", text)

        out: List[str] = []
        for chunk in SENTENCE_SPLIT_RE.split(text):
            sentence = normalize_phrase(chunk)
            if not sentence:
                continue
            tokens = sentence.split(" ")
            for i, token in enumerate(tokens):
                if not self.lexicon.is_activity_trigger(token):
                    continue
                start = max(0, i - 1)
                end = min(len(tokens), start + MAX_PHRASE_WORDS)
                window = trim_edge_words(tokens[start:end], edge)
                if not window:
                    continue
                phrase = " ".join(window)
                if self.has_activity_trigger(phrase):
                    out.append(phrase)

            if len(tokens) <= MAX_PHRASE_WORDS and self.has_activity_trigger(sentence):
                whole = " ".join(trim_edge_words(tokens, edge))
                if whole:
                    out.append(whole)
        return dedupe_preserve_order(out)

    def extract_repeated_head_phrases(self, raw: str) -> List[str]:
        """
        Treat the description as an enumerated list when at least three
        parts start with the same 3-letter stem.
        """
        lex = self.lexicon
        phrases = [self.normalize_candidate(p) for p in split_raw_to_parts(raw or "")]
        phrases = [p for p in phrases if p and words_count(p) <= REPEATED_HEAD_MAX_WORDS]
        if not phrases:
            return []

        stem_counts: Dict[str, int] = {}
        stem_by_phrase: Dict[str, str] = {}
        for phrase in phrases:
            head = phrase.split(" ")[0]
            if head in lex.stop_words or lex.is_generic_subject(head):
                continue
            if lex.is_activity_trigger(head) or len(head) < 3:
                continue
            stem = head[:3]
            stem_by_phrase[phrase] = stem
            stem_counts[stem] = stem_counts.get(stem, 0) + 1

        dominant = {stem for stem, count in stem_counts.items() if count >= REPEATED_HEAD_MIN_PARTS}
        if not dominant:
            return []
        return dedupe_preserve_order(p for p in phrases if stem_by_phrase.get(p) in dominant)

    def _normalize_list_item(self, raw: str) -> str:
        cleaned = raw or ""
        for pattern in LIST_ITEM_NOISE_RES:
            cleaned = pattern.sub(" ", cleaned)
        item = self.normalize_candidate(cleaned)
        if not item or words_count(item) > PRODUCT_LIST_MAX_WORDS:
            return ""
        return item if self.has_product_hint(item) else ""

    def extract_product_list_phrases(self, raw: str) -> List[str]:
        text = normalize_whitespace(strip_markup(raw or "")).lower().replace("ё", "е")
        out: List[str] = []

        for match in PARENTHETICAL_RE.finditer(text):
            list_raw = match.group(1).strip()
            if not list_raw:
                continue
            left_context = text[max(0, match.start() - CONTEXT_WINDOW_CHARS):match.start()]
            if not self.lexicon.product_list_context_re.search(left_context):
                continue
            for chunk in LIST_ITEM_SPLIT_RE.split(list_raw):
                for piece in LIST_AND_SPLIT_RE.split(chunk):
                    item = self._normalize_list_item(piece)
                    if item:
                        out.append(item)

        normalized_text = normalize_phrase(raw or "")
        if DRY_BABY_FOOD_RE.search(normalized_text):
            out.append("сухое детское питание")
        elif BABY_FOOD_RE.search(normalized_text):
            out.append("детское питание")
        return dedupe_preserve_order(out)

    def collect_taxonomy_phrases(self, record: CompanyRecord) -> List[Tuple[str, Source]]:
        blocklist = self.lexicon.rubric_category_single_word_blocklist
        out: List[Tuple[str, Source]] = []
        seen: Set[Tuple[str, Source]] = set()

        named = [(r.name, Source.RUBRIC) for r in record.rubrics]
        named += [(c.name, Source.CATEGORY) for c in record.categories]
        for name, source in named:
            for part in split_raw_to_parts(strip_brand_decorations(name)):
                for variant in self.expand_conjunctive_phrase(part):
                    phrase = self.normalize_candidate(variant)
                    if not phrase or words_count(phrase) > MAX_PHRASE_WORDS:
                        continue
                    if words_count(phrase) == 1 and phrase in blocklist:
                        continue
                    if (phrase, source) in seen:
                        continue
                    seen.add((phrase, source))
                    out.append((phrase, source))
        return out

    def expand_synonyms(self, phrase: str) -> List[str]:
        base = normalize_phrase(phrase)
        if not base:
            return []

        out: List[str] = []
        for rule in self.lexicon.synonym_rules:
            if any(needle == base or needle in base or base in needle for needle in rule.match):
                out.extend(rule.synonyms)

        for prefix, swap in (
            ("монтаж ", "установка "),
            ("установка ", "монтаж "),
            ("прочистка ", "чистка "),
            ("чистка ", "прочистка "),
            ("ремонт ", "обслуживание "),
        ):
            if base.startswith(prefix):
                out.append(f"{swap}{base[len(prefix):]}".strip())

        normalized = [self.normalize_candidate(v) for v in dedupe_preserve_order(out)]
        return dedupe_preserve_order(normalized)[:MAX_SYNONYMS_PER_PHRASE]

    def should_add_call_phrase(self, phrase: str) -> bool:
        return any(self.lexicon.is_callback_service(t) for t in tokenize(phrase))

    # ---------------------------
    # Record signals
    # ---------------------------

    def has_food_taxonomy(self, record: CompanyRecord) -> bool:
        names = [c.name for c in record.categories] + [r.name for r in record.rubrics]
        text = normalize_phrase(" ".join(names))
        return bool(text) and bool(self.lexicon.food_taxonomy_re.search(text))

    def has_cargo_signal(self, record: CompanyRecord) -> bool:
        parts = [r.name for r in record.rubrics] + [c.name for c in record.categories]
        for item in list(record.services_list) + list(record.products):
            parts += [item.name, item.description]
        text = normalize_phrase(" ".join(parts))
        return bool(text) and bool(self.lexicon.cargo_re.search(text))

    @staticmethod
    def context_geo_tokens(record: CompanyRecord) -> Set[str]:
        return set(tokenize(record.city)) | set(tokenize(record.region)) | set(tokenize(record.country))

    def identity_tokens(self, record: CompanyRecord) -> Set[str]:
        legal_forms = self.lexicon.identity_legal_forms
        out = {t for t in tokenize(record.name) if len(t) >= 4 and t not in legal_forms}
        out |= {t for t in split_words(normalize_phrase(record.source_id)) if len(t) >= 4}
        return out

    # ---------------------------
    # Safety filter
    # ---------------------------

    def _contains_geo(self, phrase: str, context_geo: Set[str]) -> bool:
        padded = f" {phrase} "
        if any(f" {geo} " in padded for geo in self.lexicon.geo_phrases):
            return True
        return any(t in self.lexicon.geo_tokens or t in context_geo for t in split_words(phrase))

    def _contains_disallowed(self, tokens: Iterable[str]) -> bool:
        lex = self.lexicon
        stems = tuple(lex.disallowed_stems)
        return any(t in lex.disallowed_words or t.startswith(stems) for t in tokens)

    def _contains_auxiliary_junk(self, tokens: Iterable[str]) -> bool:
        lex = self.lexicon
        stems = tuple(lex.auxiliary_forbidden_stems)
        return any(t in lex.auxiliary_forbidden_tokens or t.startswith(stems) for t in tokens)

    def _has_meaningful_tokens(self, tokens: Sequence[str]) -> bool:
        meaningful = [t for t in tokens if t not in self.lexicon.stop_words]
        if not meaningful:
            return False
        return not (len(meaningful) == 1 and meaningful[0] in self.lexicon.generic_single_words)

    def _has_specific_subject(self, phrase: str) -> bool:
        core = core_phrase(phrase, self.lexicon) or phrase
        tokens = [t for t in split_words(core) if t not in self.lexicon.stop_words]
        return any(not self.lexicon.is_generic_subject(t) for t in tokens)

    def is_safe_phrase(
        self,
        phrase: str,
        source: Source,
        context_geo: Set[str] | None = None,
        identity: Set[str] | None = None,
    ) -> bool:
        if not phrase or not HAS_LETTER_RE.search(phrase):
            return False
        tokens = split_words(phrase)
        if len(tokens) > MAX_PHRASE_WORDS:
            return False
        if self._contains_disallowed(tokens):
            return False
        # years, model numbers and any other digits
        if HAS_DIGIT_RE.search(phrase):
            return False
        if self._contains_geo(phrase, context_geo or set()):
            return False
        if not self._has_meaningful_tokens(tokens):
            return False
        if not source.is_taxonomy and not self._has_specific_subject(phrase):
            return False
        if source is Source.AUX_TEXT:
            if self._contains_auxiliary_junk(tokens):
                return False
            if identity and any(t in identity for t in tokens):
                return False
        return True

    # ---------------------------
    # Entry point
    # ---------------------------

    def extract(self, record: CompanyRecord, allow_aux_text: bool = False) -> List[RawCandidate]:
        """
        Produce every safe candidate for ``record`` in extraction order.
        ``allow_aux_text`` enables the activity-verb scan over free text,
        which is only trusted when strict statistics back the selection.
        """
        context_geo = self.context_geo_tokens(record)
        identity = self.identity_tokens(record)
        out: List[RawCandidate] = []

        def add(raw: str, source: Source, score_key: str) -> None:
            phrase = self.normalize_candidate(raw)
            if phrase and self.is_safe_phrase(phrase, source, context_geo, identity):
                out.append(RawCandidate(phrase, source, BASE_SCORES[score_key]))

        services = self.collect_structured_phrases(record.services_list)
        products = self.collect_structured_phrases(record.products)

        for phrase in services:
            add(phrase, Source.SERVICE, "service")
            add(f"заказать {phrase}", Source.SERVICE, "service_order")
            add(f"услуги {phrase}", Source.SERVICE, "service_services")
            if self.should_add_call_phrase(phrase):
                add(f"вызвать {phrase}", Source.SERVICE, "service_call")
            for synonym in self.expand_synonyms(phrase):
                add(synonym, Source.SERVICE, "service_synonym")

        for phrase in products:
            add(phrase, Source.PRODUCT, "product")
            add(f"продажа {phrase}", Source.PRODUCT, "product_sale")
            add(f"купить {phrase}", Source.PRODUCT, "product_buy")
            add(f"купить оптом {phrase}", Source.PRODUCT, "product_buy_wholesale")
            add(f"покупка {phrase}", Source.PRODUCT, "product_purchase")
            add(f"покупка оптом {phrase}", Source.PRODUCT, "product_purchase_wholesale")
            for synonym in self.expand_synonyms(phrase):
                add(synonym, Source.PRODUCT, "product_synonym")

        if not services and not products:
            for phrase in self.extract_repeated_head_phrases(record.description):
                add(phrase, Source.AUX_TEXT, "repeated_head")
                add(f"продажа {phrase}", Source.AUX_TEXT, "repeated_head_sale")
                add(f"купить {phrase}", Source.AUX_TEXT, "repeated_head_buy")

        if allow_aux_text:
            for phrase in self.extract_activity_phrases(record.description):
                add(phrase, Source.AUX_TEXT, "activity_description")
            for phrase in self.extract_activity_phrases(record.about):
                add(phrase, Source.AUX_TEXT, "activity_about")

        if self.has_food_taxonomy(record):
            for phrase in self.extract_product_list_phrases(record.description):
                add(phrase, Source.AUX_TEXT, "product_list_description")
            for phrase in self.extract_product_list_phrases(record.about):
                add(phrase, Source.AUX_TEXT, "product_list_about")

        for phrase, source in self.collect_taxonomy_phrases(record):
            add(phrase, source, source.value)

        return out
