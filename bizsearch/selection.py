from __future__ import annotations

"""
Candidate scoring, diversity-capped selection and the refinement rules
applied to a selected keyword list.
"""

import math
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Sequence, Set

from .candidates import CandidateExtractor, RawCandidate, Source, core_phrase
from .config import (
    LENGTH_PENALTY_FREE_WORDS,
    LENGTH_PENALTY_PER_WORD,
    MAX_VARIANTS_PER_CORE,
    MIN_BUY_KEYWORDS,
    VOLUME_BOOST_FACTOR,
)
from .lexicon import Lexicon
from .normalize import collation_key, dedupe_preserve_order, words_count
from .schemas import CompanyRecord

VolumeLookup = Callable[[str], float]

CARGO_PHRASE = "перевозки грузов"
BARE_CARGO_PHRASE = "перевозки"
TRANSPORT_SERVICES_PHRASE = "транспортные услуги"
BARE_TRANSPORT_PHRASE = "транспорт"
BUY_PREFIX = "купить "
SALE_PREFIX = "продажа "


@dataclass(frozen=True)
class KeywordCandidate:
    phrase: str
    source: Source
    score: float
    volume: float = 0.0


def build_candidate_score(base_score: float, volume: float, phrase: str) -> float:
    boost = math.log10(volume + 1) * VOLUME_BOOST_FACTOR if volume > 0 else 0.0
    penalty = max(0, words_count(phrase) - LENGTH_PENALTY_FREE_WORDS) * LENGTH_PENALTY_PER_WORD
    return base_score + boost - penalty


def safe_volume(lookup: VolumeLookup | None, phrase: str) -> float:
    if lookup is None:
        return 0.0
    try:
        value = float(lookup(phrase) or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if value != value or value <= 0 or value == float("inf"):
        return 0.0
    return value


class CandidatePool:
    """
    Scored candidates keyed by phrase.  A duplicate phrase keeps the
    higher-scoring entry and the larger volume seen for it.
    """

    def __init__(self, lookup: VolumeLookup | None = None):
        self.lookup = lookup
        self._by_phrase: Dict[str, KeywordCandidate] = {}

    def add(self, raw: RawCandidate) -> None:
        volume = safe_volume(self.lookup, raw.phrase)
        score = build_candidate_score(raw.base_score, volume, raw.phrase)
        existing = self._by_phrase.get(raw.phrase)
        if existing is None:
            self._by_phrase[raw.phrase] = KeywordCandidate(raw.phrase, raw.source, score, volume)
        elif score > existing.score:
            self._by_phrase[raw.phrase] = KeywordCandidate(
                raw.phrase, raw.source, score, max(volume, existing.volume)
            )
        elif volume > existing.volume:
            self._by_phrase[raw.phrase] = replace(existing, volume=volume)

    def extend(self, raws: Iterable[RawCandidate]) -> "CandidatePool":
        for raw in raws:
            self.add(raw)
        return self

    def get(self, phrase: str) -> KeywordCandidate | None:
        return self._by_phrase.get(phrase)

    def candidates(self) -> List[KeywordCandidate]:
        return list(self._by_phrase.values())

    def __len__(self) -> int:
        return len(self._by_phrase)


def candidate_sort_key(candidate: KeywordCandidate):
    return (
        -candidate.score,
        -candidate.volume,
        -candidate.source.priority,
        words_count(candidate.phrase),
        collation_key(candidate.phrase),
        candidate.phrase,
    )


def select_top_phrases(
    candidates: Iterable[KeywordCandidate],
    max_count: int,
    lexicon: Lexicon,
    already_selected: Sequence[str] = (),
) -> List[str]:
    """Greedy top-K with at most ``MAX_VARIANTS_PER_CORE`` phrases per core."""
    selected = list(already_selected)
    selected_set = set(selected)
    per_core: Dict[str, int] = {}
    for phrase in selected:
        core = core_phrase(phrase, lexicon) or phrase
        per_core[core] = per_core.get(core, 0) + 1

    for candidate in sorted(candidates, key=candidate_sort_key):
        if len(selected) >= max_count:
            break
        if candidate.phrase in selected_set:
            continue
        core = core_phrase(candidate.phrase, lexicon) or candidate.phrase
        if per_core.get(core, 0) >= MAX_VARIANTS_PER_CORE:
            continue
        selected.append(candidate.phrase)
        selected_set.add(candidate.phrase)
        per_core[core] = per_core.get(core, 0) + 1

    return selected[:max_count]


# ---------------------------
# Refinement
# ---------------------------

def can_use_post_processed(phrase: str, strict_active: bool, lookup: VolumeLookup | None) -> bool:
    if not strict_active:
        return True
    return safe_volume(lookup, phrase) > 0


def refine_selected(
    selected: Sequence[str],
    record: CompanyRecord,
    extractor: CandidateExtractor,
    strict_active: bool,
    lookup: VolumeLookup | None,
) -> List[str]:
    out = list(selected)
    cores = {core_phrase(p, extractor.lexicon) for p in out}

    if BARE_CARGO_PHRASE in out:
        if CARGO_PHRASE in cores:
            out.remove(BARE_CARGO_PHRASE)
        elif extractor.has_cargo_signal(record) and can_use_post_processed(CARGO_PHRASE, strict_active, lookup):
            out[out.index(BARE_CARGO_PHRASE)] = CARGO_PHRASE

    if TRANSPORT_SERVICES_PHRASE in cores and BARE_TRANSPORT_PHRASE in out:
        out.remove(BARE_TRANSPORT_PHRASE)

    return dedupe_preserve_order(out)


def ensure_buy_intent(
    selected: Sequence[str],
    pool: CandidatePool,
    lexicon: Lexicon,
    strict_active: bool,
    extractor: CandidateExtractor,
) -> List[str]:
    """
    Guarantee ``MIN_BUY_KEYWORDS`` phrases starting with ``купить`` by
    rewriting the lowest-scoring ``продажа X`` phrases whose ``купить X``
    counterpart was itself a candidate.
    """
    out = list(selected)
    existing = sum(1 for p in out if p.startswith(BUY_PREFIX))
    if existing >= MIN_BUY_KEYWORDS:
        return out

    out_set = set(out)
    convertible = []
    for idx, phrase in enumerate(out):
        if not phrase.startswith(SALE_PREFIX):
            continue
        core = core_phrase(phrase, lexicon)
        if not core:
            continue
        buy_phrase = extractor.normalize_candidate(f"{BUY_PREFIX}{core}")
        if not buy_phrase or buy_phrase in out_set:
            continue
        buy_candidate = pool.get(buy_phrase)
        if buy_candidate is None:
            continue
        if strict_active and buy_candidate.volume <= 0:
            continue
        sale = pool.get(phrase)
        convertible.append((sale.score if sale else 0.0, idx, buy_phrase))

    convertible.sort(key=lambda item: (item[0], item[1]))
    needed = MIN_BUY_KEYWORDS - existing
    for _, idx, buy_phrase in convertible:
        if needed <= 0:
            break
        if buy_phrase in out_set:
            continue
        out_set.discard(out[idx])
        out[idx] = buy_phrase
        out_set.add(buy_phrase)
        needed -= 1
    return out


def blocked_generic_phrases(selected: Iterable[str], lexicon: Lexicon) -> Set[str]:
    """Bare generic phrases made redundant by a selected phrase with a more specific core."""
    chosen = {core_phrase(p, lexicon) for p in selected}
    blocked: Set[str] = set()
    if TRANSPORT_SERVICES_PHRASE in chosen:
        blocked.add(BARE_TRANSPORT_PHRASE)
    if CARGO_PHRASE in chosen:
        blocked.add(BARE_CARGO_PHRASE)
    return blocked
