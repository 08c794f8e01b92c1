from __future__ import annotations

"""
Keyword derivation for company records.

``generate_company_keyword_phrases`` runs the whole pipeline: candidate
extraction, volume-weighted scoring, diversity-capped selection, the
rubric fallback pass and the refinement rules.  ``KeywordRuntime``
owns the process-level configuration (statistics files, strict mode,
fallback mode) and caches the loaded volume table per configuration
signature.
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Tuple

from loguru import logger

from .candidates import CandidateExtractor
from .config import DEFAULT_MAX_KEYWORDS, MAX_KEYWORDS_LIMIT, KeywordSettings
from .lexicon import Lexicon, default_lexicon
from .normalize import normalize_phrase, split_words
from .schemas import CompanyRecord
from .selection import (
    CandidatePool,
    blocked_generic_phrases,
    ensure_buy_intent,
    refine_selected,
    select_top_phrases,
)
from .stats import create_volume_lookup, load_volume_map_from_files

VolumeLookup = Callable[[str], float]


@dataclass(frozen=True)
class KeywordOptions:
    max_keywords: int = DEFAULT_MAX_KEYWORDS
    strict_stats: bool = False
    fallback_mode: str = "rubrics"
    volume_lookup: VolumeLookup | None = None
    volume_map: Mapping[str, float] | None = None

    def lookup(self) -> VolumeLookup | None:
        if self.volume_lookup is not None:
            inner = self.volume_lookup
            return lambda phrase: inner(normalize_phrase(phrase))
        if self.volume_map:
            return create_volume_lookup(self.volume_map)
        return None


def generate_company_keyword_phrases(
    record: CompanyRecord,
    options: KeywordOptions | None = None,
    lexicon: Lexicon | None = None,
) -> List[str]:
    opts = options or KeywordOptions()
    lex = lexicon or default_lexicon()
    extractor = CandidateExtractor(lex)

    max_keywords = max(1, min(MAX_KEYWORDS_LIMIT, int(opts.max_keywords or DEFAULT_MAX_KEYWORDS)))
    fallback_mode = "short" if opts.fallback_mode == "short" else "rubrics"
    lookup = opts.lookup()
    strict_active = bool(opts.strict_stats and lookup is not None)

    pool = CandidatePool(lookup).extend(extractor.extract(record, allow_aux_text=strict_active))
    all_candidates = pool.candidates()
    eligible = [c for c in all_candidates if c.volume > 0] if strict_active else all_candidates

    selected = select_top_phrases(eligible, max_keywords, lex)
    selected = refine_selected(selected, record, extractor, strict_active, lookup)

    if len(selected) < max_keywords and fallback_mode == "rubrics":
        blocked = blocked_generic_phrases(selected, lex)
        fallback = [
            c for c in all_candidates
            if c.source.is_taxonomy and c.phrase not in selected and c.phrase not in blocked
        ]
        selected = select_top_phrases(fallback, max_keywords, lex, selected)
        selected = refine_selected(selected, record, extractor, strict_active, lookup)

    selected = ensure_buy_intent(selected, pool, lex, strict_active, extractor)
    selected = refine_selected(selected, record, extractor, strict_active, lookup)
    return selected[:max_keywords]


def phrases_to_search_tokens(phrases: Iterable[str], lexicon: Lexicon | None = None) -> List[str]:
    """Whole normalized phrases plus their non-stop words (2+ chars), deduplicated."""
    stop_words = (lexicon or default_lexicon()).stop_words
    out: List[str] = []
    seen = set()
    for raw in phrases or []:
        phrase = normalize_phrase(raw)
        if not phrase:
            continue
        for token in [phrase] + split_words(phrase):
            if token is not phrase and (len(token) < 2 or token in stop_words):
                continue
            if token not in seen:
                seen.add(token)
                out.append(token)
    return out


def generate_company_keywords(
    record: CompanyRecord,
    options: KeywordOptions | None = None,
    lexicon: Lexicon | None = None,
) -> List[str]:
    return phrases_to_search_tokens(generate_company_keyword_phrases(record, options, lexicon), lexicon)


def generate_company_keywords_string(record: CompanyRecord, options: KeywordOptions | None = None) -> str:
    return ", ".join(generate_company_keyword_phrases(record, options))


# ---------------------------
# Runtime configuration
# ---------------------------

class KeywordRuntime:
    """
    Resolves ``KeywordSettings`` into ``KeywordOptions``.  The volume
    table is built once per (files, strict, fallback) signature; missing
    statistics files are skipped with a warning.
    """

    def __init__(self, settings: KeywordSettings | None = None, cwd: str | Path | None = None):
        self.settings = settings or KeywordSettings()
        self.cwd = cwd
        self._lock = threading.Lock()
        self._cached: Tuple[tuple, KeywordOptions] | None = None

    def signature(self) -> tuple:
        s = self.settings
        return (tuple(s.stats_files), s.strict_stats, s.fallback_mode, s.max_keywords)

    def options(self) -> KeywordOptions:
        key = self.signature()
        cached = self._cached
        if cached is not None and cached[0] == key:
            return cached[1]

        with self._lock:
            if self._cached is not None and self._cached[0] == key:
                return self._cached[1]
            s = self.settings
            volume_map = None
            if s.stats_files:
                volume_map = load_volume_map_from_files(s.stats_files, cwd=self.cwd, skip_missing=True)
                logger.info(
                    "Keyword volume table: {} phrases from {} file(s), strict={}",
                    len(volume_map),
                    len(s.stats_files),
                    s.strict_stats,
                )
            options = KeywordOptions(
                max_keywords=s.max_keywords,
                strict_stats=s.strict_stats,
                fallback_mode=s.fallback_mode,
                volume_map=volume_map or None,
            )
            self._cached = (key, options)
            return options

    def configure(self, settings: KeywordSettings) -> None:
        with self._lock:
            self.settings = settings
            self._cached = None
