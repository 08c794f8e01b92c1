from __future__ import annotations

"""
Text normalization utilities shared by keyword derivation and search.

``normalize_phrase`` is the canonical form used for every keyword,
statistics key and lookup; it is idempotent.  Display text (company
descriptions shown in summaries) goes through ``basic_clean`` instead,
which keeps casing and punctuation but drops markup.
"""

import re
import unicodedata
from typing import Iterable, List, Sequence, Set

from bs4 import BeautifulSoup

MAX_INPUT_CHARS = 20_000

# ---------------------------
# Basic helpers
# ---------------------------

_ENTITY_REPLACEMENTS = [
    (re.compile(r"&nbsp;", re.IGNORECASE), " "),
    (re.compile(r"&amp;", re.IGNORECASE), "&"),
    (re.compile(r"&quot;", re.IGNORECASE), '"'),
    (re.compile(r"&#34;"), '"'),
    (re.compile(r"&apos;", re.IGNORECASE), "'"),
    (re.compile(r"&#39;"), "'"),
    (re.compile(r"&lt;", re.IGNORECASE), "<"),
    (re.compile(r"&gt;", re.IGNORECASE), ">"),
]

TAG_RE = re.compile(r"<[^>]*>")

# Extended pictographic blocks (emoji, dingbats, symbols, regional flags).
PICTOGRAPH_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\U0001FC00-\U0001FFFD"
    "\u2190-\u21FF"
    "\u2300-\u23FF"
    "\u25B6\u25C0\u25FB-\u25FE"
    "\u2600-\u27BF"
    "\u2934\u2935"
    "\u2B05-\u2B55"
    "\u3030\u303D\u3297\u3299"
    "\u00A9\u00AE\u203C\u2049\u2122\u2139\u24C2"
    "\uFE0F\u200D"
    "]"
)

QUOTES_RE = re.compile(r"[«»\"'`“”„]")
NON_WORD_RE = re.compile(r"[^\w\s]|_")
WHITESPACE_RE = re.compile(r"\s+")
NON_ALNUM_RE = re.compile(r"[\W_]+")
DIGITS_RE = re.compile(r"^\d+$")


def decode_entities(raw: str) -> str:
    text = raw or ""
    if "&" not in text:
        return text
    for pattern, repl in _ENTITY_REPLACEMENTS:
        text = pattern.sub(repl, text)
    return text


def strip_markup(raw: str) -> str:
    """Decode entities, then drop tags and pictographic symbols."""
    text = decode_entities(raw)
    text = TAG_RE.sub(" ", text)
    return PICTOGRAPH_RE.sub(" ", text)


def fold_yo(text: str) -> str:
    return (text or "").replace("ё", "е").replace("Ё", "Е")


def normalize_whitespace(text: str) -> str:
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip()


def is_digits(token: str) -> bool:
    return bool(DIGITS_RE.match(token or ""))


# ---------------------------
# Keyword phrase normalization
# ---------------------------

def normalize_phrase(raw: str) -> str:
    """
    Canonical phrase form: entities decoded, tags and pictographs
    removed, lower-cased, ``ё`` folded to ``е``, quotes and any other
    non letter/digit character replaced by a space, whitespace collapsed.
    """
    if not raw:
        return ""
    text = strip_markup(str(raw)).lower()
    text = fold_yo(text)
    text = QUOTES_RE.sub(" ", text)
    text = NON_WORD_RE.sub(" ", text)
    return normalize_whitespace(text)


def tokenize(raw: str) -> List[str]:
    normalized = normalize_phrase(raw)
    if not normalized:
        return []
    return normalized.split(" ")


def split_words(phrase: str) -> List[str]:
    return [t for t in (phrase or "").split() if t]


def words_count(phrase: str) -> int:
    return len(split_words(phrase))


def trim_edge_words(tokens: Sequence[str], edge_words: Set[str] | frozenset) -> List[str]:
    """Drop leading and trailing tokens that belong to ``edge_words``."""
    left = 0
    right = len(tokens) - 1
    while left <= right and tokens[left] in edge_words:
        left += 1
    while right >= left and tokens[right] in edge_words:
        right -= 1
    return list(tokens[left:right + 1])


def dedupe_preserve_order(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


# ---------------------------
# Collation / compact forms
# ---------------------------

def collation_key(text: str) -> str:
    """Case- and ``ё``-insensitive sort key for localized name ordering."""
    return fold_yo((text or "").casefold())


def compact_alnum(text: str) -> str:
    return NON_ALNUM_RE.sub("", fold_yo((text or "").lower()))


# ---------------------------
# Display text cleaning
# ---------------------------

def strip_html(raw: str) -> str:
    """
    Strip HTML tags using BeautifulSoup and tidy spacing before
    punctuation.  Plain text (no ``<``) is returned untouched.
    """
    if not raw:
        return ""
    if "<" not in raw:
        return raw
    soup = BeautifulSoup(raw, "lxml")
    text = normalize_whitespace(soup.get_text(" ", strip=True))
    return re.sub(r"\s+([.,!?;:])", r"\1", text)


def basic_clean(text: str | None, max_chars: int = MAX_INPUT_CHARS) -> str:
    """
    Cleaning for display fields:

    - clamp length
    - strip HTML
    - NFC unicode normalization
    - collapse whitespace
    """
    if text is None:
        return ""
    text = str(text)[:max_chars]
    text = strip_html(text)
    text = unicodedata.normalize("NFC", text)
    return normalize_whitespace(text)
