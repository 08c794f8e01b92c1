from __future__ import annotations

"""
Keyword statistics ingestion.

Statistics exports (Wordstat, Search Console, Analytics, Metrika) are
turned into a phrase -> volume table.  CSV headers vary between tools
and languages, so columns are matched against synonym sets after
header normalization.  Rows that carry no positive weight are dropped.
"""

import csv
import io
import json
import os
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

import pandas as pd
from loguru import logger

from .normalize import normalize_phrase

VolumeMap = Dict[str, float]
VolumeLookup = Callable[[str], float]


class KeywordStatsFileNotFound(FileNotFoundError):
    """A configured statistics file could not be resolved."""


# ---------------------------
# Header detection
# ---------------------------

COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "query": [
        "phrase", "query", "keyword", "key", "search_query", "search_phrase",
        "запрос", "поисковый_запрос", "поисковая_фраза", "фраза", "ключевая_фраза",
    ],
    "volume": [
        "volume", "freq", "frequency", "wordstat_volume", "ws_volume",
        "частотность", "частота", "частотность_wordstat",
    ],
    "monthly": [
        "volumes_by_month", "month_volumes", "monthly_volumes",
        "частотность_по_месяцам", "по_месяцам", "помесячно",
    ],
    "impressions": ["impressions", "impression", "shows", "show", "показы", "показ"],
    "clicks": ["clicks", "click", "клики", "клик"],
    "sessions": [
        "sessions", "session", "visits", "visit", "users", "user",
        "сеансы", "сеанс", "визиты", "визит", "пользователи", "пользователь",
    ],
}

CSV_DELIMITERS = [",", ";", "\t", "|"]


def normalize_header(raw: str) -> str:
    header = normalize_phrase(raw).replace(" ", "_")
    header = re.sub(r"_+", "_", header)
    return header.strip("_")


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter that splits the header row into the most columns."""
    best = ","
    best_score = 0
    for delimiter in CSV_DELIMITERS:
        row = next(csv.reader([header_line], delimiter=delimiter), [])
        if len(row) > best_score:
            best_score = len(row)
            best = delimiter
    return best


def _indexes(headers: Sequence[str], role: str) -> List[int]:
    keys = set(COLUMN_CANDIDATES[role])
    return [i for i, h in enumerate(headers) if h in keys]


# ---------------------------
# Number parsing
# ---------------------------

_SPACES_RE = re.compile(r"\s+")
_MONTHLY_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")


def parse_number(raw) -> float:
    """
    Parse a statistics number written with either locale convention.

    Spaces (including narrow no-break) and ``%`` are dropped.  When both
    ``.`` and ``,`` appear, the last one is the decimal separator.  A
    separator repeated more than once groups thousands.  A single
    separator followed by exactly three digits groups thousands unless
    the integer part is zero; otherwise it is the decimal separator.
    Non-positive and unparseable values yield ``0``.
    """
    if raw is None:
        return 0.0
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if value > 0 and value != float("inf") else 0.0

    text = _SPACES_RE.sub("", str(raw)).replace("%", "").strip()
    if not text:
        return 0.0

    sign = ""
    if text[0] in "+-":
        sign, text = text[0], text[1:]
    if not text or not re.fullmatch(r"[\d.,]+", text) or not re.search(r"\d", text):
        return 0.0

    has_dot = "." in text
    has_comma = "," in text
    if has_dot and has_comma:
        decimal = "." if text.rfind(".") > text.rfind(",") else ","
        thousands = "," if decimal == "." else "."
        text = text.replace(thousands, "").replace(decimal, ".")
    elif has_dot or has_comma:
        sep = "." if has_dot else ","
        if text.count(sep) > 1:
            text = text.replace(sep, "")
        else:
            whole, _, frac = text.partition(sep)
            if len(frac) == 3 and whole and whole.strip("0"):
                text = whole + frac
            else:
                text = f"{whole or '0'}.{frac or '0'}"

    try:
        value = float(sign + text)
    except ValueError:
        return 0.0
    if value <= 0 or value == float("inf"):
        return 0.0
    return value


def parse_monthly_numbers(raw) -> float:
    text = "" if raw is None else str(raw)
    if not text.strip():
        return 0.0
    return sum(parse_number(m) for m in _MONTHLY_NUMBER_RE.findall(text))


# ---------------------------
# Parsers
# ---------------------------

def _add(out: VolumeMap, key: str, weight: float) -> None:
    if key and weight > 0:
        out[key] = out.get(key, 0.0) + weight


def parse_csv_volume_map(raw_csv: str) -> VolumeMap:
    out: VolumeMap = {}
    text = (raw_csv or "").lstrip("\ufeff")
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return out

    delimiter = detect_delimiter(lines[0])
    df = pd.read_csv(
        io.StringIO("\n".join(lines)),
        sep=delimiter,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        on_bad_lines="skip",
        engine="python",
        quotechar='"',
    ).fillna("")
    if df.empty:
        return out

    headers = [normalize_header(h) for h in df.iloc[0].tolist()]
    query_idx = _indexes(headers, "query")
    if not query_idx:
        return out
    q = query_idx[0]
    volume_idx = _indexes(headers, "volume")
    monthly_idx = _indexes(headers, "monthly")
    extra_idx = _indexes(headers, "impressions") + _indexes(headers, "clicks") + _indexes(headers, "sessions")

    for row in df.iloc[1:].itertuples(index=False, name=None):
        key = normalize_phrase(row[q])
        if not key:
            continue

        weight = 0.0
        has_volume = False
        for i in volume_idx:
            value = parse_number(row[i])
            if value > 0:
                weight += value
                has_volume = True
        if not has_volume:
            for i in monthly_idx:
                weight += parse_monthly_numbers(row[i])
        for i in extra_idx:
            weight += parse_number(row[i])

        _add(out, key, weight)
    return out


def parse_json_volume_map(raw_json: str) -> VolumeMap:
    """Array of ``{phrase|query, volume|weight}`` objects or a flat mapping."""
    out: VolumeMap = {}
    parsed = json.loads(raw_json or "{}")

    if isinstance(parsed, list):
        for entry in parsed:
            if not isinstance(entry, dict):
                continue
            key = normalize_phrase(str(entry.get("phrase") or entry.get("query") or ""))
            weight = parse_number(entry.get("volume") or entry.get("weight") or 0)
            _add(out, key, weight)
        return out

    if not isinstance(parsed, dict):
        return out
    for key_raw, value_raw in parsed.items():
        _add(out, normalize_phrase(str(key_raw)), parse_number(value_raw))
    return out


# ---------------------------
# Files
# ---------------------------

def parse_stats_paths(raw: str | None) -> List[str]:
    return [part.strip() for part in re.split(r"[\n,;]+", raw or "") if part.strip()]


def resolve_stats_path(file_path: str, cwd: str | Path | None = None) -> Path | None:
    trimmed = (file_path or "").strip()
    if not trimmed:
        return None
    here = Path(os.getcwd())
    candidates = [Path(trimmed)]
    if cwd is not None:
        candidates.append(Path(cwd) / trimmed)
    candidates += [here / trimmed, here / "app" / trimmed]
    for candidate in candidates:
        if candidate.is_file():
            return candidate.resolve()
    return None


def merge_volume_maps(target: VolumeMap, source: Mapping[str, float]) -> None:
    for key, value in source.items():
        if key and isinstance(value, (int, float)) and value > 0:
            target[key] = target.get(key, 0.0) + float(value)


def load_volume_map_from_files(
    file_paths: Iterable[str],
    cwd: str | Path | None = None,
    skip_missing: bool = False,
) -> VolumeMap:
    """
    Merge every statistics file into one table (weights are summed).

    Missing files raise ``KeywordStatsFileNotFound`` unless
    ``skip_missing`` is set, in which case they are logged and skipped.
    """
    out: VolumeMap = {}
    for file_path in file_paths or []:
        resolved = resolve_stats_path(file_path, cwd)
        if resolved is None:
            msg = f"Keyword stats file not found: {file_path}"
            if skip_missing:
                logger.warning(msg)
                continue
            raise KeywordStatsFileNotFound(msg)

        try:
            raw = resolved.read_text(encoding="utf-8")
            if resolved.suffix.lower() == ".json":
                parsed = parse_json_volume_map(raw)
            else:
                parsed = parse_csv_volume_map(raw)
        except ValueError as e:
            logger.warning("Skipping unparseable keyword stats file {}: {}", resolved, e)
            continue
        logger.info("Loaded {} keyword volumes from {}", len(parsed), resolved)
        merge_volume_maps(out, parsed)
    return out


def create_volume_lookup(volume_map: Mapping[str, float]) -> VolumeLookup:
    def lookup(phrase: str) -> float:
        key = normalize_phrase(phrase or "")
        if not key:
            return 0.0
        value = volume_map.get(key, 0.0)
        return float(value) if value and value > 0 else 0.0

    return lookup
