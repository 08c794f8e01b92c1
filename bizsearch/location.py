from __future__ import annotations

"""
Location helpers: region classification for catalog records and the
city/address handling used by search filters.

``classify_region`` is a pure function of the record's city, region and
address fields.  Rules are tried in order and the first hit wins:

1. region field names one of the oblast centres
2. city field names one of the oblast centres
3. "Минский район" / "Минская область" anywhere
4. postal code prefix (including prefixes seen in corrupted exports)
5. bare "минск" in city or region
"""

import re
from typing import Dict, List, Sequence, Tuple

# ---------------------------
# Region classification
# ---------------------------

REGION_ALIAS: Dict[str, List[str]] = {
    "minsk": ["minsk"],
    "minsk-region": ["minsk-region"],
    "brest": ["brest"],
    "vitebsk": ["vitebsk"],
    "gomel": ["gomel"],
    "grodno": ["grodno"],
    "mogilev": ["mogilev"],
}

# Checked against the region field first, then the city field.
REGION_STEMS: List[Tuple[str, str]] = [
    ("брест", "brest"),
    ("витеб", "vitebsk"),
    ("гомел", "gomel"),
    ("гродн", "grodno"),
    ("могил", "mogilev"),
]

POSTAL_PREFIX_TO_REGION: Dict[str, str] = {
    "210": "vitebsk",
    "211": "vitebsk",
    "212": "mogilev",
    "213": "mogilev",
    "220": "minsk",
    "221": "minsk-region",
    "222": "minsk-region",
    "223": "minsk-region",
    "224": "brest",
    "225": "brest",
    "230": "grodno",
    "231": "grodno",
    "246": "gomel",
    "247": "gomel",
}

# Prefixes that do not exist in the postal system but occur in exports.
CORRUPTED_POSTAL_PREFIX_TO_REGION: Dict[str, str] = {
    "200": "minsk",
    "201": "vitebsk",
    "202": "minsk-region",
    "215": "minsk",
    "217": "vitebsk",
    "227": "minsk-region",
    "232": "minsk",
    "234": "grodno",
    "236": "gomel",
    "249": "vitebsk",
    "264": "gomel",
    "270": "minsk",
    "274": "gomel",
}

POSTAL_CODE_RE = re.compile(r"(?<!\d)2\d{5}(?!\d)")
MINSK_DISTRICT_RE = re.compile(r"минск(?:ий|ого|ому|ом)?\s*(?:р-н|район)")
MINSK_OBLAST_RE = re.compile(r"минск(?:ая|ой|ую|ом)?\s*(?:обл\.?|область)")
DISTRICT_MARKERS = ("р-н", "район", "обл", "область")


def region_from_postal_code(address: str) -> str | None:
    for code in POSTAL_CODE_RE.findall(address or ""):
        prefix = code[:3]
        region = POSTAL_PREFIX_TO_REGION.get(prefix) or CORRUPTED_POSTAL_PREFIX_TO_REGION.get(prefix)
        if region:
            return region
    return None


def _looks_like_district(text: str) -> bool:
    return any(marker in text for marker in DISTRICT_MARKERS)


def _is_minsk_region(city: str, region: str, address: str) -> bool:
    for text in (city, region, address):
        if MINSK_DISTRICT_RE.search(text) or MINSK_OBLAST_RE.search(text):
            return True
    if "минск" in city and _looks_like_district(city):
        return True
    return "минск" in region and _looks_like_district(region)


def classify_region(city: str, region: str, address: str) -> str | None:
    city_low = (city or "").lower()
    region_low = (region or "").lower()
    address_low = (address or "").lower()

    for text in (region_low, city_low):
        for stem, slug in REGION_STEMS:
            if stem in text:
                return slug

    if _is_minsk_region(city_low, region_low, address_low):
        return "minsk-region"

    from_postal = region_from_postal_code(address or "")
    if from_postal:
        return from_postal

    if "минск" in city_low or "минск" in region_low:
        return "minsk"
    return None


def region_alias_keys(region: str) -> List[str]:
    keys: List[str] = []
    for key in REGION_ALIAS.get(region, [region]):
        if key not in keys:
            keys.append(key)
    return keys


def region_matches(region: str | None, company_region: str | None) -> bool:
    """An empty filter matches everything; unclassified companies match no filter."""
    if not region:
        return True
    if not company_region:
        return False
    return company_region in REGION_ALIAS.get(region, [region])


# ---------------------------
# City filters
# ---------------------------

ADDRESS_MARKERS_RE = re.compile(
    r"(?:^|[\s,.;:()\-])"
    r"(?:ул\.?|улица|пр-?т\.?|просп\.?|проспект|пер\.?|переулок|пл\.?|площадь|наб\.?|набережная"
    r"|бул\.?|бульвар|шоссе|тракт|дом|кв\.?|квартира|корп\.?|корпус|оф\.?|офис)"
    r"(?=$|[\s,.;:()\-])",
    re.IGNORECASE,
)

STREET_LIKE_TOKEN_RE = re.compile(
    r"(?:евская|овская|инская|енская|анская|ская|ский|ской|ского|скую|ские|ная|ной|ного|ную|ный|ое|ого)$"
)

SETTLEMENT_PREFIXES = frozenset({
    "г", "город", "гп", "гпт", "пгт", "пос", "поселок", "п", "д", "дер",
    "деревня", "с", "село", "аг", "агрогородок",
})

LOCATION_STOP_WORDS = frozenset({
    "г", "город", "ул", "улица", "пр", "пр-т", "просп", "проспект", "пер",
    "переулок", "бул", "бульвар", "наб", "набережная", "пл", "площадь", "д",
    "дом", "к", "корп", "корпус", "оф", "офис", "кв", "квартира", "р-н",
    "район", "обл", "область",
})

CITY_ALIASES: Dict[str, str] = {
    "минск": "Минск",
    "минске": "Минск",
    "минска": "Минск",
    "брест": "Брест",
    "бресте": "Брест",
    "бреста": "Брест",
    "гродно": "Гродно",
    "гродне": "Гродно",
    "гродна": "Гродно",
    "витебск": "Витебск",
    "витебске": "Витебск",
    "витебска": "Витебск",
    "гомель": "Гомель",
    "гомеле": "Гомель",
    "гомеля": "Гомель",
    "могилев": "Могилев",
    "могилеве": "Могилев",
    "могилева": "Могилев",
    "могилеву": "Могилев",
}

LOCATION_CONNECTORS = frozenset({"в", "во", "по"})

_QUOTES_RE = re.compile(r"[«»\"'“”„]")
_NON_CITY_CHARS_RE = re.compile(r"[^\w-]+|_")
_NON_ALNUM_RE = re.compile(r"[\W_]+")
_WS_RE = re.compile(r"\s+")


def _fold(raw: str) -> str:
    return (raw or "").lower().replace("ё", "е")


def normalize_city_for_filter(raw: str) -> str:
    """Lower-cased city name without settlement prefixes (``г.``, ``пос.``, ``г.п.`` ...)."""
    cleaned = _QUOTES_RE.sub(" ", _fold((raw or "").strip()))
    cleaned = _WS_RE.sub(" ", _NON_CITY_CHARS_RE.sub(" ", cleaned)).strip()
    if not cleaned:
        return ""
    parts = cleaned.split(" ")
    if len(parts) >= 2 and parts[0] == "г" and parts[1] == "п":
        return " ".join(parts[2:]).strip()
    if parts[0] in SETTLEMENT_PREFIXES:
        return " ".join(parts[1:]).strip()
    return " ".join(parts)


def is_address_like(raw: str) -> bool:
    """Digits, a street marker, or a single adjective-shaped token such as ``Советская``."""
    text = (raw or "").strip()
    if not text:
        return False
    if re.search(r"\d", text):
        return True
    if ADDRESS_MARKERS_RE.search(text):
        return True
    normalized = _QUOTES_RE.sub(" ", _fold(text))
    parts = _WS_RE.sub(" ", _NON_CITY_CHARS_RE.sub(" ", normalized)).split()
    if len(parts) != 1:
        return False
    token = parts[0]
    return len(token) >= 5 and bool(STREET_LIKE_TOKEN_RE.search(token))


def tokenize_location(raw: str) -> List[str]:
    cleaned = _NON_ALNUM_RE.sub(" ", _QUOTES_RE.sub(" ", (raw or "").lower()))
    out: List[str] = []
    for token in cleaned.split():
        if token in LOCATION_STOP_WORDS:
            continue
        if token.isdigit() or len(token) >= 2:
            out.append(token)
    return out


def normalize_location_query(raw: str) -> str:
    return " ".join(tokenize_location(_fold(raw)))


# ---------------------------
# Service / city split
# ---------------------------

def canonical_city(raw: str) -> str | None:
    """Canonical Belarusian city for an inflected mention, optionally after ``в``/``во``/``по``."""
    cleaned = _QUOTES_RE.sub(" ", _fold(raw))
    cleaned = re.sub(r"[()]", " ", cleaned)
    cleaned = re.sub(r"[.,;:!?/\\]+", " ", cleaned)
    cleaned = _WS_RE.sub(" ", cleaned).strip()
    if not cleaned:
        return None
    for candidate in (cleaned, re.sub(r"^(?:в|во|по)\s+", "", cleaned).strip()):
        normalized = normalize_city_for_filter(candidate)
        if normalized and normalized in CITY_ALIASES:
            return CITY_ALIASES[normalized]
    return None


def _is_connector(token: str) -> bool:
    return _fold(token.strip()) in LOCATION_CONNECTORS


def _clean_service_tokens(parts: Sequence[str]) -> str:
    cleaned = list(parts)
    while cleaned and _is_connector(cleaned[-1]):
        cleaned.pop()
    return re.sub(r"[,\-–—]+$", "", " ".join(cleaned)).strip()


def _extract_city(parts: Sequence[str], required_city: str | None = None) -> Tuple[str, str] | None:
    """
    Find a city mention of up to three tokens.  The tail is tried first,
    then the head, then every other position; a connector right before
    the mention is dropped with it.
    """
    if not parts:
        return None
    seen = set()
    for city_len in range(min(3, len(parts)), 0, -1):
        last_start = len(parts) - city_len
        for start in [last_start, 0] + list(range(last_start + 1)):
            if start < 0 or start > last_start or (start, city_len) in seen:
                continue
            seen.add((start, city_len))

            inferred = canonical_city(" ".join(parts[start:start + city_len]))
            if not inferred:
                continue
            if required_city and inferred != required_city:
                continue

            rest = list(parts[:start]) + list(parts[start + city_len:])
            connector = start - 1
            if 0 <= connector < len(rest) and _is_connector(rest[connector]):
                del rest[connector]
            return _clean_service_tokens(rest), required_city or inferred
    return None


def split_service_and_city(raw_service: str, raw_city: str | None = None) -> Tuple[str, str]:
    """
    Move a city mentioned inside the service query into the city filter.

    ``("молоко Гродно", "")`` -> ``("молоко", "Гродно")``.  When a city is
    given explicitly only a duplicate mention of that same city is
    stripped from the service text.
    """
    city = (raw_city or "").strip()
    service = (raw_service or "").strip()
    if not service:
        return service, city

    explicit = canonical_city(city)
    city_out = explicit or city
    parts = service.split()

    if explicit:
        stripped = _extract_city(parts, explicit)
        if stripped:
            return stripped[0], city_out
        return service, city_out

    if city:
        return service, city

    inferred = _extract_city(parts)
    if inferred:
        return inferred
    return service, city_out
