from __future__ import annotations

"""
Exclusion registry for companies that must never be surfaced (for
example, liquidated ones).

Two sources are combined: a manual id/UNP list passed at construction
and a persistent JSON blacklist that grows through
``remember_liquidated``.  Ids are compared lower-cased and UNPs by
their digits only.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Set

from loguru import logger

from .config import DEFAULT_BLACKLIST_PATH

BLACKLIST_VERSION = 1
MAX_BLACKLIST_ENTRIES = 10_000
DEFAULT_REASON = "registry_liquidated"


def normalize_company_id(raw: str | None) -> str:
    return (raw or "").strip().lower()


def normalize_unp(raw: str | None) -> str:
    return "".join(ch for ch in str(raw or "") if ch.isdigit())


def escape_filter_value(raw: str) -> str:
    return (raw or "").strip().replace("\\", "\\\\").replace('"', '\\"')


class ExclusionRegistry:
    def __init__(
        self,
        path: str | Path | None = DEFAULT_BLACKLIST_PATH,
        ids: Iterable[str] = (),
        unps: Iterable[str] = (),
    ):
        self.path = Path(path) if path else None
        self._manual_ids: Set[str] = {i for i in map(normalize_company_id, ids) if i}
        self._manual_unps: Set[str] = {u for u in map(normalize_unp, unps) if u}
        self._ids: Set[str] = set()
        self._unps: Set[str] = set()
        self._entries: List[dict] = []
        self._loaded = False
        self._lock = threading.Lock()

    # ---- persistence ----

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            self._loaded = True
            if self.path is None or not self.path.is_file():
                return
            try:
                parsed = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable exclusion blacklist {}: {}", self.path, e)
                return
            if not isinstance(parsed, dict):
                return
            for raw in parsed.get("ids") or []:
                cid = normalize_company_id(str(raw))
                if cid:
                    self._ids.add(cid)
            for raw in parsed.get("unps") or []:
                unp = normalize_unp(raw)
                if unp:
                    self._unps.add(unp)
            self._entries = [e for e in parsed.get("entries") or [] if isinstance(e, dict)]
            logger.info(
                "Loaded exclusion blacklist {}: {} ids, {} unps",
                self.path,
                len(self._ids),
                len(self._unps),
            )

    def _persist(self) -> None:
        if self.path is None:
            return
        snapshot = {
            "version": BLACKLIST_VERSION,
            "ids": sorted(self._ids),
            "unps": sorted(self._unps),
            "entries": self._entries[-MAX_BLACKLIST_ENTRIES:],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not persist exclusion blacklist {}: {}", self.path, e)

    # ---- predicates ----

    def is_excluded_id(self, raw_id: str | None) -> bool:
        self._ensure_loaded()
        cid = normalize_company_id(raw_id)
        return bool(cid) and (cid in self._manual_ids or cid in self._ids)

    def is_excluded_unp(self, raw_unp: str | None) -> bool:
        self._ensure_loaded()
        unp = normalize_unp(raw_unp)
        return bool(unp) and (unp in self._manual_unps or unp in self._unps)

    def is_excluded(self, candidate: Any) -> bool:
        """Accepts a ``CompanyRecord``, a summary or a plain mapping."""
        if candidate is None:
            return False
        if isinstance(candidate, Mapping):
            source_id = candidate.get("source_id") or candidate.get("id")
            unp = candidate.get("unp")
        else:
            source_id = getattr(candidate, "source_id", None) or getattr(candidate, "id", None)
            unp = getattr(candidate, "unp", None)
        return self.is_excluded_id(source_id) or self.is_excluded_unp(unp)

    __call__ = is_excluded

    def remember_liquidated(self, candidate: Mapping[str, Any], reason: str = DEFAULT_REASON) -> bool:
        """Add a company to the persistent blacklist; returns whether anything changed."""
        if not candidate:
            return False
        self._ensure_loaded()
        source_id = normalize_company_id(candidate.get("source_id") or candidate.get("id"))
        unp = normalize_unp(candidate.get("unp"))
        if not source_id and not unp:
            return False

        with self._lock:
            changed = False
            if source_id and source_id not in self._ids:
                self._ids.add(source_id)
                changed = True
            if unp and unp not in self._unps:
                self._unps.add(unp)
                changed = True
            if not changed:
                return False

            entry = {
                "source_id": source_id or None,
                "unp": unp or None,
                "name": str(candidate.get("name") or "").strip() or None,
                "city": str(candidate.get("city") or "").strip() or None,
                "address": str(candidate.get("address") or "").strip() or None,
                "reason": (reason or "").strip() or None,
                "checked_at": datetime.now(timezone.utc).isoformat(),
            }
            self._entries.append({k: v for k, v in entry.items() if v is not None})
            self._persist()
        logger.info("Blacklisted company id={!r} unp={!r} ({})", source_id, unp, reason)
        return True

    # ---- search engine ----

    def engine_filters(self) -> List[str]:
        """``id != "..."`` / ``unp != "..."`` clauses for the full-text engine."""
        self._ensure_loaded()
        filters: List[str] = []
        for cid in sorted(self._manual_ids | self._ids):
            safe = escape_filter_value(cid)
            if safe:
                filters.append(f'id != "{safe}"')
        for unp in sorted(self._manual_unps | self._unps):
            safe = escape_filter_value(unp)
            if safe:
                filters.append(f'unp != "{safe}"')
        return filters
