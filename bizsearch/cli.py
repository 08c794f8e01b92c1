from __future__ import annotations

"""
Batch runner for the catalog backend, usable without starting FastAPI.

- ``keywords``: stream a catalog export and write derived keyword
  phrases as JSONL (optionally also a CSV summary)
- ``search``: run one in-process search and print the JSON response
- ``catalog``: print the catalog tree stats
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .catalog_build import LoadStats, iter_catalog_records
from .config import MAX_KEYWORDS_LIMIT, SEARCH_DEFAULT_LIMIT, KeywordSettings, configure_logging, load_settings
from .exclusions import ExclusionRegistry
from .fulltext import search_with_fallback
from .keywords import KeywordRuntime, generate_company_keyword_phrases
from .mapping import default_overrides, keyword_override, sanitize_company_record
from .ranking import SearchQuery
from .store import CatalogService


def _keyword_settings(args, base: KeywordSettings) -> KeywordSettings:
    return KeywordSettings(
        stats_files=list(args.stats_file or base.stats_files),
        strict_stats=args.strict or base.strict_stats,
        fallback_mode=args.fallback_mode or base.fallback_mode,
        max_keywords=args.max_keywords or base.max_keywords,
    )


def write_summary_csv(rows: List[Dict[str, object]], out_path: Path) -> None:
    df = pd.DataFrame(rows, columns=["id", "name", "keywords_count", "keywords"])
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)


def run_keywords(args) -> int:
    settings = load_settings()
    runtime = KeywordRuntime(_keyword_settings(args, settings.keywords), cwd=Path.cwd())
    options = runtime.options()
    overrides = default_overrides()
    exclusions = ExclusionRegistry(settings.blacklist_path)

    inp = Path(args.input or settings.companies_path)
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    print(f"Reading companies from {inp}")

    stats = LoadStats()
    summary: List[Dict[str, object]] = []
    with open(out, "w", encoding="utf-8") as f:
        for record in iter_catalog_records(inp, exclusions.is_excluded, stats):
            if args.limit and stats.kept >= args.limit:
                break
            record = sanitize_company_record(record, overrides)
            phrases = keyword_override(record.company_id, overrides) or generate_company_keyword_phrases(record, options)
            f.write(json.dumps({"id": record.company_id, "keywords": phrases}, ensure_ascii=False) + "\n")
            stats.kept += 1
            summary.append({
                "id": record.company_id,
                "name": record.name,
                "keywords_count": len(phrases),
                "keywords": ", ".join(phrases),
            })
            if stats.kept % 1000 == 0:
                print(f"Processed {stats.kept} companies")

    if args.summary_csv:
        write_summary_csv(summary, Path(args.summary_csv))
    print(
        f"Wrote keywords for {stats.kept} companies to {out} "
        f"(invalid={stats.invalid}, missing_id={stats.missing_id}, excluded={stats.excluded})"
    )
    return 0


def run_search(args) -> int:
    settings = load_settings()
    if args.input:
        settings = settings.model_copy(update={"companies_path": Path(args.input)})
    service = CatalogService(settings)
    params = SearchQuery(
        query=args.query or "",
        service=args.service or "",
        city=args.city or "",
        region=args.region,
        rubric=args.rubric,
        category=args.category,
        offset=args.offset,
        limit=args.limit,
    )
    result = search_with_fallback(service, params)
    print(json.dumps(result.model_dump(), ensure_ascii=False, indent=2))
    return 0


def run_catalog(args) -> int:
    settings = load_settings()
    if args.input:
        settings = settings.model_copy(update={"companies_path": Path(args.input)})
    data = CatalogService(settings).catalog(args.region)
    print(json.dumps(data.stats.model_dump(), ensure_ascii=False, indent=2))
    for cat in data.categories:
        print(f"{cat.slug}\t{cat.company_count}\t{cat.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bizsearch")
    ap.add_argument("--log-level", default=None, help="loguru level (default from BIZSEARCH_LOG_LEVEL)")
    sub = ap.add_subparsers(dest="command", required=True)

    kw = sub.add_parser("keywords", help="derive keyword phrases for every company")
    kw.add_argument("--in", dest="input", default=None, help="companies JSONL (default from settings)")
    kw.add_argument("--out", dest="output", required=True, help="output JSONL path")
    kw.add_argument("--stats-file", action="append", default=None, help="keyword stats CSV/JSON (repeatable)")
    kw.add_argument("--strict", action="store_true", help="keep only phrases with a positive volume")
    kw.add_argument("--fallback-mode", choices=["rubrics", "short"], default=None)
    kw.add_argument("--max-keywords", type=int, default=None, choices=range(1, MAX_KEYWORDS_LIMIT + 1), metavar="N")
    kw.add_argument("--limit", type=int, default=0, help="stop after N companies")
    kw.add_argument("--summary-csv", default=None, help="optional CSV summary path")
    kw.set_defaults(func=run_keywords)

    se = sub.add_parser("search", help="run one in-process search")
    se.add_argument("--in", dest="input", default=None)
    se.add_argument("--query", "-q", default="")
    se.add_argument("--service", default="")
    se.add_argument("--city", default="")
    se.add_argument("--region", default=None)
    se.add_argument("--rubric", default=None)
    se.add_argument("--category", default=None)
    se.add_argument("--offset", type=int, default=0)
    se.add_argument("--limit", type=int, default=SEARCH_DEFAULT_LIMIT)
    se.set_defaults(func=run_search)

    ca = sub.add_parser("catalog", help="print catalog stats and categories")
    ca.add_argument("--in", dest="input", default=None)
    ca.add_argument("--region", default=None)
    ca.set_defaults(func=run_catalog)
    return ap


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or load_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
