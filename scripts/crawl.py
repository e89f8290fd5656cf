#!/usr/bin/env python3
"""
Crawl Bangladesh government service portals into the knowledge base.

Steps per seed domain: robots.txt, sitemaps, site map, URL prioritization,
then scrape + snapshot + extraction into kb/bangladesh_government_services_kb_v3.json.
A run report is written to kb/runs/<YYYY-MM-DD>/crawl_report.json.

Usage:
    # Full crawl (strict mode, needs FIRECRAWL_API_KEY)
    python scripts/crawl.py

    # One domain, re-fetch everything
    python scripts/crawl.py --domain epassport.gov.bd --refresh all

    # Show what would be crawled
    python scripts/crawl.py --dry-run --require-firecrawl false

Exit codes:
    0  success
    1  fatal error (strict-mode validation, no seeds, unexpected failure)
    2  invalid configuration
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.ingest.base_fetcher import FetchUnavailableError
from src.ingest.coordinator import REFRESH_POLICIES, CrawlAbortedError, CrawlConfig, CrawlCoordinator
from src.logging_config import configure_logging

logger = logging.getLogger(__name__)


def str_to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl government service portals into the KB")
    parser.add_argument("--seed-source", help="Seed source label recorded in the run report")
    parser.add_argument("--category", help="Seed category (default: public_services)")
    parser.add_argument("--refresh", choices=REFRESH_POLICIES,
                        help="changed: skip pages whose content hash is unchanged; "
                             "missing: skip pages snapshotted today; all: re-process everything")
    parser.add_argument("--maxDepth", "--max-depth", dest="max_depth", type=int, help="Maximum URL path depth")
    parser.add_argument("--maxPages", "--max-pages", dest="max_pages", type=int, help="Maximum pages per domain")
    parser.add_argument("--rate-limit", dest="rate_limit_ms", type=int, help="Milliseconds between requests")
    parser.add_argument("--domain", dest="domains", action="append", default=[],
                        help="Crawl only this domain (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="List URLs without fetching pages")
    parser.add_argument("--require-firecrawl", type=str_to_bool, metavar="{true,false}",
                        help="Fail when the fetch backend is unavailable (default: true)")
    parser.add_argument("--allow-http-doc-download", type=str_to_bool, metavar="{true,false}",
                        help="Allow direct HTTP download of binary documents (default: false)")
    parser.add_argument("--kb-dir", type=Path, help="KB directory (default: kb)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(verbose=args.verbose)

    try:
        config = CrawlConfig.from_config(
            seed_source=args.seed_source,
            category=args.category,
            refresh=args.refresh,
            max_depth=args.max_depth,
            max_pages=args.max_pages,
            rate_limit_ms=args.rate_limit_ms,
            domains=args.domains or None,
            dry_run=args.dry_run,
            require_firecrawl=args.require_firecrawl,
            allow_http_doc_download=args.allow_http_doc_download,
            kb_dir=args.kb_dir,
        )
    except CrawlAbortedError as e:
        print(f"✗ Invalid configuration: {e}")
        return 2

    print("Configuration:")
    print(f"  Refresh Mode:          {config.refresh}")
    print(f"  Max Depth:             {config.max_depth}")
    print(f"  Max Pages/Domain:      {config.max_pages}")
    print(f"  Rate Limit:            {config.rate_limit_ms}ms")
    print(f"  Dry Run:               {config.dry_run}")
    print(f"  Require Firecrawl:     {config.require_firecrawl}")
    print(f"  Allow HTTP Doc Download: {config.allow_http_doc_download}")
    if config.domains:
        print(f"  Domains:               {', '.join(config.domains)}")
    print()

    coordinator = CrawlCoordinator(config)
    try:
        report = coordinator.run()
    except FetchUnavailableError as e:
        print(f"\n✗ FATAL: {e}")
        print("  Set FIRECRAWL_API_KEY in .env or pass --require-firecrawl false")
        return 1
    except CrawlAbortedError as e:
        print(f"\n✗ {e}")
        return 1

    report.print_summary()
    if report.summary["domains_failed"]:
        print(f"⚠ {report.summary['domains_failed']} domain(s) failed; see the run report for details")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        logger.exception("Crawl failed with unhandled exception")
        sys.exit(1)
