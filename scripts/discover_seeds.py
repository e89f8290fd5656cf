#!/usr/bin/env python3
"""
Generate the crawl seeds file.

Scrapes the bdgovlinks.com directory for its "Public Services" section and
merges any new portals over the known list. With --fallback-only (or when the
fetch backend is not configured) only the known list is written.

Usage:
    python scripts/discover_seeds.py
    python scripts/discover_seeds.py --fallback-only --out kb/seeds/public_services_seeds.json
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.ingest.base_fetcher import FetchError
from src.ingest.firecrawl import FirecrawlAdapter
from src.ingest.seeds import SEED_SOURCE_URL, build_seeds, write_seeds
from src.logging_config import configure_logging

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Discover public service seed portals")
    parser.add_argument("--fallback-only", action="store_true", help="Skip the live directory scrape")
    parser.add_argument("--out", type=Path, default=Path("kb/seeds/public_services_seeds.json"),
                        help="Seeds file to write")
    args = parser.parse_args()
    configure_logging()

    live_markdown = None
    if not args.fallback_only:
        adapter = FirecrawlAdapter(config={"require_firecrawl": False})
        if adapter.is_available("scrape"):
            try:
                live_markdown = adapter.scrape(SEED_SOURCE_URL).markdown
            except FetchError as e:
                print(f"⚠ Live directory scrape failed, using known list: {e}")
        else:
            print("⚠ Fetch backend not configured, using known list")

    seeds = build_seeds(live_markdown)
    method = "live_scrape" if live_markdown else "fallback_known_list"
    write_seeds(args.out, seeds, extraction_method=method)
    print(f"✓ Wrote {len(seeds)} seeds to {args.out} ({method})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
