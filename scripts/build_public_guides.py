#!/usr/bin/env python3
"""
Build the public guide artifacts from the KB.

Produces (in --out-dir, default kb/published):
  - public_guides.json
  - public_guides_index.json
  - public_guides.schema.json

Public guides carry resolved citations only; internal claim ids never leave
the KB. Set SOURCE_TIMESTAMP for reproducible ``generated_at`` values.

Usage:
    python scripts/build_public_guides.py
    python scripts/build_public_guides.py --kb kb/bangladesh_government_services_kb_v3.json --out-dir kb/published
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.kb.writer import KB_FILENAME
from src.logging_config import configure_logging
from src.publish.build_guides import build_public_artifacts
from src.run_utils import load_json

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Build public guides from the KB")
    parser.add_argument("--kb", type=Path, default=Path("kb") / KB_FILENAME, help="KB JSON file")
    parser.add_argument("--out-dir", type=Path, default=Path("kb/published"), help="Output directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()
    configure_logging(verbose=args.verbose)

    if not args.kb.exists():
        print(f"✗ KB not found: {args.kb}")
        return 1

    try:
        kb_data = load_json(args.kb)
    except ValueError as e:
        print(f"✗ KB is not valid JSON: {e}")
        return 1

    summary = build_public_artifacts(kb_data, args.out_dir)

    print(f"✓ Built {summary['guides']} public guides ({summary['index_entries']} index entries)")
    print(f"  Steps: {summary['total_steps']}  Citations: {summary['total_citations']}")
    print(f"  generated_at: {summary['generated_at']}")
    for path in summary["paths"]:
        print(f"  → {path}")
    if summary["guides"] == 0:
        print("⚠ No service guides in the KB; run scripts/crawl.py first")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        logger.exception("Public guide build failed")
        sys.exit(1)
