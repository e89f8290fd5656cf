#!/usr/bin/env python3
"""
Validate published public guides.

Checks public_guides.json against public_guides.schema.json (JSON Schema
Draft 7), the no-internal-ids contract and the semantic rules (guide id
prefix, dense step numbering, unique variants, ISO timestamps, absolute URLs).

Usage:
    python scripts/validate_published.py
    python scripts/validate_published.py --dir kb/published

Exit codes:
    0  all checks passed
    2  violations found
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.logging_config import configure_logging
from src.publish.validate import validate_published


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate published public guides")
    parser.add_argument("--dir", type=Path, default=Path("kb/published"), help="Published output directory")
    args = parser.parse_args()
    configure_logging()

    result = validate_published(args.dir)

    print(f"Validating {args.dir}")
    print(f"  Guides: {result.get('guides', 0)}  Index entries: {result.get('index_entries', 0)}")
    for warning in result["warnings"]:
        print(f"  ⚠ {warning}")
    for error in result["errors"]:
        print(f"  ✗ {error}")

    if result["status"] != "OK":
        print(f"\n✗ FAIL: {len(result['errors'])} violation(s)")
        return 2

    print("\n✓ OK: published guides are valid")
    return 0


if __name__ == "__main__":
    sys.exit(main())
