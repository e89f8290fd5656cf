"""
Fetch backend credentials.

The crawler reads FIRECRAWL_API_KEY (required for strict crawls) and
FIRECRAWL_API_URL (optional, self-hosted backends) from the environment or a
``.env`` file at the repo root.

Usage:
    from src.config.secrets import get_firecrawl_key

    key = get_firecrawl_key()  # raises MissingAPIKeyError when unset

CLI check:
    python -m src.config.secrets --check
"""

import os
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"

KEY_VAR = "FIRECRAWL_API_KEY"
URL_VAR = "FIRECRAWL_API_URL"

# Process environment wins over .env values
load_dotenv(ENV_FILE if ENV_FILE.exists() else None, override=False)


class MissingAPIKeyError(Exception):
    """Raised when the fetch backend key is not configured."""
    pass


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


def get_firecrawl_key() -> str:
    """
    Firecrawl API key.

    Raises:
        MissingAPIKeyError: If FIRECRAWL_API_KEY is unset or blank
    """
    key = _env(KEY_VAR)
    if not key:
        raise MissingAPIKeyError(
            f"{KEY_VAR} not set. Add it to {ENV_FILE.name} or the environment, "
            "or crawl with --require-firecrawl false."
        )
    return key


def get_firecrawl_api_url(default: Optional[str] = None) -> Optional[str]:
    """FIRECRAWL_API_URL if set, else ``default``."""
    return _env(URL_VAR) or default


def check_keys() -> Dict[str, str]:
    """
    Configuration status per variable.

    Returns:
        ``{FIRECRAWL_API_KEY: OK|MISSING, FIRECRAWL_API_URL: <url>|default}``
    """
    return {
        KEY_VAR: "OK" if _env(KEY_VAR) else "MISSING",
        URL_VAR: _env(URL_VAR) or "default",
    }


def _cli_check() -> int:
    status = check_keys()
    for name, value in status.items():
        print(f"{name}: {value}")

    if status[KEY_VAR] == "MISSING":
        print(f"\nStrict crawls will fail until {KEY_VAR} is set (see {ENV_FILE.name}).")
        return 1
    print("\nFetch backend configured.")
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Check fetch backend credentials")
    parser.add_argument("--check", action="store_true", help="Report which variables are configured")
    args = parser.parse_args()

    if args.check:
        sys.exit(_cli_check())
    parser.print_help()
