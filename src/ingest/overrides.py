"""
Per-URL scrape option overrides.

Some portal pages are client-rendered and only expose their content after a
render delay, or use tokens the extractor does not recognise. Each entry of
``EXACT_URL_OVERRIDES`` replaces scrape options for one page and may carry a
markdown postprocessor applied before extraction. Adding a page is a table
change, not a code change.
"""

import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ALLOWED_OPTION_KEYS = (
    "formats",
    "onlyMainContent",
    "removeBase64Images",
    "waitFor",
    "timeout",
    "includeTags",
    "excludeTags",
    "headers",
)

_TK_RE = re.compile(r"\bTK\b", re.IGNORECASE)


def normalize_tk_currency(markdown: str) -> str:
    """Rewrite the ``TK`` currency token as ``BDT``."""
    return _TK_RE.sub("BDT", markdown)


EXACT_URL_OVERRIDES: Dict[str, Dict[str, Any]] = {
    # Angular SPA: fee table renders after a script delay
    "https://www.epassport.gov.bd/instructions/passport-fees": {
        "onlyMainContent": False,
        "formats": ["markdown", "rawHtml"],
        "waitFor": 5000,
        "postprocess_markdown": normalize_tk_currency,
    },
}


def normalize_url_for_override(url: Optional[str]) -> Optional[str]:
    """
    Matching key for the override table.

    ``https://WWW.Example.gov.bd/Fees/`` -> ``example.gov.bd/fees``. Scheme,
    query and fragment are ignored.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if not parsed.hostname:
        return None

    hostname = parsed.hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    path = parsed.path.rstrip("/").lower()
    return f"{hostname}{path}"


_NORMALIZED_OVERRIDES = {normalize_url_for_override(k): v for k, v in EXACT_URL_OVERRIDES.items()}


def get_override(url: Optional[str]) -> Optional[Dict[str, Any]]:
    """Copy of the override entry for ``url``, or None."""
    key = normalize_url_for_override(url)
    if key is None or key not in _NORMALIZED_OVERRIDES:
        return None
    return dict(_NORMALIZED_OVERRIDES[key])


def format_override_log(override: Dict[str, Any], url: str) -> str:
    parts = []
    if "waitFor" in override:
        parts.append(f"waitFor={override['waitFor']}")
    if "onlyMainContent" in override:
        parts.append(f"onlyMainContent={str(override['onlyMainContent']).lower()}")
    if override.get("formats"):
        parts.append(f"formats={','.join(override['formats'])}")
    parts.append(f"url={url}")
    return f"override applied: {' '.join(parts)}"


def apply_override(url: str, options: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Merge a URL's override over caller scrape options.

    Only whitelisted option keys are taken from the override.

    Returns:
        Tuple of (merged_options, override_or_None)
    """
    override = get_override(url)
    merged = dict(options)
    if override is None:
        return merged, None

    for key in ALLOWED_OPTION_KEYS:
        if key in override:
            value = override[key]
            merged[key] = list(value) if isinstance(value, list) else value

    logger.info(format_override_log(override, url))
    return merged, override


def get_postprocessor(url: str) -> Optional[Callable[[str], str]]:
    override = get_override(url)
    return override.get("postprocess_markdown") if override else None


def postprocess_markdown(url: str, markdown: str) -> str:
    """Apply the URL's markdown postprocessor, if any."""
    postprocessor = get_postprocessor(url)
    if postprocessor is None or not markdown:
        return markdown
    return postprocessor(markdown)
