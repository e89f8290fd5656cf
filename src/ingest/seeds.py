"""
Crawl seeds: the public-service portals to crawl.

Seeds come from the bdgovlinks.com "Public Services" directory when a live
scrape of it is available, merged over a fixed list of known portals.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..kb.service_map import get_domain, normalize_domain
from ..run_utils import load_json, utc_now_iso, write_json

logger = logging.getLogger(__name__)

SEED_SOURCE_URL = "https://bdgovlinks.com/"
SEEDS_FILENAME = "public_services_seeds.json"


def _seed(label: str, domain: str, start_urls: List[str]) -> Dict[str, Any]:
    return {"label": label, "domain": domain, "start_urls": start_urls, "source_page_url": SEED_SOURCE_URL}


KNOWN_PUBLIC_SERVICES: List[Dict[str, Any]] = [
    _seed("Passport Office", "passport.gov.bd", ["https://passport.gov.bd/"]),
    _seed("e-Passport Portal", "epassport.gov.bd", ["https://www.epassport.gov.bd/"]),
    _seed("National ID Wing", "nidw.gov.bd", ["https://nidw.gov.bd/", "https://services.nidw.gov.bd/"]),
    _seed("NBR e-Tax", "etaxnbr.gov.bd", ["https://etaxnbr.gov.bd/"]),
    _seed("BRTA Service Portal", "bsp.brta.gov.bd", ["https://bsp.brta.gov.bd/", "https://brta.gov.bd/"]),
    _seed("Bangladesh Post Office", "bdpost.gov.bd", ["https://bdpost.gov.bd/"]),
    _seed("Land Administration", "landadministration.gov.bd", ["https://landadministration.gov.bd/"]),
    _seed("Teletalk Bangladesh", "teletalk.com.bd", ["https://teletalk.com.bd/"]),
    _seed("Department of Immigration & Passports", "dip.gov.bd", ["https://dip.gov.bd/"]),
    _seed("Online Visa Portal", "visa.gov.bd", ["https://visa.gov.bd/"]),
    _seed("Bangladesh Customs", "customs.gov.bd", ["https://customs.gov.bd/"]),
    _seed("Birth & Death Registration", "bdris.gov.bd", ["https://bdris.gov.bd/"]),
    _seed("Bangladesh Police", "police.gov.bd", ["https://police.gov.bd/", "https://www.police.gov.bd/"]),
]

_SECTION_RE = re.compile(r"#{2,3}\s*Public Services\s*\n(.*?)(?=\n#{2,3}\s|\Z)", re.IGNORECASE | re.DOTALL)
_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_SITE_ICON_RE = re.compile(r"!\[site icon\][^)]*\)")
_SECTION_HEADING_RE = re.compile(r"^#{2,3}\s")
_ALLOWED_TLDS = (".gov.bd", ".com.bd")


def _links(text: str) -> List[Dict[str, str]]:
    found = []
    for match in _LINK_RE.finditer(text):
        label = _SITE_ICON_RE.sub("", match.group(1)).strip()
        url = match.group(2)
        if any(tld in url for tld in _ALLOWED_TLDS):
            found.append({"label": label, "url": url})
    return found


def parse_public_services_from_markdown(markdown: Optional[str]) -> List[Dict[str, str]]:
    """
    Links under the "Public Services" heading of the directory page.

    Only ``.gov.bd`` / ``.com.bd`` targets are kept. When no such heading
    exists, links on lines after the first "Public Services" mention are
    taken until the next section heading.

    Returns:
        List of ``{label, url}``
    """
    if not markdown:
        return []

    match = _SECTION_RE.search(markdown)
    if match:
        services = _links(match.group(1))
        if services:
            return services

    services = []
    in_section = False
    for line in markdown.splitlines():
        if re.search(r"Public Services", line, re.IGNORECASE):
            in_section = True
            continue
        if in_section and _SECTION_HEADING_RE.match(line):
            break
        if in_section:
            services.extend(_links(line)[:1])
    return services


def build_seeds(live_markdown: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Known seeds plus any new portal found in the live directory markdown.

    Seeds are deduplicated by domain (``www.`` ignored), first wins.
    """
    seeds = [dict(s, start_urls=list(s["start_urls"])) for s in KNOWN_PUBLIC_SERVICES]

    for service in parse_public_services_from_markdown(live_markdown):
        domain = get_domain(service["url"])
        if not domain:
            continue
        clean = normalize_domain(domain)
        known = any(
            s["domain"] in (clean, domain) or any(clean in u for u in s["start_urls"])
            for s in seeds
        )
        if not known:
            logger.info(f"New service discovered: {service['label']} ({clean})")
            seeds.append(_seed(service["label"], clean, [service["url"]]))

    deduped = []
    seen = set()
    for seed in seeds:
        domain = normalize_domain(seed["domain"])
        if domain in seen:
            continue
        seen.add(domain)
        deduped.append(seed)
    return deduped


def write_seeds(path: Path, seeds: List[Dict[str, Any]], extraction_method: str = "fallback_known_list",
                category: str = "public_services") -> Path:
    """Write the seeds file with its provenance header."""
    path = Path(path)
    write_json(path, {
        "$generated_at": utc_now_iso(),
        "$source": "bdgovlinks.com",
        "$category": category,
        "$extraction_method": extraction_method,
        "seeds": seeds,
    })
    logger.info(f"Saved {len(seeds)} seeds to {path}")
    return path


def load_seeds(path: Path) -> Optional[List[Dict[str, Any]]]:
    """
    Seeds from an existing seeds file.

    Returns:
        The seed list, or None when the file is missing, unreadable or empty
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = load_json(path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read seeds file {path}: {e}")
        return None
    seeds = data.get("seeds") if isinstance(data, dict) else None
    return seeds or None


def filter_seeds(seeds: List[Dict[str, Any]], domains: Optional[List[str]]) -> List[Dict[str, Any]]:
    """Seeds matching any requested domain (substring either way); all seeds when none requested."""
    if not domains:
        return list(seeds)
    return [
        seed for seed in seeds
        if any(d in seed["domain"] or seed["domain"] in d for d in domains)
    ]
