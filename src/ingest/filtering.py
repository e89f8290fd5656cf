"""
URL scoring, filtering and robots.txt / sitemap parsing.

Candidate URLs for a domain are scored against keyword patterns (English and
Bengali) so service content (instructions, fees, FAQs, forms) is fetched
before background pages, and obviously irrelevant pages (news, galleries,
login forms, static assets) are dropped.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS = {
    "very_high": 15,
    "high": 10,
    "medium": 5,
    "low": 2,
    "penalty": -3,
    "exclude": -999,
}

# Scores of every matching pattern are summed; any exclude match wins outright
PRIORITY_PATTERNS = {
    "very_high": [
        re.compile(r"instruction", re.IGNORECASE),
        re.compile(r"how[-_]?to", re.IGNORECASE),
        re.compile(r"step[-_]?by[-_]?step", re.IGNORECASE),
        re.compile(r"guide", re.IGNORECASE),
        re.compile(r"procedure", re.IGNORECASE),
        re.compile(r"process", re.IGNORECASE),
        re.compile(r"apply", re.IGNORECASE),
        re.compile(r"application", re.IGNORECASE),
        re.compile(r"requirements?", re.IGNORECASE),
        re.compile(r"documents?[-_]?(?:need|require|list)", re.IGNORECASE),
        re.compile(r"fees?(?:[-_]|$)", re.IGNORECASE),
        re.compile(r"payment", re.IGNORECASE),
        re.compile(r"eligibility", re.IGNORECASE),
        re.compile(r"faq", re.IGNORECASE),
        re.compile(r"frequently[-_]?asked", re.IGNORECASE),
        re.compile(r"help", re.IGNORECASE),
        re.compile(r"support", re.IGNORECASE),
        re.compile(r"নির্দেশনা"),
        re.compile(r"আবেদন[-_]?পদ্ধতি"),
        re.compile(r"প্রয়োজনীয়[-_]?কাগজপত্র"),
        re.compile(r"ফি"),
        re.compile(r"সাহায্য"),
    ],
    "high": [
        re.compile(r"download", re.IGNORECASE),
        re.compile(r"form", re.IGNORECASE),
        re.compile(r"template", re.IGNORECASE),
        re.compile(r"timeline", re.IGNORECASE),
        re.compile(r"processing[-_]?time", re.IGNORECASE),
        re.compile(r"delivery", re.IGNORECASE),
        re.compile(r"status", re.IGNORECASE),
        re.compile(r"track", re.IGNORECASE),
        re.compile(r"schedule", re.IGNORECASE),
        re.compile(r"appointment", re.IGNORECASE),
        re.compile(r"booking", re.IGNORECASE),
        re.compile(r"tutorial", re.IGNORECASE),
        re.compile(r"steps?", re.IGNORECASE),
        re.compile(r"checklist", re.IGNORECASE),
        re.compile(r"service", re.IGNORECASE),
        re.compile(r"portal", re.IGNORECASE),
        re.compile(r"online", re.IGNORECASE),
        re.compile(r"e[-_]?passport", re.IGNORECASE),
        re.compile(r"e[-_]?service", re.IGNORECASE),
        re.compile(r"citizen", re.IGNORECASE),
        re.compile(r"public", re.IGNORECASE),
        re.compile(r"ডাউনলোড"),
        re.compile(r"ফরম"),
        re.compile(r"সময়সীমা"),
        re.compile(r"অবস্থা"),
    ],
    "medium": [
        re.compile(r"about", re.IGNORECASE),
        re.compile(r"overview", re.IGNORECASE),
        re.compile(r"info", re.IGNORECASE),
        re.compile(r"contact", re.IGNORECASE),
        re.compile(r"office", re.IGNORECASE),
        re.compile(r"location", re.IGNORECASE),
        re.compile(r"branch", re.IGNORECASE),
        re.compile(r"center", re.IGNORECASE),
        re.compile(r"centre", re.IGNORECASE),
        re.compile(r"hotline", re.IGNORECASE),
        re.compile(r"helpline", re.IGNORECASE),
        re.compile(r"notice", re.IGNORECASE),
        re.compile(r"circular", re.IGNORECASE),
        re.compile(r"announcement", re.IGNORECASE),
        re.compile(r"যোগাযোগ"),
        re.compile(r"অফিস"),
        re.compile(r"শাখা"),
        re.compile(r"নোটিশ"),
    ],
    "low": [
        re.compile(r"archive", re.IGNORECASE),
        re.compile(r"history", re.IGNORECASE),
        re.compile(r"past", re.IGNORECASE),
        re.compile(r"old", re.IGNORECASE),
        re.compile(r"previous", re.IGNORECASE),
    ],
    "exclude": [
        re.compile(r"press[-_]?release", re.IGNORECASE),
        re.compile(r"news(?:[-_]|$)", re.IGNORECASE),
        re.compile(r"tender", re.IGNORECASE),
        re.compile(r"job", re.IGNORECASE),
        re.compile(r"career", re.IGNORECASE),
        re.compile(r"vacancy", re.IGNORECASE),
        re.compile(r"recruitment", re.IGNORECASE),
        re.compile(r"event", re.IGNORECASE),
        re.compile(r"gallery", re.IGNORECASE),
        re.compile(r"photo", re.IGNORECASE),
        re.compile(r"image", re.IGNORECASE),
        re.compile(r"video", re.IGNORECASE),
        re.compile(r"media", re.IGNORECASE),
        re.compile(r"blog", re.IGNORECASE),
        re.compile(r"article", re.IGNORECASE),
        re.compile(r"award", re.IGNORECASE),
        re.compile(r"achievement", re.IGNORECASE),
        re.compile(r"\brti\b", re.IGNORECASE),
        re.compile(r"grievance", re.IGNORECASE),
        re.compile(r"complaint", re.IGNORECASE),
        re.compile(r"feedback", re.IGNORECASE),
        re.compile(r"survey", re.IGNORECASE),
        re.compile(r"login", re.IGNORECASE),
        re.compile(r"register(?:[-_]|$)", re.IGNORECASE),
        re.compile(r"signin", re.IGNORECASE),
        re.compile(r"signup", re.IGNORECASE),
        re.compile(r"logout", re.IGNORECASE),
        re.compile(r"password", re.IGNORECASE),
        re.compile(r"forgot", re.IGNORECASE),
        re.compile(r"reset", re.IGNORECASE),
        re.compile(r"verify[-_]?email", re.IGNORECASE),
        re.compile(r"activation", re.IGNORECASE),
        re.compile(r"print", re.IGNORECASE),
        re.compile(r"share", re.IGNORECASE),
        re.compile(r"social", re.IGNORECASE),
        re.compile(r"facebook", re.IGNORECASE),
        re.compile(r"twitter", re.IGNORECASE),
        re.compile(r"youtube", re.IGNORECASE),
        re.compile(r"sitemap", re.IGNORECASE),
        re.compile(r"rss", re.IGNORECASE),
        re.compile(r"feed", re.IGNORECASE),
        re.compile(r"api/", re.IGNORECASE),
        re.compile(r"ajax", re.IGNORECASE),
        re.compile(r"json", re.IGNORECASE),
        re.compile(r"xml", re.IGNORECASE),
        re.compile(r"\.js$", re.IGNORECASE),
        re.compile(r"\.css$", re.IGNORECASE),
        re.compile(r"\.png$", re.IGNORECASE),
        re.compile(r"\.jpg$", re.IGNORECASE),
        re.compile(r"\.gif$", re.IGNORECASE),
        re.compile(r"\.svg$", re.IGNORECASE),
        re.compile(r"সংবাদ"),
        re.compile(r"প্রেস"),
        re.compile(r"ছবি"),
    ],
}

_LEVEL_WEIGHT = {
    "very_high": PRIORITY_WEIGHTS["very_high"],
    "high": PRIORITY_WEIGHTS["high"],
    "medium": PRIORITY_WEIGHTS["medium"],
    "low": PRIORITY_WEIGHTS["penalty"],
}


def _path_segments(url: str) -> Optional[List[str]]:
    try:
        return [s for s in urlparse(url).path.split("/") if s]
    except ValueError:
        return None


def score_url(url: str) -> Tuple[int, List[str]]:
    """
    Priority score for a URL.

    Returns:
        Tuple of (score, reasons). An exclude match returns
        ``PRIORITY_WEIGHTS["exclude"]`` with the matching pattern as reason.
    """
    lower = url.lower()
    for pattern in PRIORITY_PATTERNS["exclude"]:
        if pattern.search(lower):
            return PRIORITY_WEIGHTS["exclude"], [f"exclude:{pattern.pattern}"]

    score = 0
    reasons = []
    for level, weight in _LEVEL_WEIGHT.items():
        for pattern in PRIORITY_PATTERNS[level]:
            if pattern.search(lower):
                score += weight
                reasons.append(f"{level}:{pattern.pattern}")

    segments = _path_segments(url)
    if segments is not None:
        if len(segments) <= 2:
            score += 2
            reasons.append("shallow")
        if len(segments) == 1:
            score += 3
            reasons.append("top_level")

    return score, reasons


def should_exclude(url: str) -> bool:
    return score_url(url)[0] <= PRIORITY_WEIGHTS["exclude"]


def get_path_depth(url: str) -> int:
    """Number of non-empty path segments; 999 for unparseable URLs."""
    segments = _path_segments(url)
    return 999 if segments is None else len(segments)


def is_same_domain(url: str, domain: str) -> bool:
    """Whether ``url`` is on ``domain`` or one of its subdomains (``www.`` ignored)."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    base = domain.lower()
    if base.startswith("www."):
        base = base[4:]
    if host.startswith("www."):
        host = host[4:]
    return bool(host) and (host == base or host.endswith("." + base))


def prioritize_urls(urls: List[str]) -> List[Tuple[str, int]]:
    """
    Drop excluded URLs and order the rest.

    Sorted by score descending, then URL length ascending; equal keys keep
    input order.

    Returns:
        List of (url, score)
    """
    scored = []
    for url in urls:
        score, _ = score_url(url)
        if score > PRIORITY_WEIGHTS["exclude"]:
            scored.append((url, score))
    scored.sort(key=lambda item: (-item[1], len(item[0])))
    return scored


def parse_robots_txt(content: Optional[str], user_agent: str = "*") -> Dict[str, List[str]]:
    """
    Parse robots.txt into allow / disallow prefixes and sitemap URLs.

    Only groups for ``*`` or ``user_agent`` contribute rules; sitemap lines
    are collected from anywhere in the file.
    """
    rules: Dict[str, List[str]] = {"disallow": [], "allow": [], "sitemaps": []}
    if not content:
        return rules

    applies = False
    agent = user_agent.lower()
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        directive, sep, value = line.partition(":")
        if not sep:
            continue
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            current = value.lower()
            applies = current == "*" or current == agent
        elif directive == "sitemap":
            rules["sitemaps"].append(value)
        elif applies and value:
            if directive == "disallow":
                rules["disallow"].append(value)
            elif directive == "allow":
                rules["allow"].append(value)
    return rules


def is_allowed_by_robots(url: str, rules: Optional[Dict[str, List[str]]]) -> bool:
    """Allow prefixes win over disallow prefixes; default allowed."""
    if not rules:
        return True
    try:
        path = urlparse(url).path or "/"
    except ValueError:
        return False
    if any(path.startswith(prefix) for prefix in rules.get("allow") or []):
        return True
    if any(path.startswith(prefix) for prefix in rules.get("disallow") or []):
        return False
    return True


def parse_sitemap_xml(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse a sitemap or sitemap index.

    Returns:
        ``{"type": "index", "urls": [child sitemap URLs]}`` or
        ``{"type": "urlset", "urls": [page URLs]}``
    """
    if not content:
        return {"type": "urlset", "urls": []}

    soup = BeautifulSoup(content, "lxml-xml")
    children = [loc.get_text(strip=True) for sm in soup.find_all("sitemap") for loc in sm.find_all("loc", limit=1)]
    children = [u for u in children if u]
    if children:
        return {"type": "index", "urls": children}

    pages = [loc.get_text(strip=True) for entry in soup.find_all("url") for loc in entry.find_all("loc", limit=1)]
    return {"type": "urlset", "urls": [u for u in pages if u]}
