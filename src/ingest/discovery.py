"""
robots.txt and sitemap discovery for a crawl domain.

Both are optional inputs: any transport failure yields empty results and the
crawl continues with the mapped URLs alone.
"""

import logging
import time
from typing import Dict, List, Optional

from .base_fetcher import http_get_text
from .filtering import parse_robots_txt, parse_sitemap_xml

logger = logging.getLogger(__name__)

# Pause between child sitemap requests (seconds)
CHILD_SITEMAP_DELAY = 0.5


def fetch_robots(domain: str, timeout_s: float = 15) -> Dict[str, List[str]]:
    """
    Fetch and parse ``https://<domain>/robots.txt``.

    Returns:
        Parsed rules; empty rules when robots.txt is unreachable
    """
    content = http_get_text(f"https://{domain}/robots.txt", timeout_s=timeout_s)
    if content is None:
        logger.info(f"robots.txt not accessible for {domain} (non-fatal)")
        return parse_robots_txt(None)

    rules = parse_robots_txt(content)
    logger.info(f"robots.txt for {domain}: {len(rules['disallow'])} disallow rules, {len(rules['sitemaps'])} sitemaps")
    return rules


def fetch_sitemaps(
    domain: str,
    robots_sitemaps: Optional[List[str]] = None,
    child_limit: int = 5,
    timeout_s: float = 15,
) -> List[str]:
    """
    Collect page URLs from the first sitemap that answers.

    Sitemaps named in robots.txt are tried first, then ``/sitemap.xml`` and
    ``/sitemap_index.xml``. A sitemap index is followed into at most
    ``child_limit`` child sitemaps.

    Returns:
        Page URLs in sitemap order (may be empty)
    """
    candidates = list(robots_sitemaps or [])
    candidates.extend([f"https://{domain}/sitemap.xml", f"https://{domain}/sitemap_index.xml"])

    seen = set()
    for sitemap_url in candidates:
        if sitemap_url in seen:
            continue
        seen.add(sitemap_url)

        content = http_get_text(sitemap_url, timeout_s=timeout_s)
        if not content:
            continue

        parsed = parse_sitemap_xml(content)
        urls: List[str] = []
        if parsed["type"] == "index":
            for child_url in parsed["urls"][:child_limit]:
                child = http_get_text(child_url, timeout_s=timeout_s)
                if child:
                    urls.extend(parse_sitemap_xml(child)["urls"])
                time.sleep(CHILD_SITEMAP_DELAY)
        else:
            urls.extend(parsed["urls"])

        logger.info(f"Found {len(urls)} URLs from sitemap {sitemap_url}")
        return urls

    logger.info(f"No sitemap found for {domain}")
    return []
