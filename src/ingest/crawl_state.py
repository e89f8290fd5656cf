"""
Crawl state persisted across runs.

Tracks the last seen content hash per source page (drives the ``changed``
refresh policy), hashes of downloaded documents, per-domain crawl bookkeeping
and a short history of runs.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..run_utils import utc_now_iso, write_json

logger = logging.getLogger(__name__)

CRAWL_STATE_PATH = Path("kb/crawl_state.json")

# Run history entries kept in the state file
MAX_RUN_HISTORY = 30


@dataclass
class DomainState:
    """Bookkeeping for one crawled domain."""
    domain: str
    last_crawled: Optional[str] = None
    pages_crawled: int = 0
    robots_rules: Optional[Dict[str, List[str]]] = None
    sitemap_urls: List[str] = field(default_factory=list)
    discovered_urls: List[str] = field(default_factory=list)
    processed_urls: List[str] = field(default_factory=list)
    excluded_urls: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class CrawlState:
    """Cross-run crawl state."""
    started_at: str = field(default_factory=utc_now_iso)
    last_updated: Optional[str] = None
    page_hashes: Dict[str, str] = field(default_factory=dict)
    document_hashes: Dict[str, str] = field(default_factory=dict)
    domain_states: Dict[str, DomainState] = field(default_factory=dict)
    runs: List[Dict[str, Any]] = field(default_factory=list)

    def get_domain_state(self, domain: str) -> DomainState:
        if domain not in self.domain_states:
            self.domain_states[domain] = DomainState(domain=domain)
        return self.domain_states[domain]

    def get_page_hash(self, source_page_id: str) -> Optional[str]:
        return self.page_hashes.get(source_page_id)

    def set_page_hash(self, source_page_id: str, content_hash: str) -> None:
        self.page_hashes[source_page_id] = content_hash

    def record_run(self, summary: Dict[str, Any]) -> None:
        self.runs.append(summary)
        if len(self.runs) > MAX_RUN_HISTORY:
            self.runs = self.runs[-MAX_RUN_HISTORY:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "last_updated": self.last_updated,
            "page_hashes": dict(self.page_hashes),
            "document_hashes": dict(self.document_hashes),
            "domain_states": {k: asdict(v) for k, v in self.domain_states.items()},
            "runs": list(self.runs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlState":
        state = cls(
            started_at=data.get("started_at") or utc_now_iso(),
            last_updated=data.get("last_updated"),
            page_hashes=dict(data.get("page_hashes") or {}),
            document_hashes=dict(data.get("document_hashes") or {}),
            runs=list(data.get("runs") or []),
        )
        for domain, domain_data in (data.get("domain_states") or {}).items():
            state.domain_states[domain] = DomainState(
                domain=domain_data.get("domain", domain),
                last_crawled=domain_data.get("last_crawled"),
                pages_crawled=domain_data.get("pages_crawled", 0),
                robots_rules=domain_data.get("robots_rules"),
                sitemap_urls=domain_data.get("sitemap_urls", []),
                discovered_urls=domain_data.get("discovered_urls", []),
                processed_urls=domain_data.get("processed_urls", []),
                excluded_urls=domain_data.get("excluded_urls", []),
                errors=domain_data.get("errors", []),
            )
        return state


def load_crawl_state(path: Path = CRAWL_STATE_PATH) -> CrawlState:
    """Load crawl state from disk, or start fresh."""
    path = Path(path)
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                return CrawlState.from_dict(json.load(f))
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Could not load crawl state from {path}, starting fresh: {e}")
    return CrawlState()


def save_crawl_state(state: CrawlState, path: Path = CRAWL_STATE_PATH) -> None:
    state.last_updated = utc_now_iso()
    write_json(path, state.to_dict())
