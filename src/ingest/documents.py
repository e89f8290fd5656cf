"""
Binary document harvesting.

Document links found on a page (PDF, Word, Excel, PowerPoint) are downloaded
through the fetch adapter and stored content-addressed under
``<documents_dir>/<domain>/<sha256><ext>`` with a ``.meta.json`` sidecar.
Text extraction from the binaries is out of scope; files are only stored.
"""

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base_fetcher import BaseFetchAdapter, FetchError, get_extension, is_binary_document_url
from .crawl_state import CrawlState
from ..kb.identity import generate_hash
from ..kb.writer import KnowledgeBase
from ..run_utils import atomic_write_bytes, utc_now_iso, write_json

logger = logging.getLogger(__name__)

DOCUMENTS_DIR = Path("kb/documents")

# Pause between consecutive downloads (seconds)
DOWNLOAD_DELAY = 1.0

_UNSAFE_DIR_RE = re.compile(r"[^a-z0-9.-]", re.IGNORECASE)


@dataclass
class HarvestResult:
    url: str
    status: str  # downloaded | duplicate | cached | skipped | error
    content_hash: Optional[str] = None
    fetched_via: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class DocumentHarvester:
    """Downloads document links and records them in the KB and crawl state."""

    def __init__(
        self,
        adapter: BaseFetchAdapter,
        kb: KnowledgeBase,
        state: CrawlState,
        documents_dir: Path = DOCUMENTS_DIR,
        delay: float = DOWNLOAD_DELAY,
    ):
        self.adapter = adapter
        self.kb = kb
        self.state = state
        self.documents_dir = Path(documents_dir)
        self.delay = delay

    def harvest(self, url: str, domain: str, discovered_on: str, label: str = "") -> HarvestResult:
        """
        Download one document unless it was already fetched by URL.

        Fetch errors are returned in the result, never raised.
        """
        if not is_binary_document_url(url):
            return HarvestResult(url=url, status="skipped")

        known_hash = self.state.document_hashes.get(url)
        if known_hash:
            logger.debug(f"Document already downloaded: {url}")
            return HarvestResult(url=url, status="cached", content_hash=known_hash)

        try:
            document = self.adapter.fetch_binary(url)
        except FetchError as e:
            logger.warning(f"Document download failed for {url}: {e}")
            return HarvestResult(url=url, status="error", error=str(e), error_type=type(e).__name__)

        content_hash = generate_hash(document.content)
        fetched_via = "http_fallback" if document.used_http_fallback else "firecrawl"
        extension = get_extension(url)
        domain_dir = self.documents_dir / _UNSAFE_DIR_RE.sub("_", domain)
        file_path = domain_dir / f"{content_hash}{extension}"
        self.state.document_hashes[url] = content_hash

        record = {
            "document_id": f"doc.{content_hash[:16]}",
            "urls": [url],
            "label": label or document.filename,
            "filename": file_path.name,
            "mime": document.content_type,
            "content_hash": content_hash,
            "file_size": len(document.content),
            "retrieved_at": utc_now_iso(),
            "discovered_on_page": discovered_on,
            "fetched_via": fetched_via,
            "path": f"documents/{domain_dir.name}/{file_path.name}",
        }

        if file_path.exists():
            logger.info(f"Duplicate document content for {url} ({content_hash[:12]})")
            self.kb.upsert_document(record)
            return HarvestResult(url=url, status="duplicate", content_hash=content_hash, fetched_via=fetched_via)

        atomic_write_bytes(file_path, document.content)
        write_json(domain_dir / f"{content_hash}.meta.json", record)
        self.kb.upsert_document(record)
        logger.info(f"Saved document {file_path.name} via {fetched_via}")
        return HarvestResult(url=url, status="downloaded", content_hash=content_hash, fetched_via=fetched_via)

    def harvest_all(self, links: List[Dict[str, Any]], domain: str, discovered_on: str) -> List[HarvestResult]:
        """Harvest ``[{url, text}]`` links in order, pausing between downloads."""
        results = []
        candidates = [link for link in links if is_binary_document_url(link["url"])]
        for i, link in enumerate(candidates):
            result = self.harvest(link["url"], domain, discovered_on, link.get("text", ""))
            results.append(result)
            if result.status in ("downloaded", "duplicate") and i < len(candidates) - 1:
                time.sleep(self.delay)
        return results
