"""
Crawl coordinator.

Drives one crawl run over the seed portals:
- Strict-mode validation of the fetch backend before any fetch
- Per domain: robots.txt, sitemaps, site map, URL filtering and prioritization
- Page fetch loop with the refresh policy (changed / missing / all)
- Snapshot, source page upsert, extraction and claim upsert per page
- Binary document harvesting for document links
- KB and crawl state checkpoints after every domain
- Service guide assembly and a run report at the end
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .base_fetcher import (
    BaseFetchAdapter,
    FetchUnavailableError,
    MapError,
    ScrapeError,
    get_config_section,
    is_binary_document_url,
)
from .crawl_state import CrawlState, load_crawl_state, save_crawl_state
from .discovery import fetch_robots, fetch_sitemaps
from .documents import DocumentHarvester
from .filtering import get_path_depth, is_allowed_by_robots, is_same_domain, prioritize_urls
from .run_report import CrawlReport, classify_failure, new_domain_stats
from .seeds import build_seeds, filter_seeds, load_seeds, write_seeds
from ..extract.claims import extract_claims
from ..extract.extractor import classify_page, detect_language, extract_structured_data
from ..kb.guides import assemble_guides
from ..kb.identity import generate_hash, generate_source_page_id
from ..kb.service_map import get_domain, get_service_id_or_derive
from ..kb.snapshots import SnapshotStore
from ..kb.writer import KnowledgeBase
from ..run_utils import utc_now_iso

logger = logging.getLogger(__name__)

REFRESH_POLICIES = ("changed", "missing", "all")

# URLs listed per domain in a dry run
DRY_RUN_LISTING = 20

SCRAPE_OPTIONS = {"formats": ["markdown", "html"], "onlyMainContent": True, "removeBase64Images": True}


class CrawlAbortedError(Exception):
    """Raised when a run cannot start (bad configuration, no seeds)."""
    pass


@dataclass
class CrawlConfig:
    """Settings for one crawl run; defaults come from config/crawl.yaml."""
    seed_source: str = "public_services"
    category: str = "public_services"
    refresh: str = "changed"
    max_depth: int = 4
    max_pages: int = 300
    rate_limit_ms: int = 1500
    sitemap_child_limit: int = 5
    download_documents: bool = True
    domains: List[str] = field(default_factory=list)
    dry_run: bool = False
    require_firecrawl: bool = True
    allow_http_doc_download: bool = False
    kb_dir: Path = Path("kb")
    paths: Dict[str, str] = field(default_factory=lambda: get_config_section("paths"))

    def __post_init__(self):
        self.kb_dir = Path(self.kb_dir)
        if self.refresh not in REFRESH_POLICIES:
            raise CrawlAbortedError(f"Unknown refresh policy '{self.refresh}' (expected one of {', '.join(REFRESH_POLICIES)})")

    @classmethod
    def from_config(cls, **overrides: Any) -> "CrawlConfig":
        """
        Build a config from the YAML file with CLI overrides on top.

        Overrides whose value is None are ignored.
        """
        crawl = get_config_section("crawl")
        fetch = get_config_section("fetch")
        paths = get_config_section("paths")
        values: Dict[str, Any] = {
            "seed_source": crawl["seed_source"],
            "category": crawl["category"],
            "refresh": crawl["refresh"],
            "max_depth": int(crawl["max_depth"]),
            "max_pages": int(crawl["max_pages"]),
            "rate_limit_ms": int(crawl["rate_limit_ms"]),
            "sitemap_child_limit": int(crawl["sitemap_child_limit"]),
            "download_documents": bool(crawl.get("download_documents", True)),
            "require_firecrawl": bool(fetch["require_firecrawl"]),
            "allow_http_doc_download": bool(fetch["allow_http_doc_download"]),
            "kb_dir": Path(paths["kb_dir"]),
            "paths": paths,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def rate_limit_s(self) -> float:
        return self.rate_limit_ms / 1000

    def path(self, key: str) -> Path:
        """A path from the ``paths`` section, resolved under ``kb_dir``."""
        return self.kb_dir / self.paths[key]

    def to_report_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kb_dir"] = str(self.kb_dir)
        data.pop("paths")
        return data


class CrawlCoordinator:
    """Runs a crawl over the configured seeds and writes the KB."""

    def __init__(self, config: CrawlConfig, adapter: Optional[BaseFetchAdapter] = None):
        self.config = config
        if adapter is None:
            from .firecrawl import FirecrawlAdapter
            adapter = FirecrawlAdapter(config={
                "require_firecrawl": config.require_firecrawl,
                "allow_http_doc_download": config.allow_http_doc_download,
            })
        self.adapter = adapter
        self.report = CrawlReport(config.to_report_dict())

        self.kb: Optional[KnowledgeBase] = None
        self.state: Optional[CrawlState] = None
        self.snapshots = SnapshotStore(config.path("snapshots_dir"))
        self.harvester: Optional[DocumentHarvester] = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Strict-mode check of the fetch backend.

        Raises:
            FetchUnavailableError: Backend required but map/scrape missing
        """
        if self.config.dry_run:
            return
        result = self.adapter.validate_for_crawl()
        logger.info(result["message"])

    def load_seeds(self) -> List[Dict[str, Any]]:
        """Seeds from the seeds file, generating it from the known list when absent."""
        seeds_path = self.config.path("seeds_file")
        seeds = load_seeds(seeds_path)
        if seeds:
            logger.info(f"Loaded {len(seeds)} seeds from {seeds_path}")
        else:
            seeds = build_seeds()
            if not self.config.dry_run:
                write_seeds(seeds_path, seeds, category=self.config.category)
        return filter_seeds(seeds, self.config.domains)

    def run(self) -> CrawlReport:
        """
        Crawl every seed domain.

        Returns:
            The completed CrawlReport (also written to the runs directory)

        Raises:
            FetchUnavailableError: Strict mode without a usable backend
            CrawlAbortedError: No seeds matched
        """
        report = self.report
        runs_dir = self.config.path("runs_dir")

        try:
            self.validate()
        except FetchUnavailableError as e:
            logger.error(f"Strict mode validation failed: {e}")
            report.mark_failed_from_error(e)
            report.complete()
            report.write(runs_dir)
            raise

        seeds = self.load_seeds()
        if not seeds:
            report.mark_failed("seeds", "No seeds to crawl", failure_type="no_seeds")
            report.complete()
            report.write(runs_dir)
            raise CrawlAbortedError("No seeds to crawl")

        self.kb = KnowledgeBase.load_or_create(self.config.path("kb_file"))
        self.state = load_crawl_state(self.config.path("crawl_state_file"))
        self.harvester = DocumentHarvester(self.adapter, self.kb, self.state, self.config.path("documents_dir"))
        claims_before = len(self.kb.claims)
        print(f"Loaded KB: {len(self.kb.source_pages)} pages, {len(self.kb.claims)} claims")
        print(f"Crawling {len(seeds)} domains\n")

        current_domain = None
        try:
            for i, seed in enumerate(seeds):
                current_domain = seed["domain"]
                self._crawl_seed(seed)
                if not self.config.dry_run:
                    self._checkpoint()
                if i < len(seeds) - 1:
                    time.sleep(self.config.rate_limit_s * 2)
            current_domain = None

            if not self.config.dry_run:
                report.guides = assemble_guides(self.kb)
                self.check_integrity()
                added = len(self.kb.claims) - claims_before
                self.kb.add_change_log_entry([
                    f"Crawl {report.run_id}: {report.summary['pages_kept']} pages saved, {added} claims added",
                ])
                self.kb.save()
        except Exception as e:
            logger.error(f"Fatal error during crawl: {e}")
            if not self.config.dry_run:
                self._checkpoint()
            report.mark_failed_from_error(e, domain=current_domain)
            report.complete()
            report.write(runs_dir)
            raise

        report.complete("dry_run" if self.config.dry_run else "completed")
        if not self.config.dry_run:
            self.state.record_run({
                "run_id": report.run_id,
                "started_at": report.started_at,
                "completed_at": report.completed_at,
                "status": report.status,
                "domains_crawled": report.summary["domains_crawled"],
                "pages_kept": report.summary["pages_kept"],
                "claims_extracted": report.summary["claims_extracted"],
            })
            save_crawl_state(self.state, self.config.path("crawl_state_file"))
        report.write(runs_dir)
        return report

    def check_integrity(self) -> List[str]:
        """
        End-of-run KB check: index consistency and claim citations that
        point at missing source pages. Each problem becomes a report error.
        """
        errors = self.kb.integrity_errors()
        for message in errors:
            logger.warning(f"KB integrity: {message}")
            self.report.add_error(message, error_type="kb_integrity", stage="kb_integrity")
        if errors:
            print(f"  ✗ KB integrity check: {len(errors)} problems")
        return errors

    def _checkpoint(self) -> None:
        save_crawl_state(self.state, self.config.path("crawl_state_file"))
        self.kb.save()

    def _crawl_seed(self, seed: Dict[str, Any]) -> None:
        domain = seed["domain"]
        self.report.summary["domains_attempted"] += 1
        print(f"\n{'=' * 70}\n  {seed.get('label', domain)} ({domain})\n{'=' * 70}")
        try:
            stats = self.crawl_domain(seed)
        except Exception as e:
            reason = self.report.record_domain_failure(domain, e)
            logger.error(f"Domain {domain} failed ({reason}): {e}")
            print(f"  ✗ Domain {domain} failed: {e}")
            return
        if stats is None:
            print(f"  - Domain {domain} skipped: scrape backend unavailable")
            return
        self.report.record_domain(stats)
        print(f"  ✓ Domain complete: {stats['pages_saved']} saved, {stats['pages_unchanged']} unchanged, "
              f"{len(stats['errors'])} errors")

    # ------------------------------------------------------------------
    # Domain
    # ------------------------------------------------------------------

    def discover_urls(self, seed: Dict[str, Any], stats: Dict[str, Any]) -> List[str]:
        """
        Candidate page URLs for a seed, prioritized and capped at max_pages.

        Raises:
            FetchUnavailableError: Map capability missing in strict mode
            MapError: Map failure in strict mode
        """
        domain = seed["domain"]
        domain_state = self.state.get_domain_state(domain) if self.state else None

        robots = fetch_robots(domain)
        sitemap_urls = fetch_sitemaps(domain, robots["sitemaps"], child_limit=self.config.sitemap_child_limit)

        navigation_urls: List[str] = []
        if self.adapter.is_available("map"):
            for start_url in seed["start_urls"]:
                try:
                    navigation_urls.extend(self.adapter.map_site(start_url, limit=self.config.max_pages))
                except MapError as e:
                    if self.config.require_firecrawl:
                        raise
                    logger.warning(f"Failed to map {start_url}: {e}")
                    stats["errors"].append(f"Map failed: {start_url}: {e}")
                time.sleep(self.config.rate_limit_s)
            logger.info(f"Discovered {len(navigation_urls)} URLs from site map for {domain}")
        elif self.config.require_firecrawl and not self.config.dry_run:
            raise FetchUnavailableError("map")

        candidates: List[str] = []
        seen: Set[str] = set()
        for url in list(seed["start_urls"]) + sitemap_urls + navigation_urls:
            if url not in seen:
                seen.add(url)
                candidates.append(url)

        kept = [
            url for url in candidates
            if is_same_domain(url, domain)
            and is_allowed_by_robots(url, robots)
            and get_path_depth(url) <= self.config.max_depth
        ]
        prioritized = [url for url, _ in prioritize_urls(kept)]
        prioritized_set = set(prioritized)
        excluded = [url for url in candidates if url not in prioritized_set]
        selected = prioritized[:self.config.max_pages]

        stats["pages_discovered"] = len(selected)
        stats["pages_excluded"] = len(excluded)
        if domain_state is not None:
            domain_state.robots_rules = robots
            domain_state.sitemap_urls = sitemap_urls
            domain_state.discovered_urls = selected
            domain_state.excluded_urls = excluded
        return selected

    def crawl_domain(self, seed: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Crawl one seed domain.

        Page-level failures are recorded in the domain stats; discovery
        failures in strict mode propagate.

        Returns:
            Domain stats dict, or None when the domain was skipped
        """
        domain = seed["domain"]
        stats = new_domain_stats(domain, seed.get("label", domain))
        urls = self.discover_urls(seed, stats)
        print(f"  {len(urls)} URLs after filtering and prioritization")

        if self.config.dry_run:
            print("  Dry run - URLs that would be crawled:")
            for url in urls[:DRY_RUN_LISTING]:
                print(f"    - {url}")
            if len(urls) > DRY_RUN_LISTING:
                print(f"    ... and {len(urls) - DRY_RUN_LISTING} more")
            return stats

        if not self.adapter.is_available("scrape"):
            if self.config.require_firecrawl:
                raise FetchUnavailableError("scrape")
            logger.warning(f"Scrape backend unavailable, skipping pages for {domain}")
            self.report.record_domain_skipped(domain, "firecrawl_unavailable")
            return None

        domain_state = self.state.get_domain_state(domain)
        domain_state.processed_urls = []
        domain_state.errors = []

        for i, url in enumerate(urls, 1):
            source_page_id = generate_source_page_id(url)
            if self.config.refresh == "missing" and self.snapshots.exists_today(source_page_id):
                logger.info(f"[{i}/{len(urls)}] Snapshot exists today: {url}")
                stats["pages_unchanged"] += 1
                continue

            try:
                logger.info(f"[{i}/{len(urls)}] Scraping {url}")
                saved = self.process_page(url, domain, stats)
            except Exception as e:
                failure_type, stage = classify_failure(e)
                logger.warning(f"Page failed {url}: {e}")
                stats["errors"].append(f"{url}: {e}")
                domain_state.errors.append(f"{url}: {e}")
                self.report.add_error(str(e), domain=domain, url=url, error_type=failure_type, stage=stage)
                continue

            if saved:
                domain_state.processed_urls.append(url)
                time.sleep(self.config.rate_limit_s)

        domain_state.last_crawled = utc_now_iso()
        domain_state.pages_crawled = stats["pages_processed"]
        return stats

    # ------------------------------------------------------------------
    # Page
    # ------------------------------------------------------------------

    def process_page(self, url: str, domain: str, stats: Dict[str, Any]) -> bool:
        """
        Scrape, snapshot and extract one page into the KB.

        Returns:
            True if the page was saved, False if it was skipped as unchanged

        Raises:
            ScrapeError: Empty markdown for a non-document URL
        """
        result = self.adapter.scrape(url, SCRAPE_OPTIONS)
        markdown = result.markdown or ""
        if not markdown:
            if not is_binary_document_url(url):
                raise ScrapeError(url, "empty markdown content")
            if self.config.download_documents:
                self._harvest_documents([{"url": url, "text": ""}], domain, url, stats)
            return False

        source_page_id = generate_source_page_id(url)
        content_hash = generate_hash(markdown)
        if self.config.refresh == "changed" and self.state.get_page_hash(source_page_id) == content_hash:
            logger.debug(f"Unchanged: {url}")
            stats["pages_unchanged"] += 1
            return False

        html = result.html or result.raw_html
        snapshot = self.snapshots.put(source_page_id, url, markdown, html)
        self.state.set_page_hash(source_page_id, content_hash)

        structured = extract_structured_data(markdown, url, html)
        self.report.update_extraction(domain, structured.stats)

        crawled_at = utc_now_iso()
        title = result.title or url
        record, status = self.kb.upsert_source_page(
            url,
            content_hash,
            snapshot.snapshot_ref,
            title=title,
            page_types=classify_page(url, title, markdown),
            languages=detect_language(markdown),
            crawl_method="firecrawl",
            crawled_at=crawled_at,
        )

        service_id = get_service_id_or_derive(get_domain(url))
        self.kb.ensure_service(service_id, record["agency_id"], url, source_page_id)
        claims = extract_claims(source_page_id, url, structured, service_id=service_id, retrieved_at=crawled_at)
        added = self.kb.add_claims(claims)
        stats["claims_extracted"] += added
        if status == "changed":
            stale = self.kb.invalidate_claims_for_source(
                source_page_id, content_hash, keep_ids=[c["claim_id"] for c in claims], marked_at=crawled_at,
            )
            stats["claims_invalidated"] += len(stale)

        if self.config.download_documents and structured.document_list:
            links = [{"url": d.url, "text": d.text} for d in structured.document_list]
            self._harvest_documents(links, domain, url, stats)

        stats["pages_processed"] += 1
        stats["pages_saved"] += 1
        logger.info(f"Saved {url} ({status}, {added} new claims, {len(structured.document_list)} doc links)")
        return True

    def _harvest_documents(self, links: List[Dict[str, str]], domain: str, page_url: str,
                           stats: Dict[str, Any]) -> None:
        for result in self.harvester.harvest_all(links, domain, page_url):
            if result.status in ("downloaded", "duplicate"):
                stats["docs_found"] += 1
                if result.fetched_via == "http_fallback":
                    self.report.summary["documents_fetched_via_http_fallback"] += 1
                else:
                    self.report.summary["documents_fetched_via_firecrawl"] += 1
            elif result.status == "error":
                error_type = "http_download_blocked" if result.error_type == "HttpDownloadNotAllowedError" else "document_download_failed"
                self.report.add_error(result.error or "download failed", domain=domain, url=result.url,
                                      error_type=error_type, stage="document_download")
