"""
Crawl run report.

Accumulates domain, page and extraction counters during a run and writes
``<runs_dir>/<YYYY-MM-DD>/crawl_report.json``. Failed runs additionally carry
``failure_stage``, ``failure_message`` and ``failure_type``.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .base_fetcher import (
    FetchUnavailableError,
    HttpDownloadNotAllowedError,
    MapError,
    ScrapeError,
)
from ..run_utils import RUN_REPORT_NAME, run_dir_for, today_str, utc_now_iso, write_json

logger = logging.getLogger(__name__)

# Errors kept in the written report
MAX_REPORTED_ERRORS = 50

DOMAIN_FAILURE_REASONS = ("firecrawl_unavailable", "firecrawl_map_failed", "other_error")


def classify_failure(error: BaseException) -> Tuple[str, str]:
    """
    Map an exception to ``(failure_type, failure_stage)``.
    """
    if isinstance(error, FetchUnavailableError):
        stage = "firecrawl_map" if "map" in error.operation else "firecrawl_scrape"
        return "firecrawl_unavailable", stage
    if isinstance(error, MapError):
        return "firecrawl_map_failed", "firecrawl_map"
    if isinstance(error, ScrapeError):
        return "firecrawl_scrape_failed", "firecrawl_scrape"
    if isinstance(error, HttpDownloadNotAllowedError):
        return "http_download_blocked", "document_download"
    return "unexpected_error", "unknown"


def domain_failure_reason(error: BaseException) -> str:
    """Bucket for ``domains_failed_reasons``."""
    if isinstance(error, FetchUnavailableError):
        return "firecrawl_unavailable"
    if isinstance(error, MapError):
        return "firecrawl_map_failed"
    return "other_error"


def new_domain_stats(domain: str, label: str) -> Dict[str, Any]:
    return {
        "domain": domain,
        "label": label,
        "pages_discovered": 0,
        "pages_processed": 0,
        "pages_saved": 0,
        "pages_excluded": 0,
        "pages_unchanged": 0,
        "docs_found": 0,
        "claims_extracted": 0,
        "claims_invalidated": 0,
        "errors": [],
    }


class CrawlReport:
    """Run statistics for one crawl invocation."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(config or {})
        self.run_id = f"run_{today_str()}_{int(time.time() * 1000)}"
        self.started_at = utc_now_iso()
        self.completed_at: Optional[str] = None
        self.status = "running"

        self.summary: Dict[str, Any] = {
            "domains_attempted": 0,
            "domains_crawled": 0,
            "domains_failed": 0,
            "domains_skipped": 0,
            "domains_failed_reasons": {},
            "domains_skipped_reasons": {},
            "pages_total": 0,
            "pages_kept": 0,
            "pages_excluded": 0,
            "pages_unchanged": 0,
            "docs_downloaded": 0,
            "documents_fetched_via_firecrawl": 0,
            "documents_fetched_via_http_fallback": 0,
            "claims_extracted": 0,
            "claims_invalidated": 0,
            "steps_extracted": 0,
            "fees_extracted": 0,
            "faq_pairs_extracted": 0,
            "doc_links_found": 0,
        }
        self.extraction_details: Dict[str, Dict[str, int]] = {}
        self.domains: List[Dict[str, Any]] = []
        self.errors: List[Dict[str, Any]] = []
        self.guides: Dict[str, int] = {}

        self.failure_type: Optional[str] = None
        self.failure_stage: Optional[str] = None
        self.failure_message: Optional[str] = None
        self.current_domain: Optional[str] = None

    def add_error(self, message: str, domain: Optional[str] = None, url: Optional[str] = None,
                  error_type: str = "error", stage: Optional[str] = None) -> None:
        self.errors.append({
            "type": error_type,
            "stage": stage,
            "message": message,
            "domain": domain,
            "url": url,
            "timestamp": utc_now_iso(),
        })

    def update_extraction(self, domain: str, stats: Dict[str, int]) -> None:
        """Add one page's extraction stats to the run and domain counters."""
        details = self.extraction_details.setdefault(domain, {
            "steps_extracted": 0,
            "fees_extracted": 0,
            "faq_pairs_extracted": 0,
            "doc_links_found": 0,
            "pages_processed": 0,
        })
        for key in ("steps_extracted", "fees_extracted", "faq_pairs_extracted", "doc_links_found"):
            self.summary[key] += stats.get(key, 0)
            details[key] += stats.get(key, 0)
        details["pages_processed"] += 1

    def record_domain(self, domain_stats: Dict[str, Any]) -> None:
        """Fold a completed domain's stats into the summary."""
        self.summary["domains_crawled"] += 1
        self.summary["pages_total"] += domain_stats["pages_discovered"]
        self.summary["pages_kept"] += domain_stats["pages_saved"]
        self.summary["pages_excluded"] += domain_stats["pages_excluded"]
        self.summary["pages_unchanged"] += domain_stats["pages_unchanged"]
        self.summary["docs_downloaded"] += domain_stats["docs_found"]
        self.summary["claims_extracted"] += domain_stats["claims_extracted"]
        self.summary["claims_invalidated"] += domain_stats["claims_invalidated"]
        self.domains.append(domain_stats)

    def record_domain_failure(self, domain: str, error: BaseException) -> str:
        reason = domain_failure_reason(error)
        failed = self.summary["domains_failed_reasons"]
        failed[reason] = failed.get(reason, 0) + 1
        self.summary["domains_failed"] += 1
        failure_type, stage = classify_failure(error)
        self.add_error(str(error), domain=domain, error_type=failure_type, stage=stage)
        return reason

    def record_domain_skipped(self, domain: str, reason: str) -> None:
        skipped = self.summary["domains_skipped_reasons"]
        skipped[reason] = skipped.get(reason, 0) + 1
        self.summary["domains_skipped"] += 1

    def mark_failed(self, stage: str, message: str, domain: Optional[str] = None,
                    failure_type: Optional[str] = None) -> None:
        self.status = "failed"
        self.failure_stage = stage
        self.failure_message = message
        self.failure_type = failure_type or stage
        self.current_domain = domain
        self.add_error(message, domain=domain, error_type=self.failure_type, stage=stage)

    def mark_failed_from_error(self, error: BaseException, domain: Optional[str] = None) -> None:
        failure_type, stage = classify_failure(error)
        self.mark_failed(stage, str(error), domain=domain, failure_type=failure_type)

    def complete(self, status: str = "completed") -> None:
        if self.status != "failed":
            self.status = status
        self.completed_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        summary = dict(self.summary)
        summary["errors"] = len(self.errors)
        report: Dict[str, Any] = {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at or utc_now_iso(),
            "status": self.status,
            "seed_source": self.config.get("seed_source", "unknown"),
            "category": self.config.get("category", "unknown"),
            "require_firecrawl": self.config.get("require_firecrawl", True),
            "allow_http_doc_download": self.config.get("allow_http_doc_download", False),
            "max_depth": self.config.get("max_depth"),
            "max_pages": self.config.get("max_pages"),
            "rate_limit_ms": self.config.get("rate_limit_ms"),
            "config": self.config,
            "summary": summary,
            "extraction_details": self.extraction_details,
            "domains": self.domains,
            "guides": self.guides,
            "errors": self.errors[:MAX_REPORTED_ERRORS],
        }
        if self.status == "failed":
            report["failure_stage"] = self.failure_stage or "unknown"
            report["failure_message"] = self.failure_message or "Unknown error"
            report["failure_type"] = self.failure_type or "unknown"
            report["current_domain"] = self.current_domain
        return report

    def write(self, runs_dir: Path) -> Path:
        """Write the report to ``<runs_dir>/<YYYY-MM-DD>/crawl_report.json``."""
        path = run_dir_for(runs_dir) / RUN_REPORT_NAME
        write_json(path, self.to_dict())
        logger.info(f"Run report saved to {path}")
        return path

    def print_summary(self) -> None:
        s = self.summary
        print("\n" + "=" * 70)
        print("  CRAWL SUMMARY")
        print("=" * 70)
        print(f"  Domains Attempted: {s['domains_attempted']}")
        print(f"  Domains Crawled:   {s['domains_crawled']}")
        print(f"  Domains Failed:    {s['domains_failed']}")
        print(f"  Domains Skipped:   {s['domains_skipped']}")
        print(f"  Pages Total:       {s['pages_total']}")
        print(f"  Pages Saved:       {s['pages_kept']}")
        print(f"  Pages Unchanged:   {s['pages_unchanged']}")
        print(f"  Pages Excluded:    {s['pages_excluded']}")
        print(f"  Docs Found:        {s['docs_downloaded']}")
        print(f"  Claims Extracted:  {s['claims_extracted']}")
        print(f"  Claims Stale:      {s['claims_invalidated']}")
        print(f"  Errors:            {len(self.errors)}")
        print()
        print("  EXTRACTION DETAILS:")
        print(f"    Steps Extracted:  {s['steps_extracted']}")
        print(f"    Fees Extracted:   {s['fees_extracted']}")
        print(f"    FAQ Pairs:        {s['faq_pairs_extracted']}")
        print(f"    Doc Links Found:  {s['doc_links_found']}")

        if self.domains:
            print()
            print("  PER-DOMAIN BREAKDOWN:")
            print(f"  {'Domain':<24} {'Pages':>6} {'Steps':>6} {'Fees':>5} {'FAQs':>5} {'Docs':>5} {'Claims':>7} {'Errors':>6}")
            for d in self.domains:
                extraction = self.extraction_details.get(d["domain"], {})
                label = d.get("label") or d["domain"]
                label = label[:21] + "..." if len(label) > 24 else label
                print(
                    f"  {label:<24} {d['pages_processed']:>6} {extraction.get('steps_extracted', 0):>6} "
                    f"{extraction.get('fees_extracted', 0):>5} {extraction.get('faq_pairs_extracted', 0):>5} "
                    f"{extraction.get('doc_links_found', 0):>5} {d['claims_extracted']:>7} {len(d['errors']):>6}"
                )

        if s["domains_failed_reasons"]:
            print()
            for reason, count in s["domains_failed_reasons"].items():
                print(f"  ✗ {reason}: {count}")
        print("=" * 70 + "\n")
