"""
End-to-end crawl tests against an in-memory fetch adapter.

robots.txt, sitemaps and sleeps are patched out; every page comes from the
fake adapter, so a run exercises discovery filtering, snapshots, extraction,
claim upserts, document harvesting, guide assembly and the run report.
"""

import json
from unittest.mock import patch

import pytest

from src.ingest.base_fetcher import FetchUnavailableError
from src.ingest.coordinator import CrawlAbortedError, CrawlConfig, CrawlCoordinator
from src.kb.writer import KnowledgeBase
from src.publish.build_guides import build_public_guides
from src.run_utils import today_str


HOME = "https://www.epassport.gov.bd/"
FEES = "https://www.epassport.gov.bd/instructions/passport-fees"
APPLY = "https://www.epassport.gov.bd/instructions/application-form"
CHECKLIST = "https://www.epassport.gov.bd/files/checklist.pdf"
OFFSITE = "https://other.gov.bd/x"
GALLERY = "https://www.epassport.gov.bd/gallery"

FEES_MARKDOWN = "\n".join([
    "# Passport Fees",
    "## Inside Bangladesh (15% VAT included)",
    "### 48 pages and 5 years validity",
    "- Regular delivery: TK 4,025",
    "- Express delivery: TK 6,325",
    "- Super Express delivery: TK 8,625",
    "### 48 pages and 10 years validity",
    "- Regular delivery: TK 5,750",
    "- Express delivery: TK 8,050",
    "- Super Express delivery: TK 10,350",
])

APPLY_MARKDOWN = "\n".join([
    "# Application Process",
    "## Steps",
    "1. Visit the online application portal",
    "2. Fill the application form",
    "3. Pay the passport fee",
    "4. Submit your biometric data",
    "## Documents",
    "[Application Checklist](/files/checklist.pdf)",
])

PAGES = {
    HOME: {"markdown": "# Bangladesh e-Passport\n\nWelcome to the e-Passport portal.", "metadata": {"title": "e-Passport"}},
    FEES: {"markdown": FEES_MARKDOWN, "metadata": {"title": "Passport Fees"}},
    APPLY: {"markdown": APPLY_MARKDOWN, "metadata": {"title": "Application"}},
    CHECKLIST: {"markdown": ""},
}

SITE_MAP = {HOME: [HOME, FEES, APPLY, CHECKLIST, OFFSITE, GALLERY]}
BINARIES = {CHECKLIST: b"%PDF-1.4 checklist"}

NO_ROBOTS = {"disallow": [], "allow": [], "sitemaps": []}


@pytest.fixture(autouse=True)
def offline():
    with patch("src.ingest.coordinator.fetch_robots", return_value=NO_ROBOTS), \
            patch("src.ingest.coordinator.fetch_sitemaps", return_value=[]), \
            patch("src.ingest.coordinator.time.sleep"):
        yield


def _config(tmp_path, **kwargs):
    values = {"kb_dir": tmp_path / "kb", "domains": ["epassport"], "rate_limit_ms": 0}
    values.update(kwargs)
    return CrawlConfig(**values)


@pytest.fixture
def make_adapter(fake_adapter):
    def make(**kwargs):
        values = {"pages": PAGES, "site_maps": SITE_MAP, "binaries": BINARIES}
        values.update(kwargs)
        return fake_adapter(**values)
    return make


def _load_kb(config):
    return KnowledgeBase.load_or_create(config.path("kb_file"))


def _load_report(config):
    with open(config.path("runs_dir") / today_str() / "crawl_report.json", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# Config
# =============================================================================

class TestCrawlConfig:
    """Tests for crawl settings."""

    def test_unknown_refresh_policy(self, tmp_path):
        with pytest.raises(CrawlAbortedError):
            _config(tmp_path, refresh="sometimes")

    def test_from_config_ignores_none(self):
        config = CrawlConfig.from_config(refresh="all", max_pages=None)
        assert config.refresh == "all"
        assert config.max_pages == 300

    def test_paths_under_kb_dir(self, tmp_path):
        config = _config(tmp_path)
        assert config.path("snapshots_dir") == tmp_path / "kb" / "snapshots"
        assert config.to_report_dict()["kb_dir"] == str(tmp_path / "kb")
        assert "paths" not in config.to_report_dict()


# =============================================================================
# Full run
# =============================================================================

class TestCrawlRun:
    """Tests for a complete crawl of one portal."""

    def test_first_run(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        adapter = make_adapter()
        report = CrawlCoordinator(config, adapter).run()

        assert report.status == "completed"
        domain = report.domains[0]
        assert domain["pages_discovered"] == 4
        assert domain["pages_excluded"] == 2
        assert domain["pages_saved"] == 3
        assert domain["docs_found"] == 1
        assert domain["errors"] == []
        assert report.summary["documents_fetched_via_firecrawl"] == 1
        assert report.guides == {"created": 1, "updated": 0, "unchanged": 0, "curated": 0}

        scraped = {url for url, _ in adapter.scrape_calls}
        assert OFFSITE not in scraped
        assert GALLERY not in scraped

    def test_fee_page_override_and_claims(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        adapter = make_adapter()
        CrawlCoordinator(config, adapter).run()

        options = dict(adapter.scrape_calls)[FEES]
        assert options["waitFor"] == 5000
        assert options["onlyMainContent"] is False

        kb = _load_kb(config)
        fees = [c for c in kb.claims if c["claim_type"] == "fee"]
        assert len(fees) == 6
        assert 4025 in [c["structured_data"]["amount_bdt"] for c in fees]
        assert not any("TK" in (c["structured_data"]["label"] or "") for c in fees)
        assert len([c for c in kb.claims if c["claim_type"] == "step"]) == 4
        assert all(c["claim_id"].startswith("claim.") for c in kb.claims)

    def test_outputs_written(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        CrawlCoordinator(config, make_adapter()).run()

        assert config.path("kb_file").exists()
        assert config.path("crawl_state_file").exists()
        assert config.path("seeds_file").exists()
        assert list(config.path("snapshots_dir").glob("source.*/*/page.md"))
        assert list(config.path("documents_dir").glob("epassport.gov.bd/*.pdf"))

        kb = _load_kb(config)
        assert len(kb.data["documents"]) == 1
        assert kb.data["change_log"][-1]["changes"][0].startswith("Crawl run_")
        assert kb.dangling_citations() == []

        data = _load_report(config)
        assert data["status"] == "completed"
        assert data["summary"]["pages_kept"] == 3

    def test_epassport_guide_has_canonical_fees(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        CrawlCoordinator(config, make_adapter()).run()

        kb = _load_kb(config)
        guide = build_public_guides(kb.data)["guides"][0]
        assert guide["guide_id"] == "guide.epassport"
        assert len(guide["fees"]) > 3
        assert len(guide["steps"]) == 4
        assert not any("TK" in (f["description"] or "") for f in guide["fees"])

    def test_rerun_adds_no_claims(self, tmp_path, make_adapter):
        CrawlCoordinator(_config(tmp_path), make_adapter()).run()
        claims_after_first = len(_load_kb(_config(tmp_path)).claims)

        report = CrawlCoordinator(_config(tmp_path, refresh="all"), make_adapter()).run()

        assert report.summary["claims_extracted"] == 0
        assert len(_load_kb(_config(tmp_path)).claims) == claims_after_first
        assert report.guides["unchanged"] == 1


# =============================================================================
# Refresh policies
# =============================================================================

class TestRefreshPolicies:
    """Tests for changed / missing refresh."""

    def test_changed_skips_same_hash(self, tmp_path, make_adapter):
        CrawlCoordinator(_config(tmp_path), make_adapter()).run()
        report = CrawlCoordinator(_config(tmp_path), make_adapter()).run()

        domain = report.domains[0]
        assert domain["pages_saved"] == 0
        assert domain["pages_unchanged"] == 3

    def test_changed_page_reprocessed(self, tmp_path, make_adapter):
        CrawlCoordinator(_config(tmp_path), make_adapter()).run()
        kb = _load_kb(_config(tmp_path))
        old_step_ids = {c["claim_id"] for c in kb.claims if c["claim_type"] == "step"}

        pages = dict(PAGES)
        revised = APPLY_MARKDOWN.replace("2. Fill the application form", "2. Fill the online application form")
        pages[APPLY] = {"markdown": revised}
        report = CrawlCoordinator(_config(tmp_path), make_adapter(pages=pages)).run()

        assert report.domains[0]["pages_saved"] == 1
        assert report.summary["claims_invalidated"] == 1
        kb = _load_kb(_config(tmp_path))
        page = next(p for p in kb.source_pages if p["canonical_url"] == APPLY)
        assert page["previous_hash"] is not None
        assert len(page["change_log"]) == 1

        stale = [c for c in kb.claims if c["status"] == "stale"]
        assert len(stale) == 1
        assert stale[0]["claim_id"] in old_step_ids
        assert stale[0]["previous_status"] == "unverified"
        assert stale[0]["stale_due_to_source_hash"] == page["content_hash"]
        assert len([c for c in kb.claims if c["claim_type"] == "step" and c["status"] != "stale"]) == 4

        guide = build_public_guides(kb.data)["guides"][0]
        assert guide["meta"]["verification_summary"]["stale"] == 1

    def test_missing_skips_todays_snapshots(self, tmp_path, make_adapter):
        CrawlCoordinator(_config(tmp_path), make_adapter()).run()

        adapter = make_adapter()
        report = CrawlCoordinator(_config(tmp_path, refresh="missing"), adapter).run()

        assert report.domains[0]["pages_unchanged"] == 3
        assert [url for url, _ in adapter.scrape_calls] == [CHECKLIST]


# =============================================================================
# Failures
# =============================================================================

class TestFailures:
    """Tests for strict mode and error accounting."""

    def test_strict_mode_without_backend(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        adapter = make_adapter(available=False)

        with pytest.raises(FetchUnavailableError):
            CrawlCoordinator(config, adapter).run()

        data = _load_report(config)
        assert data["status"] == "failed"
        assert data["failure_type"] == "firecrawl_unavailable"
        assert data["failure_stage"] == "firecrawl_map"
        assert adapter.scrape_calls == []
        assert not config.path("kb_file").exists()

    def test_map_failure_fails_domain_in_strict_mode(self, tmp_path, make_adapter):
        adapter = make_adapter(site_maps={HOME: ConnectionError("map down")})
        report = CrawlCoordinator(_config(tmp_path), adapter).run()

        assert report.status == "completed"
        assert report.summary["domains_failed"] == 1
        assert report.summary["domains_failed_reasons"] == {"firecrawl_map_failed": 1}
        assert adapter.scrape_calls == []

    def test_map_failure_tolerated_when_not_strict(self, tmp_path, make_adapter):
        adapter = make_adapter(site_maps={HOME: ConnectionError("map down")}, config={"require_firecrawl": False})
        report = CrawlCoordinator(_config(tmp_path, require_firecrawl=False), adapter).run()

        domain = report.domains[0]
        assert domain["pages_saved"] == 1
        assert domain["errors"][0].startswith("Map failed:")

    def test_page_errors_recorded(self, tmp_path, make_adapter):
        pages = dict(PAGES)
        pages[HOME] = {"markdown": ""}
        report = CrawlCoordinator(_config(tmp_path), make_adapter(pages=pages)).run()

        domain = report.domains[0]
        assert domain["pages_saved"] == 2
        assert len(domain["errors"]) == 1
        assert report.errors[0]["type"] == "firecrawl_scrape_failed"
        assert report.errors[0]["url"] == HOME

    def test_dangling_citation_reported(self, tmp_path, make_adapter):
        config = _config(tmp_path)
        CrawlCoordinator(config, make_adapter()).run()
        kb = _load_kb(config)
        kb.upsert_claim({
            "claim_id": "claim.step.orphan.0000000000000000",
            "entity_ref": {"type": "service", "id": "svc.orphan"},
            "claim_type": "step",
            "status": "unverified",
            "citations": [{"source_page_id": "source.gone"}],
        })
        kb.save()

        report = CrawlCoordinator(config, make_adapter()).run()

        assert report.status == "completed"
        integrity = [e for e in _load_report(config)["errors"] if e["type"] == "kb_integrity"]
        assert len(integrity) == 1
        assert "claim.step.orphan.0000000000000000" in integrity[0]["message"]
        assert "source.gone" in integrity[0]["message"]

    def test_clean_run_has_no_integrity_errors(self, tmp_path, make_adapter):
        report = CrawlCoordinator(_config(tmp_path), make_adapter()).run()
        assert not [e for e in report.errors if e["type"] == "kb_integrity"]

    def test_domain_skipped_without_scrape_backend(self, tmp_path, make_adapter):
        adapter = make_adapter(available=False, config={"require_firecrawl": False})
        report = CrawlCoordinator(_config(tmp_path, require_firecrawl=False), adapter).run()

        assert report.status == "completed"
        assert report.summary["domains_skipped"] == 1
        assert report.summary["domains_skipped_reasons"] == {"firecrawl_unavailable": 1}
        assert report.summary["domains_crawled"] == 0
        assert report.domains == []
        assert adapter.scrape_calls == []

    def test_blocked_document_download_recorded(self, tmp_path, make_adapter):
        report = CrawlCoordinator(_config(tmp_path), make_adapter(binaries={})).run()

        assert report.domains[0]["docs_found"] == 0
        assert any(e["type"] == "http_download_blocked" for e in report.errors)
        assert report.status == "completed"

    def test_no_seeds(self, tmp_path, make_adapter):
        config = _config(tmp_path, domains=["nothing.example"])
        with pytest.raises(CrawlAbortedError):
            CrawlCoordinator(config, make_adapter()).run()
        assert _load_report(config)["failure_type"] == "no_seeds"


# =============================================================================
# Dry run
# =============================================================================

class TestDryRun:
    """Tests for --dry-run."""

    def test_lists_urls_without_writing(self, tmp_path, make_adapter, capsys):
        config = _config(tmp_path, dry_run=True)
        adapter = make_adapter(available=False)
        report = CrawlCoordinator(config, adapter).run()

        assert report.status == "dry_run"
        assert adapter.scrape_calls == []
        assert not config.path("kb_file").exists()
        assert not config.path("seeds_file").exists()
        assert f"- {HOME}" in capsys.readouterr().out
        assert _load_report(config)["status"] == "dry_run"
