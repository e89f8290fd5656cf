"""Tests for building and validating the published guide files."""

import json

import pytest

from src.extract.claims import extract_claims
from src.extract.extractor import extract_structured_data
from src.kb.guides import assemble_guides
from src.kb.identity import generate_source_page_id
from src.kb.writer import KnowledgeBase, create_empty_kb
from src.publish.build_guides import (
    GUIDES_FILENAME,
    INDEX_FILENAME,
    SCHEMA_FILENAME,
    build_public_artifacts,
    build_public_guide,
    build_lookups,
    extract_amount,
    extract_fee_structured_data,
    format_locator,
    get_guide_claim_ids,
    load_public_schema,
    select_canonical_epassport_fees,
)
from src.publish.validate import (
    find_contract_violations,
    is_absolute_url,
    is_iso_datetime,
    validate_published,
    validate_schema,
    validate_semantics,
)


NID_URL = "https://services.nidw.gov.bd/instructions/apply"
FEES_URL = "https://www.epassport.gov.bd/instructions/passport-fees"

NID_MARKDOWN = "\n".join([
    "# NID Correction",
    "## Steps",
    "1. Visit the portal",
    "2. Fill the correction form",
    "## Fees",
    "### Express",
    "- Correction fee: 500 BDT",
    "## FAQ",
    "### How long does it take?",
    "It takes 15 working days.",
])


def _kb_with_page(url, markdown, retrieved_at="2026-01-15T10:00:00.000Z"):
    kb = KnowledgeBase(create_empty_kb())
    structured = extract_structured_data(markdown, url)
    record, _ = kb.upsert_source_page(url, "hash", None, title="Page", crawled_at=retrieved_at)
    agency_id = kb.ensure_agency(record["canonical_url"].split("/")[2])
    claims = extract_claims(record["source_page_id"], url, structured, retrieved_at=retrieved_at)
    service_id = claims[0]["entity_ref"]["id"]
    kb.ensure_service(service_id, agency_id, url, record["source_page_id"])
    kb.add_claims(claims)
    assemble_guides(kb, now="2026-01-15T10:05:00.000Z")
    return kb


def _fee(description, locator, url=FEES_URL, retrieved_at="2026-01-15T10:00:00.000Z", quoted=None):
    return {
        "label": "Fee",
        "description": description,
        "citations": [{
            "source_page_id": generate_source_page_id(url),
            "canonical_url": url,
            "locator": locator,
            "quoted_text": quoted or description,
            "retrieved_at": retrieved_at,
            "language": "en",
        }],
    }


# =============================================================================
# Builder helpers
# =============================================================================

class TestHelpers:
    """Tests for small builder helpers."""

    def test_format_locator(self):
        assert format_locator({"type": "heading_path", "heading_path": ["Fees", "Express"]}) == "Fees > Express"
        assert format_locator({"type": "pdf_page", "pdf_page": 3}) == "Page 3"
        assert format_locator({"type": "url_fragment", "url_fragment": "fees"}) == "#fees"
        assert format_locator(None) is None

    def test_extract_amount(self):
        assert extract_amount("Regular: 4,025 BDT") == 4025
        assert extract_amount("no amount") is None

    def test_fee_structured_data_reads_locator(self):
        structured = extract_fee_structured_data(_fee("Super Express: 12,075 BDT", "Fees > 64 pages 10 years"))
        assert structured == {"delivery_type": "super_express", "pages": 64, "validity_years": 10}

    def test_guide_claim_ids_first_seen_order(self):
        guide = {
            "steps": [{"claim_ids": ["claim.a"]}],
            "sections": {"application_steps": [{"claim_ids": ["claim.a"]}], "fees": [{"claim_ids": ["claim.b"]}]},
            "variants": [{"fee_claim_ids": ["claim.b", "claim.c"], "processing_time_claim_ids": []}],
        }
        assert get_guide_claim_ids(guide) == ["claim.a", "claim.b", "claim.c"]


# =============================================================================
# Canonical e-Passport fees
# =============================================================================

class TestCanonicalFees:
    """Tests for e-Passport fee deduplication."""

    def test_one_per_group_sorted(self):
        fees = [
            _fee("Regular: 4,025 BDT", "Passport Fees > 48 pages 5 years"),
            _fee("Regular: 4,025 BDT", "48 pages 5 years", url="https://www.epassport.gov.bd/faq",
                 retrieved_at="2026-01-20T00:00:00.000Z"),
            _fee("Express: 6,325 TK", "Passport Fees > 48 pages 5 years"),
            _fee("Regular: 5,750 BDT", "Passport Fees > 64 pages 5 years"),
            _fee("100 BDT", "Other"),
        ]
        canonical = select_canonical_epassport_fees(fees)

        assert [f["description"] for f in canonical] == [
            "100 BDT", "Regular: 4,025 BDT", "Express: 6,325 BDT", "Regular: 5,750 BDT",
        ]
        # fee page beats the newer FAQ page citation
        assert canonical[1]["citations"][0]["canonical_url"] == FEES_URL
        assert all(len(f["citations"]) == 1 for f in canonical)

    def test_vat_schedule_replaces_legacy(self):
        fees = [
            _fee("Regular: 4,025 BDT", "E-Passport Fees > Inside Bangladesh (15% VAT included) > 48 pages 5 years"),
            _fee("Regular: 3,500 BDT", "Passport Fees > e-Passport Fees > 64 pages 10 years",
                 quoted="Regular delivery (21 working days)"),
        ]
        canonical = select_canonical_epassport_fees(fees)
        assert [f["description"] for f in canonical] == ["Regular: 4,025 BDT"]

    def test_uncited_fees_dropped(self):
        fee = _fee("Regular: 4,025 BDT", "48 pages 5 years")
        fee["citations"] = []
        assert select_canonical_epassport_fees([fee]) == []
        assert select_canonical_epassport_fees([]) == []

    def test_applied_only_to_epassport_guide(self):
        markdown = "\n".join([
            "# Passport Fees",
            "## 48 pages 5 years",
            "Regular delivery: 4,025 TK",
            "Express delivery: 6,325 TK",
            "## 48 pages 10 years",
            "Regular delivery: 5,750 TK",
            "Express delivery: 8,050 TK",
        ])
        kb = _kb_with_page(FEES_URL, markdown)
        guide = kb.data["service_guides"][0]
        assert guide["guide_id"] == "guide.epassport"

        public = build_public_guide(guide, build_lookups(kb.data))
        assert len(public["fees"]) == 4
        assert public["sections"]["fees"] == public["fees"]
        variant_amounts = {v["variant_id"]: [f["structured_data"]["amount_bdt"] for f in v["fees"]]
                           for v in public["variants"]}
        assert variant_amounts == {"regular": [4025, 5750], "express": [6325, 8050]}


# =============================================================================
# Public guides end to end
# =============================================================================

class TestBuildPublicArtifacts:
    """Tests for the written public files."""

    @pytest.fixture
    def published(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SOURCE_TIMESTAMP", "2026-01-16T00:00:00.000Z")
        kb = _kb_with_page(NID_URL, NID_MARKDOWN)
        summary = build_public_artifacts(kb.data, tmp_path)
        return tmp_path, summary

    def test_files_written(self, published):
        out_dir, summary = published
        for name in (GUIDES_FILENAME, INDEX_FILENAME, SCHEMA_FILENAME):
            assert (out_dir / name).exists()
        assert summary["guides"] == 1
        assert summary["generated_at"] == "2026-01-16T00:00:00.000Z"

    def test_guide_contents(self, published):
        out_dir, _ = published
        with open(out_dir / GUIDES_FILENAME, encoding="utf-8") as f:
            data = json.load(f)

        guide = data["guides"][0]
        assert data["$schema_version"] == "3.0.0"
        assert guide["guide_id"] == "guide.nid"
        assert guide["agency_name"] == "Bangladesh Election Commission"
        assert [s["title"] for s in guide["steps"]] == ["Visit the portal", "Fill the correction form"]
        citation = guide["steps"][0]["citations"][0]
        assert citation["canonical_url"] == NID_URL
        assert citation["domain"] == "services.nidw.gov.bd"
        assert citation["locator"] == "NID Correction > Steps"
        assert guide["meta"]["total_citations"] == 4
        assert guide["meta"]["verification_summary"]["unverified"] == 4
        assert guide["meta"]["last_crawled_at"] == "2026-01-15T10:00:00.000Z"
        assert guide["meta"]["source_domains"] == ["services.nidw.gov.bd"]

    def test_no_claim_ids_leak(self, published):
        out_dir, _ = published
        raw = (out_dir / GUIDES_FILENAME).read_text(encoding="utf-8")
        assert "claim_id" not in raw
        assert '"claim.' not in raw

    def test_index_keywords(self, published):
        out_dir, _ = published
        with open(out_dir / INDEX_FILENAME, encoding="utf-8") as f:
            entry = json.load(f)["entries"][0]
        assert entry["step_count"] == 2
        assert "visit" in entry["keywords"]
        assert "election" in entry["keywords"]

    def test_output_validates(self, published):
        out_dir, _ = published
        result = validate_published(out_dir)
        assert result["status"] == "OK", result["errors"]
        assert result["guides"] == 1
        assert result["warnings"] == []

    def test_empty_kb_publishes_nothing(self, tmp_path):
        summary = build_public_artifacts(create_empty_kb(), tmp_path)
        assert summary["guides"] == 0
        assert validate_published(tmp_path)["status"] == "OK"


# =============================================================================
# Validation gates
# =============================================================================

class TestValidation:
    """Tests for the individual validation gates."""

    def test_contract_violations(self):
        data = {"guides": [{"claim_ids": ["x"], "steps": [{"note": "claim.fee.nid.abc"}]}], "refs": ["claim.step.x"]}
        violations = find_contract_violations(data)
        assert len(violations) == 3
        assert any(v.startswith("guides[0].claim_ids") for v in violations)
        assert any(v.startswith("guides[0].steps[0].note") for v in violations)
        assert any(v.startswith("refs[0]") for v in violations)

    def test_semantics(self):
        data = {"guides": [
            {
                "guide_id": "svc.nid",
                "steps": [{"step_number": 1}, {"step_number": 3}],
                "variants": [{"variant_id": "regular"}, {"variant_id": "regular"}],
                "official_links": [{"url": "/relative"}],
                "fees": [{"citations": [{"retrieved_at": "yesterday", "canonical_url": "nidw.gov.bd"}]}],
            },
        ]}
        errors = validate_semantics(data)
        assert len(errors) == 6
        assert any("must start with 'guide.'" in e for e in errors)
        assert any("expected 2, got 3" in e for e in errors)
        assert any("duplicate variant_id" in e for e in errors)

    def test_schema_errors(self):
        schema = load_public_schema()
        errors = validate_schema({"$schema_version": "2.0.0", "guides": []}, schema)
        assert any(e.startswith("root:") for e in errors)
        assert any(e.startswith("$schema_version:") for e in errors)

    def test_missing_files(self, tmp_path):
        result = validate_published(tmp_path)
        assert result["status"] == "FAIL"
        assert len(result["errors"]) == 3

    def test_value_checks(self):
        assert is_iso_datetime("2026-01-15T10:00:00.000Z")
        assert is_iso_datetime("2026-01-15T10:00:00+06:00")
        assert not is_iso_datetime("2026-01-15")
        assert not is_iso_datetime("2026-01-15T10:00:00")
        assert is_absolute_url("https://nidw.gov.bd/")
        assert not is_absolute_url("ftp://nidw.gov.bd/")
