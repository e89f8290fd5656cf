"""Tests for claim construction from extracted page data."""

import pytest

from src.extract.claims import create_citation, extract_claims
from src.extract.extractor import extract_structured_data
from src.kb.identity import generate_source_page_id


URL = "https://www.epassport.gov.bd/instructions/application-form"
SPID = generate_source_page_id(URL)
RETRIEVED_AT = "2026-01-15T10:00:00.000Z"

MARKDOWN = "\n".join([
    "# Application",
    "## Steps",
    "1. Visit the portal",
    "2. Fill the form",
    "## Fees",
    "### Express Service",
    "- Fee: 6,900 BDT",
    "## Forms",
    "[Checklist](/docs/checklist.pdf)",
    "## FAQ",
    "### How long does it take?",
    "It takes 15 working days.",
])


def _claims(markdown=MARKDOWN, url=URL, **kwargs):
    structured = extract_structured_data(markdown, url)
    return extract_claims(SPID, url, structured, retrieved_at=RETRIEVED_AT, **kwargs)


class TestCreateCitation:
    """Tests for citation construction."""

    def test_heading_path_locator(self):
        citation = create_citation(SPID, URL, "Fee: 6,900 BDT", ["Fees", "Express Service"], RETRIEVED_AT)
        assert citation["locator"] == {"type": "heading_path", "heading_path": ["Fees", "Express Service"]}
        assert citation["canonical_url"] == URL
        assert citation["retrieved_at"] == RETRIEVED_AT
        assert citation["language"] == "en"

    def test_defaults(self):
        citation = create_citation(SPID, URL, "ফি " + "x" * 400, [])
        assert citation["locator"]["heading_path"] == ["Page Content"]
        assert len(citation["quoted_text"]) == 300
        assert citation["language"] == "bn"
        assert citation["retrieved_at"].endswith("Z")


class TestExtractClaims:
    """Tests for claim emission."""

    def test_emission_order(self):
        """Fees, then steps, then documents, then FAQs."""
        types = [c["claim_type"] for c in _claims()]
        assert types == ["fee", "step", "step", "document_requirement", "faq"]

    def test_claim_shape(self):
        fee = _claims()[0]
        assert fee["claim_id"].startswith("claim.fee.epassport.")
        assert fee["entity_ref"] == {"type": "service", "id": "svc.epassport"}
        assert fee["status"] == "unverified"
        assert fee["structured_data"]["amount_bdt"] == 6900
        assert fee["structured_data"]["variant"] == "express"
        assert fee["last_verified_at"] == RETRIEVED_AT
        assert fee["tags"] == ["fee", "auto_extracted", "express"]
        assert fee["citations"][0]["source_page_id"] == SPID

    def test_step_tags_script(self):
        steps = [c for c in _claims() if c["claim_type"] == "step"]
        assert steps[0]["tags"] == ["step", "auto_extracted", "english"]
        assert steps[0]["structured_data"]["order"] == 1

    def test_ids_deterministic_and_unique(self):
        first = [c["claim_id"] for c in _claims()]
        second = [c["claim_id"] for c in _claims()]
        assert first == second
        assert len(set(first)) == len(first)
        assert not any(cid.startswith("auto_") for cid in first)

    def test_retrieved_at_does_not_change_ids(self):
        structured = extract_structured_data(MARKDOWN, URL)
        a = extract_claims(SPID, URL, structured, retrieved_at="2026-01-01T00:00:00.000Z")
        b = extract_claims(SPID, URL, structured, retrieved_at="2026-02-01T00:00:00.000Z")
        assert [c["claim_id"] for c in a] == [c["claim_id"] for c in b]

    def test_explicit_service_id(self):
        claims = _claims(service_id="svc.passport")
        assert all(c["entity_ref"]["id"] == "svc.passport" for c in claims)
        assert claims[0]["claim_id"].startswith("claim.fee.passport.")

    def test_unknown_domain_derives_service(self):
        claims = _claims("1. Visit the portal", "https://www.newservice.gov.bd/apply")
        assert claims[0]["entity_ref"]["id"] == "svc.newservice"

    def test_empty_page(self):
        assert _claims("") == []
