"""Tests for structured-data extraction from page markdown."""

import pytest

from src.extract.extractor import (
    classify_page,
    detect_language,
    detect_step_line,
    extract_document_links,
    extract_faqs,
    extract_fees,
    extract_steps,
    extract_structured_data,
    parse_bengali_number,
)


PAGE_URL = "https://www.epassport.gov.bd/instructions/application-form"


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:
    """Tests for number parsing, language detection and page classification."""

    def test_parse_bengali_number(self):
        assert parse_bengali_number("১৩,৮০০") == 13800
        assert parse_bengali_number("4,025") == 4025
        assert parse_bengali_number("abc") is None
        assert parse_bengali_number("") is None

    def test_detect_language(self):
        assert detect_language("Apply online") == ["en"]
        assert detect_language("আবেদন করুন") == ["bn"]
        assert detect_language("Apply / আবেদন করুন") == ["en", "bn"]
        assert detect_language("") == ["en"]

    def test_classify_page(self):
        types = classify_page("https://x.gov.bd/instructions/passport-fees", "Passport Fees")
        assert "fees" in types
        assert "tutorial" in types
        assert classify_page("https://x.gov.bd/zzz", "", "") == ["general"]


# =============================================================================
# Steps
# =============================================================================

class TestSteps:
    """Tests for step detection."""

    def test_english_ordered_list(self):
        """Numbered English steps keep their order and titles."""
        lines = ["1. Visit the portal", "2. Click on Register", "3. Fill the form", "4. Submit application"]
        steps = extract_steps(lines)

        assert [s.order for s in steps] == [1, 2, 3, 4]
        assert [s.title for s in steps] == [
            "Visit the portal", "Click on Register", "Fill the form", "Submit application",
        ]
        assert all(s.marker == "ordered_list" for s in steps)

    def test_bengali_ordered_list(self):
        """Bengali digits with ) markers are steps 1..3."""
        lines = ["১) পোর্টালে যান", "২) নিবন্ধন করুন", "৩) ফরম পূরণ করুন"]
        steps = extract_steps(lines)

        assert [s.order for s in steps] == [1, 2, 3]
        assert steps[0].title == "পোর্টালে যান"
        assert steps[0].marker == "bengali_ordered"

    def test_out_of_order_numbers_renumbered_densely(self):
        lines = ["3. Pay the fee online", "1. Visit the portal", "7. Collect your passport"]
        steps = extract_steps(lines)
        assert [s.order for s in steps] == [1, 2, 3]
        assert steps[0].title == "Visit the portal"
        assert steps[2].title == "Collect your passport"

    def test_bullets_need_an_action_verb(self):
        assert detect_step_line("- Upload your photo")[0] is True
        assert detect_step_line("- Dhaka office")[0] is False
        assert detect_step_line("- ছবি আপলোড করুন")[0] is True

    def test_zero_is_not_a_step_number(self):
        assert detect_step_line("0. Nothing here")[0] is False

    def test_heading_path_and_line_number(self):
        lines = ["# Apply", "## Steps", "1. Visit the portal"]
        step = extract_steps(lines)[0]
        assert step.heading_path == ["Apply", "Steps"]
        assert step.line_number == 3

    def test_short_lines_ignored(self):
        assert extract_steps(["1. Go"]) == []


# =============================================================================
# Fees
# =============================================================================

class TestFees:
    """Tests for fee detection."""

    def test_variant_from_headings(self):
        lines = ["### Express Service", "- Fee: 6,900 BDT", "### Super Express", "- Fee: 13,800 BDT"]
        fees = extract_fees(lines)

        assert len(fees) == 2
        assert [f.variant for f in fees] == ["express", "super_express"]
        assert [f.amount_bdt for f in fees] == [6900, 13800]
        assert all(f.currency == "BDT" for f in fees)
        assert fees[0].label == "Fee"

    def test_bengali_fee(self):
        lines = ["### ফি", "- ৪৮ পৃষ্ঠা: ১৩,৮০০ টাকা"]
        fees = extract_fees(lines)

        assert len(fees) == 1
        assert fees[0].amount_bdt == 13800
        assert fees[0].heading_path == ["ফি"]

    def test_taka_sign_and_currency_prefix(self):
        fees = extract_fees(["Regular delivery ৳ 4,025", "Charge: Tk 500"])
        assert [f.amount_bdt for f in fees] == [4025, 500]
        assert fees[0].variant == "regular"

    def test_line_variant_overrides_heading(self):
        lines = ["## Express", "Super express delivery: 12,075 BDT", "Delivery: 8,050 BDT"]
        fees = extract_fees(lines)
        assert [f.variant for f in fees] == ["super_express", "express"]

    def test_same_amount_once_per_line(self):
        fees = extract_fees(["Fee 500 BDT (BDT 500)"])
        assert len(fees) == 1

    def test_amount_bounds(self):
        assert extract_fees(["0 BDT"]) == []
        assert extract_fees(["99,000,000 BDT"]) == []


# =============================================================================
# FAQs
# =============================================================================

class TestFaqs:
    """Tests for FAQ detection."""

    def test_heading_question(self):
        lines = ["### How long does it take?", "It takes 15 working days."]
        faqs = extract_faqs(lines)

        assert len(faqs) == 1
        assert faqs[0].question == "How long does it take?"
        assert faqs[0].answer == "It takes 15 working days."

    def test_answer_stops_at_next_heading(self):
        lines = [
            "### How long does it take?", "It takes 15 working days.",
            "### Where do I apply?", "At the regional passport office.",
        ]
        faqs = extract_faqs(lines)
        assert len(faqs) == 2
        assert faqs[0].answer == "It takes 15 working days."

    def test_qa_pairs(self):
        lines = ["Q: How do I apply for NID?", "", "A: Apply online at the portal."]
        faqs = extract_faqs(lines)
        assert len(faqs) == 1
        assert faqs[0].answer == "Apply online at the portal."

    def test_bullet_question_link(self):
        lines = ["- [How to renew my passport?](/faq/renew)"]
        faqs = extract_faqs(lines, PAGE_URL)
        assert faqs[0].answer is None
        assert faqs[0].link == "https://www.epassport.gov.bd/faq/renew"


# =============================================================================
# Documents
# =============================================================================

class TestDocuments:
    """Tests for document link discovery."""

    def test_markdown_and_bare_links_deduplicated(self):
        lines = [
            "## Forms",
            "[Application Form](/files/form.pdf)",
            "Also at https://www.epassport.gov.bd/files/form.pdf",
        ]
        docs = extract_document_links(lines, PAGE_URL)

        assert len(docs) == 1
        assert docs[0].url == "https://www.epassport.gov.bd/files/form.pdf"
        assert docs[0].extension == ".pdf"
        assert docs[0].discovery_method == "markdown_link"
        assert docs[0].heading_path == ["Forms"]

    def test_non_documents_skipped(self):
        lines = ["[Home](/)", "[Mail](mailto:info@x.gov.bd)", "[Page](/about)"]
        assert extract_document_links(lines, PAGE_URL) == []

    def test_html_anchors(self):
        html = '<a href="/download.php?id=5">Form</a><a href="/guide.docx">Guide</a><a href="/app.js">x</a>'
        docs = extract_document_links([], PAGE_URL, html)
        urls = [d.url for d in docs]
        assert "https://www.epassport.gov.bd/download.php?id=5" in urls
        assert "https://www.epassport.gov.bd/guide.docx" in urls
        assert len(docs) == 2


# =============================================================================
# Whole page
# =============================================================================

class TestExtractStructuredData:
    """Tests for the combined extractor."""

    MARKDOWN = "\n".join([
        "# e-Passport Application",
        "## Steps",
        "1. Visit the portal",
        "2. Fill the form",
        "## Fees",
        "### Express Service",
        "- Fee: 6,900 BDT",
        "## FAQ",
        "### How long does it take?",
        "It takes 15 working days.",
        "[Checklist](/docs/checklist.pdf)",
    ])

    def test_stats(self):
        result = extract_structured_data(self.MARKDOWN, PAGE_URL)
        assert result.stats == {
            "steps_extracted": 2,
            "fees_extracted": 1,
            "faq_pairs_extracted": 1,
            "doc_links_found": 1,
        }
        assert len(result.headings) == 6

    def test_deterministic(self):
        a = extract_structured_data(self.MARKDOWN, PAGE_URL).to_dict()
        b = extract_structured_data(self.MARKDOWN, PAGE_URL).to_dict()
        assert a == b

    def test_empty_markdown(self):
        result = extract_structured_data("", PAGE_URL)
        assert result.stats["steps_extracted"] == 0
