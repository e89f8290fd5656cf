"""Tests for content-derived ids and the domain -> service registry."""

import pytest

from src.kb.identity import (
    generate_hash,
    generate_payload_fingerprint,
    generate_source_page_id,
    make_deterministic_claim_id,
    make_locator,
    normalize_for_fingerprint,
)
from src.kb.service_map import (
    derive_service_key,
    get_agency_for_domain,
    get_domain,
    get_service_id,
    get_service_id_or_derive,
    get_service_key,
    get_service_name,
    normalize_domain,
)


class TestHashes:
    """Tests for hashing helpers."""

    def test_sha256_of_text_and_bytes_match(self):
        """Text is hashed as its UTF-8 bytes."""
        assert generate_hash("ফি") == generate_hash("ফি".encode("utf-8"))
        assert len(generate_hash("abc")) == 64

    def test_source_page_id_is_sha1_of_url(self):
        """Source page ids are source.<sha1(url)>."""
        spid = generate_source_page_id("https://www.epassport.gov.bd/")
        assert spid.startswith("source.")
        assert len(spid) == len("source.") + 40
        assert spid == generate_source_page_id("https://www.epassport.gov.bd/")
        assert spid != generate_source_page_id("https://www.epassport.gov.bd")


class TestFingerprint:
    """Tests for payload fingerprints."""

    def test_normalization(self):
        assert normalize_for_fingerprint("  Visit   The\nPortal ") == "visit the portal"
        assert normalize_for_fingerprint(None) == ""

    def test_display_fields_ignored(self):
        """Tags and status never affect the fingerprint."""
        base = {"title": "Visit the portal", "description": "Go online"}
        noisy = dict(base, tags=["x"], status="verified", last_verified_at="2026-01-01T00:00:00Z")
        assert generate_payload_fingerprint("step", base) == generate_payload_fingerprint("step", noisy)

    def test_fee_amount_float_and_int_equal(self):
        """13800.0 and 13800 fingerprint identically."""
        a = {"label": "Fee", "amount_bdt": 13800.0, "currency": "BDT"}
        b = {"label": "Fee", "amount_bdt": 13800, "currency": "BDT"}
        assert generate_payload_fingerprint("fee", a) == generate_payload_fingerprint("fee", b)

    def test_fee_variant_changes_fingerprint(self):
        a = {"label": "Fee", "amount_bdt": 6900, "currency": "BDT", "variant": "express"}
        b = dict(a, variant="regular")
        assert generate_payload_fingerprint("fee", a) != generate_payload_fingerprint("fee", b)

    def test_empty_payload(self):
        assert generate_payload_fingerprint("faq", None) == ""


class TestClaimIds:
    """Tests for deterministic claim ids."""

    def test_format(self):
        claim_id = make_deterministic_claim_id(
            "step", "epassport", "https://www.epassport.gov.bd/", "Apply > Steps:3",
            {"title": "Visit the portal", "description": ""},
        )
        prefix, claim_type, service_key, digest = claim_id.split(".")
        assert prefix == "claim"
        assert claim_type == "step"
        assert service_key == "epassport"
        assert len(digest) == 16
        assert not claim_id.startswith("auto_")

    def test_stable_across_calls(self):
        args = ("fee", "epassport", "https://x.gov.bd/fees", "Fees:4", {"label": "Fee", "amount_bdt": 4025})
        assert make_deterministic_claim_id(*args) == make_deterministic_claim_id(*args)

    def test_whitespace_and_case_insensitive_payload(self):
        a = make_deterministic_claim_id("faq", "nid", "https://nidw.gov.bd/", "FAQ", {"question": "How?", "answer": "Online"})
        b = make_deterministic_claim_id("faq", "nid", "https://nidw.gov.bd/", "FAQ", {"question": "  how? ", "answer": "ONLINE"})
        assert a == b

    def test_locator_distinguishes(self):
        payload = {"title": "Pay", "description": ""}
        a = make_deterministic_claim_id("step", "nid", "https://nidw.gov.bd/", "A:1", payload)
        b = make_deterministic_claim_id("step", "nid", "https://nidw.gov.bd/", "A:2", payload)
        assert a != b

    def test_make_locator(self):
        assert make_locator(["Fees", "Express"], 12) == "Fees > Express:12"
        assert make_locator([], None) == ""


class TestServiceMap:
    """Tests for the domain registry."""

    @pytest.mark.parametrize("domain,expected", [
        ("epassport.gov.bd", "svc.epassport"),
        ("www.epassport.gov.bd", "svc.epassport"),
        ("services.nidw.gov.bd", "svc.nid"),
        ("dip.gov.bd", "svc.passport"),
        ("bsp.brta.gov.bd", "svc.brta"),
        ("teletalk.com.bd", "svc.teletalk"),
    ])
    def test_known_domains(self, domain, expected):
        assert get_service_id(domain) == expected

    def test_unknown_domain_derives_slug(self):
        assert get_service_id("bsp.example.gov.bd") is None
        assert derive_service_key("bsp.example.gov.bd") == "bsp_example"
        assert get_service_id_or_derive("www.foo.gov.bd") == "svc.foo"
        assert get_service_id_or_derive("") == "svc.unknown"

    def test_domain_helpers(self):
        assert normalize_domain("WWW.Passport.gov.bd ") == "passport.gov.bd"
        assert get_domain("https://WWW.epassport.gov.bd/instructions") == "www.epassport.gov.bd"
        assert get_domain("not a url") == ""

    def test_service_key_and_name(self):
        assert get_service_key("svc.epassport") == "epassport"
        assert get_service_key(None) == "unknown"
        assert get_service_name("svc.epassport") == "Bangladesh e-Passport"
        assert get_service_name("svc.bsp_example") == "Bsp Example"

    def test_agency_lookup(self):
        assert get_agency_for_domain("www.epassport.gov.bd")[0] == "agency.dip"
        assert get_agency_for_domain("nidw.gov.bd")[0] == "agency.bec"
        agency_id, name = get_agency_for_domain("new.gov.bd")
        assert agency_id == "agency.new_gov_bd"
        assert name == "new.gov.bd"
