"""
Turn extracted page data into citable KB claims.

Claims are emitted in a fixed order (fees, steps, documents, FAQs) with ids
derived from page URL, claim type, locator and a normalized payload, so a
re-run over identical content reproduces the same claim ids.
"""

import logging
from typing import Any, Dict, List, Optional

from .extractor import ExtractionResult
from .patterns import contains_bengali
from ..kb.identity import make_deterministic_claim_id, make_locator
from ..kb.service_map import get_domain, get_service_id_or_derive, get_service_key
from ..run_utils import utc_now_iso

logger = logging.getLogger(__name__)

MAX_QUOTED_TEXT = 300
DEFAULT_HEADING_PATH = ["Page Content"]


def create_citation(
    source_page_id: str,
    url: str,
    quoted_text: Optional[str],
    heading_path: Optional[List[str]],
    retrieved_at: Optional[str] = None,
    language: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a heading-path citation for a claim.

    Args:
        source_page_id: Page the text was quoted from
        url: Canonical URL of that page
        quoted_text: Supporting text (clipped to 300 chars)
        heading_path: Headings above the quoted text
        retrieved_at: Fetch timestamp (defaults to now)
        language: ``en`` or ``bn``; detected from the quote when omitted

    Returns:
        Citation dict
    """
    quoted_text = quoted_text or ""
    return {
        "source_page_id": source_page_id,
        "canonical_url": url,
        "quoted_text": quoted_text[:MAX_QUOTED_TEXT],
        "locator": {
            "type": "heading_path",
            "heading_path": list(heading_path) if heading_path else list(DEFAULT_HEADING_PATH),
        },
        "retrieved_at": retrieved_at or utc_now_iso(),
        "language": language or ("bn" if contains_bengali(quoted_text) else "en"),
    }


def _script_tag(text: str) -> str:
    return "bengali" if contains_bengali(text or "") else "english"


def extract_claims(
    source_page_id: str,
    url: str,
    structured: ExtractionResult,
    service_id: Optional[str] = None,
    retrieved_at: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Build claim dicts for one page.

    Args:
        source_page_id: Id of the page the data came from
        url: Canonical page URL
        structured: Output of extract_structured_data()
        service_id: Explicit service id; derived from the URL's domain if omitted
        retrieved_at: Timestamp stamped on citations and last_verified_at

    Returns:
        Claims in emission order, unique by claim_id
    """
    service_id = service_id or get_service_id_or_derive(get_domain(url))
    service_key = get_service_key(service_id)
    retrieved_at = retrieved_at or utc_now_iso()
    entity_ref = {"type": "service", "id": service_id}

    claims: List[Dict[str, Any]] = []
    seen_ids = set()

    def emit(claim_type: str, locator: str, payload: Dict[str, Any], text: str,
             quoted: str, heading_path: List[str], tags: List[str]) -> None:
        claim_id = make_deterministic_claim_id(claim_type, service_key, url, locator, payload)
        if claim_id in seen_ids:
            logger.debug(f"Duplicate claim {claim_id} on {url} skipped")
            return
        seen_ids.add(claim_id)
        claims.append({
            "claim_id": claim_id,
            "entity_ref": dict(entity_ref),
            "claim_type": claim_type,
            "text": text,
            "status": "unverified",
            "structured_data": payload,
            "citations": [create_citation(source_page_id, url, quoted, heading_path, retrieved_at)],
            "last_verified_at": retrieved_at,
            "tags": [t for t in tags if t],
        })

    for fee in structured.fee_table:
        payload = {
            "amount_bdt": fee.amount_bdt,
            "currency": fee.currency,
            "variant": fee.variant,
            "label": fee.label,
        }
        emit("fee", make_locator(fee.heading_path, fee.line_number), payload,
             fee.label, fee.text, fee.heading_path, ["fee", "auto_extracted", fee.variant])

    for step in structured.steps:
        payload = {
            "order": step.order,
            "title": step.title,
            "description": step.description,
            "marker_type": step.marker,
        }
        emit("step", make_locator(step.heading_path, step.line_number), payload,
             step.title, step.text, step.heading_path,
             ["step", "auto_extracted", _script_tag(step.text)])

    for doc in structured.document_list:
        payload = {
            "url": doc.url,
            "text": doc.text,
            "extension": doc.extension,
            "discovery_method": doc.discovery_method,
        }
        # Heading path only; HTML-only documents have no markdown line
        emit("document_requirement", make_locator(doc.heading_path), payload,
             doc.text or doc.url, doc.text or doc.url, doc.heading_path,
             ["document", "download", "auto_extracted"])

    for faq in structured.faq_pairs:
        payload = {
            "question": faq.question,
            "answer": faq.answer,
            "link": faq.link,
        }
        emit("faq", make_locator(faq.heading_path, faq.line_number), payload,
             faq.question, faq.question, faq.heading_path,
             ["faq", "auto_extracted", _script_tag(faq.question)])

    return claims
