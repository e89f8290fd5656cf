"""
Service guide assembly.

Groups each service's claims by type into a guide: ordered application
steps, fee items and delivery variants, required documents, FAQs and
official links. Guides reference claims by id only; the public builder
resolves those ids to citations.
"""

import copy
import logging
import re
from typing import Any, Dict, List, Optional

from .service_map import get_domain, get_service_key
from .writer import KnowledgeBase
from ..run_utils import utc_now_iso

logger = logging.getLogger(__name__)

CLAIM_TYPE_TO_SECTION = {
    "step": "application_steps",
    "document_requirement": "required_documents",
    "fee": "fees",
    "faq": "faq",
    "processing_time": "processing_time",
    "eligibility_requirement": "eligibility",
    "portal_link": "portal_links",
    "portal_url": "portal_links",
}
DEFAULT_SECTION = "service_info"

SECTION_ORDER = (
    "application_steps",
    "required_documents",
    "fees",
    "processing_time",
    "eligibility",
    "faq",
    "portal_links",
    "service_info",
)

VARIANT_ORDER = ("regular", "express", "super_express", "emergency")

# Guides in this status are maintained by hand and never regenerated
CURATED_STATUS = "published"

FALLBACK_OFFICIAL_LINK = {"label": "Official Portal", "url": "https://bangladesh.gov.bd"}

_STEP_HEADING_RE = re.compile(r"step\s*(\d+)", re.IGNORECASE)
_TIMESTAMP_KEYS = ("generated_at", "last_updated_at")


def get_step_order(claim: Dict[str, Any]) -> Optional[int]:
    """Order of a step claim from structured_data, else a ``Step N`` heading."""
    order = (claim.get("structured_data") or {}).get("order")
    if isinstance(order, int) and not isinstance(order, bool):
        return order

    for citation in claim.get("citations") or []:
        locator = citation.get("locator") or {}
        if locator.get("type") != "heading_path":
            continue
        for heading in locator.get("heading_path") or []:
            match = _STEP_HEADING_RE.search(heading)
            if match:
                return int(match.group(1))
    return None


def _first_source_page_id(claim: Dict[str, Any]) -> str:
    citations = claim.get("citations") or []
    return citations[0].get("source_page_id", "") if citations else ""


def _variant_label(variant_id: str) -> str:
    return variant_id.replace("_", " ").title()


def detect_variants(fee_claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group fee claims into delivery variants.

    The variant comes from ``structured_data.variant`` (or ``delivery_type``)
    and defaults to ``regular``. Variants are listed in delivery-speed order.
    """
    variants: Dict[str, Dict[str, Any]] = {}
    for claim in fee_claims:
        sd = claim.get("structured_data") or {}
        variant_id = sd.get("variant") or sd.get("delivery_type") or "regular"
        if variant_id not in variants:
            variants[variant_id] = {
                "variant_id": variant_id,
                "label": _variant_label(variant_id),
                "fee_claim_ids": [],
                "processing_time_claim_ids": [],
            }
        variants[variant_id]["fee_claim_ids"].append(claim["claim_id"])

    def rank(variant_id: str) -> int:
        return VARIANT_ORDER.index(variant_id) if variant_id in VARIANT_ORDER else len(VARIANT_ORDER)

    return [variants[v] for v in sorted(variants, key=lambda v: (rank(v), v))]


def _order_step_claims(step_claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    page_rank: Dict[str, int] = {}
    for claim in step_claims:
        page_rank.setdefault(_first_source_page_id(claim), len(page_rank))

    def sort_key(item):
        position, claim = item
        order = get_step_order(claim)
        return (page_rank[_first_source_page_id(claim)], order is None, order or 0, position)

    return [claim for _, claim in sorted(enumerate(step_claims), key=sort_key)]


def _build_step(claim: Dict[str, Any], number: int) -> Dict[str, Any]:
    sd = claim.get("structured_data") or {}
    title = sd.get("title")
    description = sd.get("description")
    if not title:
        text = claim.get("text") or ""
        if ":" in text.strip(":"):
            head, _, tail = text.partition(":")
            title, description = head.strip(), tail.strip()
        else:
            title, description = f"Step {number}", text
    return {
        "step_number": number,
        "title": title,
        "description": description or None,
        "claim_ids": [claim["claim_id"]],
    }


def _fee_item(claim: Dict[str, Any]) -> Dict[str, Any]:
    sd = claim.get("structured_data") or {}
    amount = sd.get("amount_bdt")
    amount_text = f"{amount:,} BDT" if isinstance(amount, int) else f"{amount} BDT"
    description = f"{_variant_label(sd['variant'])}: {amount_text}" if sd.get("variant") else amount_text
    return {
        "label": claim.get("text") or sd.get("label") or "Fee",
        "description": description,
        "claim_ids": [claim["claim_id"]],
    }


def _document_item(claim: Dict[str, Any]) -> Dict[str, Any]:
    sd = claim.get("structured_data") or {}
    return {
        "label": claim.get("text") or sd.get("url") or "Document",
        "description": sd.get("url"),
        "claim_ids": [claim["claim_id"]],
    }


def _faq_item(claim: Dict[str, Any]) -> Dict[str, Any]:
    sd = claim.get("structured_data") or {}
    return {
        "label": sd.get("question") or claim.get("text"),
        "description": sd.get("answer") or sd.get("link"),
        "claim_ids": [claim["claim_id"]],
    }


def _generic_item(claim: Dict[str, Any]) -> Dict[str, Any]:
    return {"label": claim.get("text") or claim.get("claim_type", "Info"), "claim_ids": [claim["claim_id"]]}


def _official_links(service: Dict[str, Any], claims: List[Dict[str, Any]],
                    source_pages: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    links = []
    seen = set()
    for entry in service.get("official_entrypoints") or []:
        page = source_pages.get(entry.get("source_page_id", ""))
        url = entry.get("url") or (page or {}).get("canonical_url")
        if url and url not in seen:
            seen.add(url)
            links.append({"label": entry.get("description") or "Official Portal", "url": url})

    if not links:
        for claim in claims:
            page = source_pages.get(_first_source_page_id(claim))
            domain = get_domain((page or {}).get("canonical_url", ""))
            if domain:
                links.append({"label": "Official Portal", "url": f"https://{domain}/"})
                break

    return links or [dict(FALLBACK_OFFICIAL_LINK)]


def generate_guide(
    service: Dict[str, Any],
    claims: List[Dict[str, Any]],
    source_pages: Dict[str, Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Build a service guide from the service's claims.

    Args:
        service: Service record
        claims: Claims whose entity_ref points at the service, in KB order
        source_pages: source_page_id -> source page record

    Returns:
        Guide dict referencing claims by id (no timestamps)
    """
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for claim in claims:
        section = CLAIM_TYPE_TO_SECTION.get(claim.get("claim_type"), DEFAULT_SECTION)
        grouped.setdefault(section, []).append(claim)

    steps = [
        _build_step(claim, number)
        for number, claim in enumerate(_order_step_claims(grouped.get("application_steps", [])), start=1)
    ]
    builders = {
        "required_documents": _document_item,
        "fees": _fee_item,
        "faq": _faq_item,
    }

    sections: Dict[str, List[Dict[str, Any]]] = {}
    for section in SECTION_ORDER:
        if section == "application_steps":
            if steps:
                sections[section] = steps
            continue
        items = [builders.get(section, _generic_item)(c) for c in grouped.get(section, [])]
        if items:
            sections[section] = items

    guide: Dict[str, Any] = {
        "guide_id": f"guide.{get_service_key(service['service_id'])}",
        "service_id": service["service_id"],
        "agency_id": service.get("agency_id"),
        "title": service.get("service_name") or service["service_id"],
        "sections": sections,
    }
    if steps:
        guide["steps"] = steps
    if sections.get("required_documents"):
        guide["required_documents"] = sections["required_documents"]
    if sections.get("fees"):
        guide["fees"] = sections["fees"]

    variants = detect_variants(grouped.get("fees", []))
    if variants:
        guide["variants"] = variants

    guide["official_links"] = _official_links(service, claims, source_pages)
    guide["status"] = "draft"
    return guide


def _content_equal(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    strip = lambda g: {k: v for k, v in g.items() if k not in _TIMESTAMP_KEYS}
    return strip(a) == strip(b)


def assemble_guides(kb: KnowledgeBase, now: Optional[str] = None) -> Dict[str, int]:
    """
    Regenerate ``service_guides`` for every service that has claims.

    Hand-curated guides (status ``published``) are kept as they are. An
    unchanged guide keeps its timestamps, so re-assembling the same KB is a
    no-op.

    Returns:
        Counts of created / updated / unchanged / curated guides
    """
    now = now or utc_now_iso()
    existing = {g.get("guide_id"): g for g in kb.data.get("service_guides") or []}
    source_pages = {p["source_page_id"]: p for p in kb.source_pages}
    counts = {"created": 0, "updated": 0, "unchanged": 0, "curated": 0}

    guides: List[Dict[str, Any]] = []
    emitted = set()
    for service in kb.data.get("services") or []:
        claims = kb.claims_for_service(service["service_id"])
        if not claims:
            continue

        guide = generate_guide(service, claims, source_pages)
        previous = existing.get(guide["guide_id"])

        if previous is not None and previous.get("status") == CURATED_STATUS:
            guides.append(previous)
            counts["curated"] += 1
        elif previous is not None and _content_equal(previous, guide):
            guides.append(previous)
            counts["unchanged"] += 1
        else:
            guide["generated_at"] = (previous or {}).get("generated_at") or now
            guide["last_updated_at"] = now
            guides.append(guide)
            counts["updated" if previous else "created"] += 1
        emitted.add(guide["guide_id"])

    # Guides without a crawled service (e.g. imported by hand) survive untouched
    for guide_id, guide in existing.items():
        if guide_id not in emitted:
            guides.append(copy.deepcopy(guide))

    kb.data["service_guides"] = guides
    logger.info(f"Service guides assembled: {counts}")
    return counts
