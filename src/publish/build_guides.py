"""
Public guide builder.

Projects the KB's ``service_guides`` into reader-facing guides: every claim
reference is resolved to display-ready citations, so no claim ids reach the
published files. Also writes a compact search index and the JSON Schema the
validator checks both against.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import urlparse

from ..run_utils import parse_iso_datetime, utc_now_iso, write_json

logger = logging.getLogger(__name__)

PUBLIC_SCHEMA_VERSION = "3.0.0"

GUIDES_FILENAME = "public_guides.json"
INDEX_FILENAME = "public_guides_index.json"
SCHEMA_FILENAME = "public_guides.schema.json"

SCHEMA_SEARCH_PATHS = [
    Path("config/schemas") / SCHEMA_FILENAME,
    Path(__file__).resolve().parent.parent.parent / "config" / "schemas" / SCHEMA_FILENAME,
]

VERIFICATION_STATUSES = ("verified", "unverified", "stale", "deprecated", "contradicted")

EPASSPORT_GUIDE_ID = "guide.epassport"
EPASSPORT_FEES_PATH = "/instructions/passport-fees"

DELIVERY_ORDER = {"regular": 0, "express": 1, "super_express": 2}

_AMOUNT_RE = re.compile(r"([0-9]{1,3}(?:,[0-9]{3})+|[0-9]+)")
_PAGES_RE = re.compile(r"([0-9]+)\s*-?\s*(?:pages?|পৃষ্ঠা)", re.IGNORECASE)
_VALIDITY_RE = re.compile(r"([0-9]+)\s*-?\s*(?:years?|বছর)", re.IGNORECASE)
_TK_RE = re.compile(r"\bTK\b", re.IGNORECASE)
_TAKA_RE = re.compile(r"\bTaka\b", re.IGNORECASE)
_WORKING_DAYS_RE = re.compile(r"working\s*days?", re.IGNORECASE)
_LEGACY_LOCATOR = "passport fees > e-passport fees"


# ============================================================================
# Lookups and citations
# ============================================================================

def build_lookups(kb_data: Dict[str, Any]) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Id -> record maps for claims, source pages, services and agencies."""
    return {
        "claims": {c["claim_id"]: c for c in kb_data.get("claims") or [] if c.get("claim_id")},
        "source_pages": {p["source_page_id"]: p for p in kb_data.get("source_pages") or [] if p.get("source_page_id")},
        "services": {s["service_id"]: s for s in kb_data.get("services") or [] if s.get("service_id")},
        "agencies": {a["agency_id"]: a for a in kb_data.get("agencies") or [] if a.get("agency_id")},
    }


def format_locator(locator: Optional[Dict[str, Any]]) -> Optional[str]:
    """Render a citation locator as a display string."""
    if not locator:
        return None

    locator_type = locator.get("type")
    if locator_type == "heading_path":
        return " > ".join(locator.get("heading_path") or [])
    if locator_type == "css_selector":
        return f"CSS: {locator.get('css_selector')}"
    if locator_type == "xpath":
        return f"XPath: {locator.get('xpath')}"
    if locator_type == "url_fragment":
        return f"#{locator.get('url_fragment')}"
    if locator_type == "pdf_page":
        return f"Page {locator.get('pdf_page')}"
    return None


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def resolve_citations(claim: Dict[str, Any], source_pages: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Resolve a claim's citations against their source pages."""
    resolved = []
    for citation in claim.get("citations") or []:
        page = source_pages.get(citation.get("source_page_id")) or {}
        canonical_url = page.get("canonical_url") or citation.get("canonical_url")
        resolved.append({
            "source_page_id": citation.get("source_page_id"),
            "canonical_url": canonical_url,
            "domain": _hostname(canonical_url),
            "page_title": page.get("title"),
            "locator": format_locator(citation.get("locator")),
            "quoted_text": citation.get("quoted_text"),
            "retrieved_at": citation.get("retrieved_at"),
            "language": citation.get("language") or "en",
        })
    return resolved


def compute_verification_summary(claim_ids: Iterable[str], claims: Dict[str, Dict[str, Any]]) -> Dict[str, int]:
    summary = {"total": 0}
    summary.update({status: 0 for status in VERIFICATION_STATUSES})
    for claim_id in claim_ids:
        claim = claims.get(claim_id)
        if claim is None:
            continue
        summary["total"] += 1
        status = claim.get("status") or "unverified"
        if status in summary:
            summary[status] += 1
    return summary


def get_guide_claim_ids(guide: Dict[str, Any]) -> List[str]:
    """
    Every claim id a guide references, first-seen order.

    Collected from steps, every section, variant fee and processing time
    lists, required documents and fees.
    """
    seen: Set[str] = set()
    ordered: List[str] = []

    def add(ids):
        for claim_id in ids or []:
            if claim_id not in seen:
                seen.add(claim_id)
                ordered.append(claim_id)

    for step in guide.get("steps") or []:
        add(step.get("claim_ids"))
    for items in (guide.get("sections") or {}).values():
        if isinstance(items, list):
            for item in items:
                add(item.get("claim_ids"))
    for variant in guide.get("variants") or []:
        add(variant.get("fee_claim_ids"))
        add(variant.get("processing_time_claim_ids"))
    for item in guide.get("required_documents") or []:
        add(item.get("claim_ids"))
    for item in guide.get("fees") or []:
        add(item.get("claim_ids"))
    return ordered


def _cited_pages(claim_ids, claims, source_pages):
    for claim_id in claim_ids:
        claim = claims.get(claim_id)
        if claim is None:
            continue
        for citation in claim.get("citations") or []:
            page = source_pages.get(citation.get("source_page_id"))
            if page is not None:
                yield page


def get_last_crawled_at(claim_ids, claims, source_pages) -> Optional[str]:
    latest = None
    latest_raw = None
    for page in _cited_pages(claim_ids, claims, source_pages):
        crawled = parse_iso_datetime(page.get("last_crawled_at"))
        if crawled is not None and (latest is None or crawled > latest):
            latest, latest_raw = crawled, page["last_crawled_at"]
    return latest_raw


def get_source_domains(claim_ids, claims, source_pages) -> List[str]:
    domains: List[str] = []
    for page in _cited_pages(claim_ids, claims, source_pages):
        domain = _hostname(page.get("canonical_url"))
        if domain and domain not in domains:
            domains.append(domain)
    return domains


# ============================================================================
# Public shapes
# ============================================================================

def _citations_for(claim_ids, claims, source_pages) -> List[Dict[str, Any]]:
    citations = []
    for claim_id in claim_ids or []:
        claim = claims.get(claim_id)
        if claim is not None:
            citations.extend(resolve_citations(claim, source_pages))
    return citations


def build_public_step(step: Dict[str, Any], claims, source_pages) -> Dict[str, Any]:
    return {
        "step_number": step.get("step_number"),
        "title": step.get("title"),
        "description": step.get("description") or None,
        "citations": _citations_for(step.get("claim_ids"), claims, source_pages),
    }


def build_public_item(item: Dict[str, Any], claims, source_pages) -> Dict[str, Any]:
    return {
        "label": item.get("label") or "",
        "description": item.get("description") or None,
        "citations": _citations_for(item.get("claim_ids"), claims, source_pages),
    }


def _claim_entry(claim: Dict[str, Any], source_pages) -> Dict[str, Any]:
    return {
        "text": claim.get("text"),
        "structured_data": claim.get("structured_data") or None,
        "citations": resolve_citations(claim, source_pages),
    }


def build_public_variant(
    variant: Dict[str, Any],
    claims,
    source_pages,
    canonical_fees: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Public variant with resolved fees and processing times.

    When ``canonical_fees`` is given (e-Passport), the variant's fees are the
    canonical items of the same delivery type instead of its own claims.
    """
    fees = []
    if canonical_fees is not None:
        for fee in canonical_fees:
            structured = extract_fee_structured_data(fee)
            if structured["delivery_type"] != variant.get("variant_id"):
                continue
            structured["amount_bdt"] = extract_amount(fee.get("description")) or extract_amount(fee.get("label"))
            fees.append({
                "text": fee.get("label"),
                "structured_data": structured,
                "citations": fee.get("citations") or [],
            })
    else:
        for claim_id in variant.get("fee_claim_ids") or []:
            claim = claims.get(claim_id)
            if claim is not None:
                fees.append(_claim_entry(claim, source_pages))

    processing_times = []
    for claim_id in variant.get("processing_time_claim_ids") or []:
        claim = claims.get(claim_id)
        if claim is not None:
            processing_times.append(_claim_entry(claim, source_pages))

    return {
        "variant_id": variant.get("variant_id"),
        "label": variant.get("label") or variant.get("variant_id"),
        "fees": fees,
        "processing_times": processing_times,
    }


# ============================================================================
# Canonical e-Passport fees
# ============================================================================

def extract_amount(text: Optional[str]) -> Optional[int]:
    """First amount in ``text`` (``4,025`` -> 4025)."""
    if not text:
        return None
    match = _AMOUNT_RE.search(text)
    return int(match.group(1).replace(",", "")) if match else None


def extract_fee_structured_data(fee: Dict[str, Any]) -> Dict[str, Any]:
    """
    Delivery type, page count and validity years read from a fee item.

    The label, description and citation locators are searched, so a
    ``48 pages, 5 years`` heading applies to every fee row under it.
    """
    parts = [fee.get("label") or "", fee.get("description") or ""]
    parts.extend(c.get("locator") or "" for c in fee.get("citations") or [])
    text = " ".join(parts).lower()

    if "regular" in text:
        delivery_type = "regular"
    elif "super express" in text or "super_express" in text:
        delivery_type = "super_express"
    elif "express" in text:
        delivery_type = "express"
    else:
        delivery_type = None

    pages = _PAGES_RE.search(text)
    validity = _VALIDITY_RE.search(text)
    return {
        "delivery_type": delivery_type,
        "pages": int(pages.group(1)) if pages else None,
        "validity_years": int(validity.group(1)) if validity else None,
    }


def _cites_fee_page(fee: Dict[str, Any]) -> bool:
    return any(EPASSPORT_FEES_PATH in (c.get("canonical_url") or "") for c in fee.get("citations") or [])


def _newest_retrieved(fee: Dict[str, Any]) -> float:
    stamps = [parse_iso_datetime(c.get("retrieved_at")) for c in fee.get("citations") or []]
    stamps = [s.timestamp() for s in stamps if s is not None]
    return max(stamps) if stamps else 0.0


def _mentions_vat(citation: Dict[str, Any]) -> bool:
    for text in (citation.get("locator") or "", citation.get("quoted_text") or ""):
        lowered = text.lower()
        if "15% vat" in lowered or ("vat" in lowered and "inside bangladesh" in lowered):
            return True
    return False


def _is_legacy_schedule(citation: Dict[str, Any]) -> bool:
    return (_LEGACY_LOCATOR in (citation.get("locator") or "").lower()
            or bool(_WORKING_DAYS_RE.search(citation.get("quoted_text") or "")))


def _normalize_currency(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    return _TAKA_RE.sub("BDT", _TK_RE.sub("BDT", text))


def select_canonical_epassport_fees(fees: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Reduce e-Passport fee items to one per (delivery type, pages, validity).

    Within a group the item citing the official fee page wins, then the one
    with the newest citation. If a VAT-inclusive schedule is present the
    legacy working-days schedule is dropped. Items with no recognisable
    grouping fields are never merged together. Output is sorted by pages,
    validity, then regular < express < super_express, with ``TK`` / ``Taka``
    rewritten as ``BDT`` and one citation kept per item (the newest fee-page
    citation when there is one).
    """
    if not fees:
        return fees

    groups: Dict[Any, List[Dict[str, Any]]] = {}
    order: List[Any] = []
    for position, fee in enumerate(fees):
        if not fee.get("citations"):
            continue
        structured = extract_fee_structured_data(fee)
        key = (structured["delivery_type"], structured["pages"], structured["validity_years"])
        if key == (None, None, None):
            key = ("ungrouped", position)
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append({"fee": fee, "structured": structured})

    selected = []
    for key in order:
        ranked = sorted(
            groups[key],
            key=lambda entry: (not _cites_fee_page(entry["fee"]), -_newest_retrieved(entry["fee"])),
        )
        selected.append(ranked[0])

    has_vat_schedule = any(
        _mentions_vat(c) for entry in selected for c in entry["fee"]["citations"]
    )
    if has_vat_schedule:
        current = [
            entry for entry in selected
            if any(_mentions_vat(c) for c in entry["fee"]["citations"])
            and not any(_is_legacy_schedule(c) for c in entry["fee"]["citations"])
        ]
        if current:
            selected = current

    selected.sort(key=lambda entry: (
        entry["structured"]["pages"] or 0,
        entry["structured"]["validity_years"] or 0,
        DELIVERY_ORDER.get(entry["structured"]["delivery_type"], len(DELIVERY_ORDER)),
    ))

    canonical = []
    for entry in selected:
        fee = entry["fee"]
        citations = sorted(
            fee["citations"],
            key=lambda c: (EPASSPORT_FEES_PATH not in (c.get("canonical_url") or ""),
                           -(parse_iso_datetime(c.get("retrieved_at")).timestamp()
                             if parse_iso_datetime(c.get("retrieved_at")) else 0.0)),
        )
        canonical.append({
            "label": _normalize_currency(fee.get("label")) or "",
            "description": _normalize_currency(fee.get("description")) or None,
            "citations": citations[:1],
        })
    return canonical


# ============================================================================
# Guides and index
# ============================================================================

def build_public_guide(guide: Dict[str, Any], lookups: Dict[str, Dict[str, Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Resolve one KB guide into its public form.

    Args:
        guide: Entry of ``service_guides``
        lookups: Output of ``build_lookups``

    Returns:
        Public guide dict with citations in place of claim references
    """
    claims = lookups["claims"]
    source_pages = lookups["source_pages"]
    claim_ids = get_guide_claim_ids(guide)

    steps = [build_public_step(s, claims, source_pages) for s in guide.get("steps") or []]
    required_documents = [build_public_item(i, claims, source_pages) for i in guide.get("required_documents") or []]
    fees = [build_public_item(i, claims, source_pages) for i in guide.get("fees") or []]

    canonical_fees = None
    if guide.get("guide_id") == EPASSPORT_GUIDE_ID and fees:
        original_count = len(fees)
        canonical_fees = select_canonical_epassport_fees(fees)
        fees = canonical_fees
        logger.info(f"Canonical e-Passport fees selected: {original_count} -> {len(fees)}")

    sections = {}
    for key, items in (guide.get("sections") or {}).items():
        if not isinstance(items, list):
            continue
        if key == "application_steps":
            sections[key] = [build_public_step(s, claims, source_pages) for s in items]
        elif key == "fees" and canonical_fees is not None:
            sections[key] = fees
        else:
            sections[key] = [build_public_item(i, claims, source_pages) for i in items]

    variants = [
        build_public_variant(v, claims, source_pages, canonical_fees)
        for v in guide.get("variants") or []
    ]

    agency = lookups["agencies"].get(guide.get("agency_id")) or {}

    return {
        "guide_id": guide.get("guide_id"),
        "service_id": guide.get("service_id"),
        "agency_id": guide.get("agency_id"),
        "agency_name": agency.get("name"),
        "title": guide.get("title"),
        "overview": guide.get("overview") or None,
        "steps": steps or None,
        "sections": sections or None,
        "variants": variants or None,
        "required_documents": required_documents or None,
        "fees": fees or None,
        "official_links": list(guide.get("official_links") or []),
        "meta": {
            "total_steps": len(steps),
            "total_citations": len(claim_ids),
            "verification_summary": compute_verification_summary(claim_ids, claims),
            "last_crawled_at": get_last_crawled_at(claim_ids, claims, source_pages),
            "source_domains": get_source_domains(claim_ids, claims, source_pages),
            "generated_at": guide.get("generated_at"),
            "last_updated_at": guide.get("last_updated_at"),
            "status": guide.get("status") or "draft",
        },
    }


def _keywords(text: Optional[str]) -> List[str]:
    return [word for word in (text or "").lower().split() if len(word) > 2]


def build_index_entry(guide: Dict[str, Any], public_guide: Dict[str, Any]) -> Dict[str, Any]:
    """Search index entry: keywords from title, step titles and agency name."""
    keywords: List[str] = []
    sources = [guide.get("title")]
    sources.extend(step.get("title") for step in guide.get("steps") or [])
    sources.append(public_guide.get("agency_name"))
    for source in sources:
        for word in _keywords(source):
            if word not in keywords:
                keywords.append(word)

    return {
        "guide_id": guide.get("guide_id"),
        "service_id": guide.get("service_id"),
        "agency_id": guide.get("agency_id"),
        "title": guide.get("title"),
        "agency_name": public_guide.get("agency_name"),
        "keywords": keywords,
        "step_count": public_guide["meta"]["total_steps"],
        "citation_count": public_guide["meta"]["total_citations"],
        "status": public_guide["meta"]["status"],
    }


def resolve_generated_at(kb_data: Dict[str, Any]) -> str:
    """SOURCE_TIMESTAMP, else the KB's last_updated_at, else now."""
    return (
        os.environ.get("SOURCE_TIMESTAMP", "").strip()
        or kb_data.get("last_updated_at")
        or utc_now_iso()
    )


def load_public_schema() -> Dict[str, Any]:
    """
    Load the published-output JSON Schema.

    Raises:
        FileNotFoundError: Schema not found in config/schemas
    """
    for path in SCHEMA_SEARCH_PATHS:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
    raise FileNotFoundError(f"{SCHEMA_FILENAME} not found in config/schemas")


def build_public_guides(kb_data: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Build public guides and index entries for every KB guide.

    Returns:
        Dict with ``guides`` and ``index`` lists
    """
    guides = kb_data.get("service_guides") or []
    if not guides:
        logger.warning("KB has no service_guides; nothing to publish")
        return {"guides": [], "index": []}

    lookups = build_lookups(kb_data)
    logger.info(
        f"Building {len(guides)} guides from {len(lookups['claims'])} claims "
        f"and {len(lookups['source_pages'])} source pages"
    )

    public_guides = []
    index_entries = []
    for guide in guides:
        public_guide = build_public_guide(guide, lookups)
        public_guides.append(public_guide)
        index_entries.append(build_index_entry(guide, public_guide))
        logger.info(
            f"{guide.get('guide_id')}: {public_guide['meta']['total_steps']} steps, "
            f"{public_guide['meta']['total_citations']} citations"
        )
    return {"guides": public_guides, "index": index_entries}


def build_public_artifacts(kb_data: Dict[str, Any], out_dir: Path) -> Dict[str, Any]:
    """
    Write public_guides.json, public_guides_index.json and the schema.

    Args:
        kb_data: Loaded KB document
        out_dir: Output directory (created if missing)

    Returns:
        Summary dict with counts and written paths
    """
    out_dir = Path(out_dir)
    built = build_public_guides(kb_data)
    generated_at = resolve_generated_at(kb_data)
    header = {
        "$schema_version": PUBLIC_SCHEMA_VERSION,
        "generated_at": generated_at,
        "source_kb_version": kb_data.get("data_version"),
    }

    guides_path = out_dir / GUIDES_FILENAME
    index_path = out_dir / INDEX_FILENAME
    schema_path = out_dir / SCHEMA_FILENAME

    write_json(guides_path, {**header, "guides": built["guides"]})
    write_json(index_path, {**header, "entries": built["index"]})
    write_json(schema_path, load_public_schema())

    return {
        "guides": len(built["guides"]),
        "index_entries": len(built["index"]),
        "total_steps": sum(g["meta"]["total_steps"] for g in built["guides"]),
        "total_citations": sum(g["meta"]["total_citations"] for g in built["guides"]),
        "generated_at": generated_at,
        "paths": [str(guides_path), str(index_path), str(schema_path)],
        "public_guides": built["guides"],
    }
