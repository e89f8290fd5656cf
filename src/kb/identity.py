"""
Content-derived identifiers for KB entities.

Source pages are keyed by sha1(url); claims by a sha1 over the page URL,
claim type, locator and a normalized payload fingerprint. Re-extracting the
same content therefore always produces the same ids.
"""

import hashlib
import json
import re
from typing import Any, Dict, Optional

CLAIM_TYPES = ("step", "fee", "faq", "document_requirement")

# Number of hex chars of the sha1 kept in claim ids
CLAIM_HASH_LENGTH = 16

_WHITESPACE_RE = re.compile(r"\s+")


def generate_hash(content: Any, algorithm: str = "sha256") -> str:
    """
    Hex digest of a string or bytes payload.

    Args:
        content: Text (encoded as UTF-8) or raw bytes
        algorithm: Any hashlib algorithm name

    Returns:
        Hex-encoded digest
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.new(algorithm, content).hexdigest()


def generate_source_page_id(url: str) -> str:
    """Return ``source.<sha1(url)>`` for a canonical URL."""
    return f"source.{generate_hash(url, 'sha1')}"


def normalize_for_fingerprint(text: Optional[Any]) -> str:
    """Trim, collapse whitespace runs to one space and lowercase."""
    if text is None or text == "":
        return ""
    return _WHITESPACE_RE.sub(" ", str(text).strip()).lower()


def _fingerprint_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_payload_fingerprint(claim_type: str, payload: Optional[Dict[str, Any]]) -> str:
    """
    Type-specific projection of a claim payload used in the claim id.

    Display-only fields (tags, status, verification times) never take part.

    Args:
        claim_type: step, fee, faq or document_requirement
        payload: Claim structured_data

    Returns:
        Normalized fingerprint string
    """
    if not payload:
        return ""

    parts = []
    if claim_type == "step":
        parts.append(_fingerprint_value(payload.get("title")))
        parts.append(_fingerprint_value(payload.get("description")))
    elif claim_type == "fee":
        parts.append(_fingerprint_value(payload.get("label")))
        parts.append(_fingerprint_value(payload.get("amount_bdt")))
        parts.append(_fingerprint_value(payload.get("currency")))
        if payload.get("variant"):
            parts.append(str(payload["variant"]))
    elif claim_type == "faq":
        parts.append(_fingerprint_value(payload.get("question")))
        parts.append(_fingerprint_value(payload.get("answer")))
    elif claim_type == "document_requirement":
        parts.append(_fingerprint_value(payload.get("url")))
        if payload.get("text"):
            parts.append(str(payload["text"]))
    else:
        parts.append(json.dumps(payload, sort_keys=True, ensure_ascii=False))

    return normalize_for_fingerprint("\n".join(parts))


def make_locator(heading_path, line_number: Optional[int] = None) -> str:
    """Render a heading path (and optional 1-based line) as a locator string."""
    locator = " > ".join(heading_path or [])
    if line_number:
        locator += f":{line_number}"
    return locator


def make_deterministic_claim_id(
    claim_type: str,
    service_key: str,
    canonical_url: str,
    locator: str,
    payload: Optional[Dict[str, Any]],
) -> str:
    """
    Build ``claim.<type>.<service_key>.<hash16>``.

    Args:
        claim_type: One of CLAIM_TYPES
        service_key: Service id without the ``svc.`` prefix
        canonical_url: URL of the page the claim was extracted from
        locator: Heading path / line locator of the claim
        payload: Claim structured_data

    Returns:
        Claim id stable across runs for identical inputs
    """
    hash_input = "\n".join([
        canonical_url or "",
        claim_type or "",
        locator or "",
        generate_payload_fingerprint(claim_type, payload),
    ])
    digest = generate_hash(hash_input, "sha1")[:CLAIM_HASH_LENGTH]
    return f"claim.{claim_type}.{service_key}.{digest}"
