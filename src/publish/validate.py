"""
Validation gates for published guides.

Three layers, each returning plain error strings:
- JSON Schema (Draft 7) for structure
- the public contract: no claim ids or ``claim.*`` references leak through
- semantics: guide id prefix, dense step numbers, unique variant ids,
  ISO timestamps and absolute URLs in citations
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple
from urllib.parse import urlparse

import jsonschema

from .build_guides import GUIDES_FILENAME, INDEX_FILENAME, SCHEMA_FILENAME
from ..run_utils import load_json, parse_iso_datetime

logger = logging.getLogger(__name__)

FORBIDDEN_KEYS = ("claim_id", "claim_ids")
CLAIM_REF_PREFIX = "claim."


def _join_path(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else str(key)


def validate_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
    """All Draft 7 schema violations as ``path: message`` strings."""
    validator = jsonschema.Draft7Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = ""
        for key in error.absolute_path:
            path = _join_path(path, key)
        errors.append(f"{path or 'root'}: {error.message}")
    return errors


def find_contract_violations(data: Any, path: str = "") -> List[str]:
    """
    Claim references anywhere in a published document.

    Flags any ``claim_id`` / ``claim_ids`` key and any string value that
    starts with ``claim.``.
    """
    violations = []
    if isinstance(data, dict):
        for key, value in data.items():
            child = _join_path(path, key)
            if key in FORBIDDEN_KEYS:
                violations.append(f"{child}: {key} must not be exposed in public guides")
            if isinstance(value, str) and value.startswith(CLAIM_REF_PREFIX):
                violations.append(f"{child}: claim reference '{value}' must be resolved to citations")
            violations.extend(find_contract_violations(value, child))
    elif isinstance(data, list):
        for i, value in enumerate(data):
            child = _join_path(path, i)
            if isinstance(value, str) and value.startswith(CLAIM_REF_PREFIX):
                violations.append(f"{child}: claim reference '{value}' must be resolved to citations")
            violations.extend(find_contract_violations(value, child))
    return violations


def is_iso_datetime(value: Any) -> bool:
    """ISO 8601 date-time with a ``T`` separator and an explicit offset or ``Z``."""
    if not isinstance(value, str) or "T" not in value:
        return False
    parsed = parse_iso_datetime(value)
    return parsed is not None and (value.endswith("Z") or "+" in value or value.count("-") > 2)


def is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _guide_citations(guide: Dict[str, Any], guide_path: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
    def from_items(items, items_path):
        for i, item in enumerate(items or []):
            for k, citation in enumerate(item.get("citations") or []):
                yield f"{items_path}[{i}].citations[{k}]", citation

    yield from from_items(guide.get("steps"), f"{guide_path}.steps")
    yield from from_items(guide.get("required_documents"), f"{guide_path}.required_documents")
    yield from from_items(guide.get("fees"), f"{guide_path}.fees")
    for key, items in (guide.get("sections") or {}).items():
        yield from from_items(items, f"{guide_path}.sections.{key}")
    for j, variant in enumerate(guide.get("variants") or []):
        yield from from_items(variant.get("fees"), f"{guide_path}.variants[{j}].fees")
        yield from from_items(variant.get("processing_times"), f"{guide_path}.variants[{j}].processing_times")


def validate_semantics(data: Dict[str, Any]) -> List[str]:
    """Checks the schema cannot express."""
    errors = []
    seen_guides = set()

    for i, guide in enumerate(data.get("guides") or []):
        guide_path = f"guides[{i}]"
        guide_id = guide.get("guide_id") or ""

        if not guide_id.startswith("guide."):
            errors.append(f"{guide_path}.guide_id: must start with 'guide.'")
        if guide_id in seen_guides:
            errors.append(f"{guide_path}.guide_id: duplicate guide_id {guide_id}")
        seen_guides.add(guide_id)

        for j, step in enumerate(guide.get("steps") or []):
            if step.get("step_number") != j + 1:
                errors.append(
                    f"{guide_path}.steps[{j}].step_number: step numbers must be sequential "
                    f"(expected {j + 1}, got {step.get('step_number')})"
                )

        variant_ids = set()
        for j, variant in enumerate(guide.get("variants") or []):
            variant_id = variant.get("variant_id")
            if variant_id in variant_ids:
                errors.append(f"{guide_path}.variants[{j}].variant_id: duplicate variant_id {variant_id}")
            variant_ids.add(variant_id)

        for citation_path, citation in _guide_citations(guide, guide_path):
            retrieved_at = citation.get("retrieved_at")
            if retrieved_at is not None and not is_iso_datetime(retrieved_at):
                errors.append(f"{citation_path}.retrieved_at: invalid date-time {retrieved_at}")
            canonical_url = citation.get("canonical_url")
            if canonical_url is not None and not is_absolute_url(canonical_url):
                errors.append(f"{citation_path}.canonical_url: invalid URL {canonical_url}")

        for j, link in enumerate(guide.get("official_links") or []):
            if not is_absolute_url(link.get("url")):
                errors.append(f"{guide_path}.official_links[{j}].url: invalid URL {link.get('url')}")

    return errors


def validate_published(out_dir: Path) -> Dict[str, Any]:
    """
    Run every gate over a published directory.

    Args:
        out_dir: Directory with public_guides.json, the index and the schema

    Returns:
        Dict with status ("OK" / "FAIL"), errors, warnings and counts
    """
    out_dir = Path(out_dir)
    errors: List[str] = []
    warnings: List[str] = []

    paths = {name: out_dir / name for name in (GUIDES_FILENAME, INDEX_FILENAME, SCHEMA_FILENAME)}
    missing = [name for name, path in paths.items() if not path.exists()]
    if missing:
        errors.extend(f"Missing file: {out_dir / name}" for name in missing)
        return {"status": "FAIL", "errors": errors, "warnings": warnings}

    try:
        guides_data = load_json(paths[GUIDES_FILENAME])
        index_data = load_json(paths[INDEX_FILENAME])
        schema = load_json(paths[SCHEMA_FILENAME])
    except ValueError as e:
        errors.append(f"Failed to parse JSON: {e}")
        return {"status": "FAIL", "errors": errors, "warnings": warnings}

    errors.extend(f"schema: {e}" for e in validate_schema(guides_data, schema))
    errors.extend(f"contract: {e}" for e in find_contract_violations(guides_data))
    errors.extend(f"contract: {e}" for e in find_contract_violations(index_data, "index"))
    errors.extend(f"semantics: {e}" for e in validate_semantics(guides_data))

    guide_ids = {g.get("guide_id") for g in guides_data.get("guides") or []}
    entries = index_data.get("entries") or []
    for entry in entries:
        if entry.get("guide_id") not in guide_ids:
            warnings.append(f"Index entry {entry.get('guide_id')} has no matching guide")
    if len(entries) != len(guide_ids):
        warnings.append(f"Index has {len(entries)} entries for {len(guide_ids)} guides")

    status = "FAIL" if errors else "OK"
    logger.info(f"Published guides validation: {status} ({len(errors)} errors, {len(warnings)} warnings)")
    return {
        "status": status,
        "errors": errors,
        "warnings": warnings,
        "guides": len(guides_data.get("guides") or []),
        "index_entries": len(entries),
        "schema_version": guides_data.get("$schema_version"),
        "generated_at": guides_data.get("generated_at"),
        "source_kb_version": guides_data.get("source_kb_version"),
    }
