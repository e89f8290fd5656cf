"""
Knowledge Base persistence and upserts.

The KB is a single JSON document. On load, id -> position indexes are built
for claims, source pages, agencies, services and documents so upserts are O(1); the
indexes live only in memory and are never written to disk.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .identity import generate_source_page_id
from .service_map import (
    get_agency_for_domain,
    get_domain,
    get_service_name,
    normalize_domain,
)
from ..run_utils import today_str, utc_now_iso, write_json

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "3.0.0"
KB_FILENAME = "bangladesh_government_services_kb_v3.json"

ENTITY_COLLECTIONS = ("source_pages", "claims", "agencies", "documents", "services", "service_guides")

_INDEXED = {
    "claims": "claim_id",
    "source_pages": "source_page_id",
    "agencies": "agency_id",
    "services": "service_id",
    "documents": "document_id",
}


class KBError(Exception):
    """Raised when a KB file cannot be loaded or its indexes are inconsistent."""
    pass


def create_empty_kb(updated_by: str = "script:crawl.py") -> Dict[str, Any]:
    return {
        "$schema_version": SCHEMA_VERSION,
        "data_version": 1,
        "last_updated_at": utc_now_iso(),
        "updated_by": updated_by,
        "change_log": [{
            "version": 1,
            "date": today_str(),
            "changes": ["Initial crawl"],
        }],
        "source_pages": [],
        "claims": [],
        "agencies": [],
        "documents": [],
        "services": [],
        "service_guides": [],
    }


class KnowledgeBase:
    """In-memory KB with id indexes; mutate only through its methods."""

    def __init__(self, data: Dict[str, Any], path: Optional[Path] = None):
        self.data = data
        self.path = Path(path) if path else None
        for collection in ENTITY_COLLECTIONS:
            self.data.setdefault(collection, [])
        self._indexes: Dict[str, Dict[str, int]] = {}
        self.rebuild_indexes()

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    @classmethod
    def load_or_create(cls, path: Path, updated_by: str = "script:crawl.py") -> "KnowledgeBase":
        """
        Load the KB at ``path`` or start a new one.

        Raises:
            KBError: The file exists but is not valid JSON
        """
        path = Path(path)
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise KBError(f"KB file {path} is not valid JSON: {e}") from e
            logger.info(f"Loaded KB from {path} (data_version={data.get('data_version')})")
            return cls(data, path)

        logger.info(f"No KB at {path}, creating a new one")
        return cls(create_empty_kb(updated_by), path)

    def save(self, path: Optional[Path] = None) -> Path:
        """Bump data_version, refresh last_updated_at and write atomically."""
        target = Path(path) if path else self.path
        if target is None:
            raise KBError("No path given for KB save")

        self.data["data_version"] = int(self.data.get("data_version") or 0) + 1
        self.data["last_updated_at"] = utc_now_iso()
        write_json(target, self.data)
        self.path = target
        logger.info(f"KB saved to {target} (data_version={self.data['data_version']})")
        return target

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def rebuild_indexes(self) -> None:
        self._indexes = {}
        for collection, id_key in _INDEXED.items():
            index: Dict[str, int] = {}
            for position, entity in enumerate(self.data[collection]):
                entity_id = entity.get(id_key)
                if entity_id is None:
                    continue
                if entity_id in index:
                    logger.warning(f"Duplicate {id_key} {entity_id} in KB; keeping first")
                    continue
                index[entity_id] = position
            self._indexes[collection] = index

    def check_indexes(self) -> List[str]:
        """
        Verify every indexed id resolves to the entity at its position.

        Returns:
            List of error strings (empty when consistent)
        """
        errors = []
        for collection, id_key in _INDEXED.items():
            entities = self.data[collection]
            for entity_id, position in self._indexes[collection].items():
                if position >= len(entities) or entities[position].get(id_key) != entity_id:
                    errors.append(f"{collection} index points {entity_id} at position {position}")
        return errors

    def _lookup(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        position = self._indexes[collection].get(entity_id)
        if position is None:
            return None
        return self.data[collection][position]

    def _append(self, collection: str, entity: Dict[str, Any]) -> None:
        self._indexes[collection][entity[_INDEXED[collection]]] = len(self.data[collection])
        self.data[collection].append(entity)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def claims(self) -> List[Dict[str, Any]]:
        return self.data["claims"]

    @property
    def source_pages(self) -> List[Dict[str, Any]]:
        return self.data["source_pages"]

    def get_claim(self, claim_id: str) -> Optional[Dict[str, Any]]:
        return self._lookup("claims", claim_id)

    def get_source_page(self, source_page_id: str) -> Optional[Dict[str, Any]]:
        return self._lookup("source_pages", source_page_id)

    def get_agency(self, agency_id: str) -> Optional[Dict[str, Any]]:
        return self._lookup("agencies", agency_id)

    def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        return self._lookup("services", service_id)

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        return self._lookup("documents", document_id)

    def claims_for_service(self, service_id: str) -> List[Dict[str, Any]]:
        return [c for c in self.claims if (c.get("entity_ref") or {}).get("id") == service_id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def ensure_agency(self, domain: str) -> str:
        """
        Make sure an agency record exists for a domain.

        Returns:
            The agency_id
        """
        agency_id, name = get_agency_for_domain(domain)
        clean = normalize_domain(domain)
        agency = self.get_agency(agency_id)
        if agency is None:
            allowlist = [domain] if domain == clean else [domain, clean]
            self._append("agencies", {
                "agency_id": agency_id,
                "name": name,
                "domain_allowlist": allowlist,
                "claims": [],
            })
        elif domain not in agency.setdefault("domain_allowlist", []):
            agency["domain_allowlist"].append(domain)
        return agency_id

    def ensure_service(
        self,
        service_id: str,
        agency_id: str,
        url: Optional[str] = None,
        source_page_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create the service record on first use and track its entry pages."""
        service = self.get_service(service_id)
        if service is None:
            service = {
                "service_id": service_id,
                "service_name": get_service_name(service_id),
                "agency_id": agency_id,
                "claims": [],
                "official_entrypoints": [],
            }
            self._append("services", service)

        if url and source_page_id:
            entrypoints = service.setdefault("official_entrypoints", [])
            if not entrypoints:
                entrypoints.append({"url": url, "source_page_id": source_page_id})
        return service

    def upsert_source_page(
        self,
        url: str,
        content_hash: str,
        snapshot_ref: Optional[str],
        title: Optional[str] = None,
        page_types: Optional[List[str]] = None,
        languages: Optional[List[str]] = None,
        crawl_method: str = "firecrawl",
        crawled_at: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], str]:
        """
        Insert or refresh the source page for ``url``.

        A changed content hash keeps the prior hash as ``previous_hash`` and
        appends ``{detected_at, hash_before, hash_after}`` to the change log.

        Returns:
            Tuple of (record, status) with status ``added``, ``changed`` or ``unchanged``
        """
        source_page_id = generate_source_page_id(url)
        agency_id = self.ensure_agency(get_domain(url))
        crawled_at = crawled_at or utc_now_iso()
        page_types = page_types or ["general"]

        record = {
            "source_page_id": source_page_id,
            "canonical_url": url,
            "agency_id": agency_id,
            "page_type": page_types[0],
            "page_types": list(page_types),
            "title": title or url,
            "language": list(languages or ["en"]),
            "crawl_method": crawl_method,
            "last_crawled_at": crawled_at,
            "content_hash": content_hash,
            "snapshot_ref": snapshot_ref,
            "status": "active",
            "change_log": [],
        }

        existing = self.get_source_page(source_page_id)
        if existing is None:
            self._append("source_pages", record)
            return record, "added"

        status = "unchanged"
        record["change_log"] = list(existing.get("change_log") or [])
        if existing.get("previous_hash"):
            record["previous_hash"] = existing["previous_hash"]
        if existing.get("content_hash") != content_hash:
            status = "changed"
            record["previous_hash"] = existing.get("content_hash")
            record["change_log"].append({
                "detected_at": crawled_at,
                "hash_before": existing.get("content_hash"),
                "hash_after": content_hash,
            })
        if snapshot_ref is None:
            record["snapshot_ref"] = existing.get("snapshot_ref")

        self.data["source_pages"][self._indexes["source_pages"][source_page_id]] = record
        return record, status

    def upsert_claim(self, claim: Dict[str, Any]) -> bool:
        """
        Append a claim unless its id is already present.

        Returns:
            True if the claim was added, False for a duplicate
        """
        claim_id = claim.get("claim_id")
        if not claim_id:
            raise KBError("Claim without claim_id")
        if claim_id in self._indexes["claims"]:
            return False

        self._append("claims", claim)

        service_id = (claim.get("entity_ref") or {}).get("id")
        service = self.get_service(service_id) if service_id else None
        if service is not None:
            service.setdefault("claims", []).append(claim_id)
            agency = self.get_agency(service.get("agency_id", ""))
            if agency is not None:
                agency.setdefault("claims", []).append(claim_id)
        return True

    def add_claims(self, claims: List[Dict[str, Any]]) -> int:
        """Upsert claims in order. Returns count added."""
        return sum(1 for claim in claims if self.upsert_claim(claim))

    def upsert_document(self, document: Dict[str, Any]) -> bool:
        """
        Record a downloaded binary document.

        An existing record with the same ``document_id`` gains the new URL in
        ``urls`` instead of a second entry.

        Returns:
            True if a new document record was added
        """
        document_id = document.get("document_id")
        if not document_id:
            raise KBError("Document without document_id")
        existing = self.get_document(document_id)
        if existing is None:
            self._append("documents", document)
            return True
        for url in document.get("urls") or []:
            if url not in existing.setdefault("urls", []):
                existing["urls"].append(url)
        return False

    def add_change_log_entry(self, changes: List[str]) -> None:
        self.data.setdefault("change_log", []).append({
            "version": int(self.data.get("data_version") or 0) + 1,
            "date": today_str(),
            "changes": list(changes),
        })

    def invalidate_claims_for_source(
        self,
        source_page_id: str,
        new_hash: str,
        keep_ids: Optional[Iterable[str]] = None,
        marked_at: Optional[str] = None,
    ) -> List[str]:
        """
        Mark claims citing a changed source page as ``stale``.

        Only ``verified`` and ``unverified`` claims are moved; the prior status
        is kept in ``previous_status``. Claims already stale get their stale
        markers refreshed. Ids in ``keep_ids`` (claims re-extracted from the new
        content) are left alone.

        Returns:
            Ids of the claims newly marked stale
        """
        keep = set(keep_ids or [])
        marked_at = marked_at or utc_now_iso()
        invalidated = []
        for claim in self.claims:
            if claim["claim_id"] in keep:
                continue
            cited = any(c.get("source_page_id") == source_page_id for c in claim.get("citations") or [])
            if not cited:
                continue
            status = claim.get("status") or "unverified"
            if status in ("verified", "unverified"):
                claim["previous_status"] = status
                claim["status"] = "stale"
                invalidated.append(claim["claim_id"])
            elif status != "stale":
                continue
            claim["stale_marked_at"] = marked_at
            claim["stale_due_to_source_hash"] = new_hash
        if invalidated:
            logger.info(f"Marked {len(invalidated)} claims stale for changed source {source_page_id}")
        return invalidated

    def integrity_errors(self) -> List[str]:
        """Index mismatches and dangling claim citations, as error strings."""
        errors = self.check_indexes()
        for claim_id, source_page_id in self.dangling_citations():
            errors.append(f"Claim {claim_id} cites missing source page {source_page_id}")
        return errors

    def dangling_citations(self) -> List[Tuple[str, str]]:
        """(claim_id, source_page_id) pairs whose source page is missing."""
        dangling = []
        for claim in self.claims:
            for citation in claim.get("citations") or []:
                source_page_id = citation.get("source_page_id")
                if source_page_id and self.get_source_page(source_page_id) is None:
                    dangling.append((claim["claim_id"], source_page_id))
        return dangling

    def stats(self) -> Dict[str, int]:
        return {collection: len(self.data[collection]) for collection in ENTITY_COLLECTIONS}
