"""
Page snapshot storage.

Each fetched page is written once per day under
``<snapshots_dir>/<source_page_id>/<YYYY-MM-DD>/`` as ``page.md`` (plus
``page.html`` when raw HTML was fetched) and a ``meta.json`` carrying the
SHA256 of the markdown. Source pages reference snapshots by
``snapshots/<source_page_id>/<date>``; content is never inlined into the KB.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .identity import generate_hash
from ..run_utils import atomic_write_text, today_str, utc_now_iso, write_json

logger = logging.getLogger(__name__)

SNAPSHOTS_DIR = Path("kb/snapshots")


@dataclass
class SnapshotRecord:
    snapshot_ref: str
    content_hash: str
    written: bool = True


class SnapshotStore:
    """Content-addressed, per-day page snapshots."""

    def __init__(self, snapshots_dir: Path = SNAPSHOTS_DIR):
        self.snapshots_dir = Path(snapshots_dir)

    def _snapshot_path(self, source_page_id: str, date: str) -> Path:
        return self.snapshots_dir / source_page_id / date

    @staticmethod
    def make_ref(source_page_id: str, date: str) -> str:
        return f"snapshots/{source_page_id}/{date}"

    def put(
        self,
        source_page_id: str,
        url: str,
        markdown: str,
        html: Optional[str] = None,
        date: Optional[str] = None,
    ) -> SnapshotRecord:
        """
        Store a snapshot for today (or ``date``).

        A snapshot already written for the same day with the same content hash
        is left untouched.

        Args:
            source_page_id: Owning source page id
            url: Canonical URL of the page
            markdown: Page markdown (hashed)
            html: Optional raw HTML stored next to the markdown
            date: Override for the snapshot date (YYYY-MM-DD)

        Returns:
            SnapshotRecord with the snapshot_ref and content hash
        """
        date = date or today_str()
        markdown = markdown or ""
        content_hash = generate_hash(markdown)
        snapshot_path = self._snapshot_path(source_page_id, date)
        ref = self.make_ref(source_page_id, date)

        existing = self._read_meta(snapshot_path)
        if existing and existing.get("content_hash_sha256") == content_hash:
            logger.debug(f"Snapshot unchanged for {source_page_id} on {date}")
            return SnapshotRecord(snapshot_ref=ref, content_hash=content_hash, written=False)

        html_path = snapshot_path / "page.html"
        if html:
            atomic_write_text(html_path, html)
        elif html_path.exists():
            html_path.unlink()
        atomic_write_text(snapshot_path / "page.md", markdown)

        meta = {
            "canonical_url": url,
            "source_page_id": source_page_id,
            "fetched_at": utc_now_iso(),
            "content_hash_sha256": content_hash,
            "snapshot_date": date,
        }
        write_json(snapshot_path / "meta.json", meta)

        return SnapshotRecord(snapshot_ref=ref, content_hash=content_hash)

    def exists_today(self, source_page_id: str) -> bool:
        return (self._snapshot_path(source_page_id, today_str()) / "meta.json").exists()

    def list_dates(self, source_page_id: str) -> List[str]:
        """Snapshot dates for a page, oldest first."""
        page_dir = self.snapshots_dir / source_page_id
        if not page_dir.is_dir():
            return []
        return sorted(
            entry.name for entry in page_dir.iterdir()
            if entry.is_dir() and (entry / "meta.json").exists()
        )

    def get_hash(self, source_page_id: str) -> Optional[str]:
        """Content hash of the most recent snapshot, or None."""
        dates = self.list_dates(source_page_id)
        if not dates:
            return None
        meta = self._read_meta(self._snapshot_path(source_page_id, dates[-1]))
        return meta.get("content_hash_sha256") if meta else None

    def read(self, snapshot_ref: str) -> Optional[str]:
        """Return the stored markdown for a ``snapshots/<id>/<date>`` ref."""
        parts = snapshot_ref.split("/")
        if len(parts) != 3 or parts[0] != "snapshots":
            raise ValueError(f"Invalid snapshot_ref: {snapshot_ref}")
        md_path = self._snapshot_path(parts[1], parts[2]) / "page.md"
        if not md_path.exists():
            return None
        return md_path.read_text(encoding="utf-8")

    def verify(self, snapshot_ref: str) -> bool:
        """True if page.md still hashes to the value recorded in meta.json."""
        markdown = self.read(snapshot_ref)
        if markdown is None:
            return False
        _, source_page_id, date = snapshot_ref.split("/")
        meta = self._read_meta(self._snapshot_path(source_page_id, date))
        return bool(meta) and meta.get("content_hash_sha256") == generate_hash(markdown)

    @staticmethod
    def _read_meta(snapshot_path: Path) -> Optional[Dict[str, Any]]:
        meta_path = snapshot_path / "meta.json"
        if not meta_path.exists():
            return None
        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable snapshot meta {meta_path}: {e}")
            return None
