"""Abstract page-fetch adapter with per-URL overrides, retry and empty-content policy."""

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import overrides

logger = logging.getLogger(__name__)

# Defaults (can be overridden by config/crawl.yaml)
DEFAULT_FETCH_CONFIG: Dict[str, Any] = {
    "require_firecrawl": True,
    "allow_http_doc_download": False,
    "timeout_ms": 60000,
    "max_retries": 2,
    "retry_delay_ms": 2000,
    "max_file_size_bytes": 50 * 1024 * 1024,
    "api_url": "https://api.firecrawl.dev",
    "map_limit": 500,
}

DEFAULT_CRAWL_CONFIG: Dict[str, Any] = {
    "seed_source": "public_services",
    "category": "public_services",
    "refresh": "changed",
    "max_depth": 4,
    "max_pages": 300,
    "rate_limit_ms": 1500,
    "sitemap_child_limit": 5,
    "download_documents": True,
}

DEFAULT_PATHS_CONFIG: Dict[str, Any] = {
    "kb_dir": "kb",
    "kb_file": "bangladesh_government_services_kb_v3.json",
    "seeds_file": "seeds/public_services_seeds.json",
    "snapshots_dir": "snapshots",
    "documents_dir": "documents",
    "runs_dir": "runs",
    "published_dir": "published",
    "crawl_state_file": "crawl_state.json",
}

DEFAULT_SCRAPE_OPTIONS: Dict[str, Any] = {
    "formats": ["markdown"],
    "onlyMainContent": True,
    "removeBase64Images": True,
}

BINARY_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".rar")

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".zip": "application/zip",
    ".rar": "application/vnd.rar",
}

USER_AGENT = "Mozilla/5.0 (compatible; InfobaseBot/1.0)"

# Session-level retry for network transients
_retry = Retry(total=1, allowed_methods=["GET"], backoff_factor=1, status_forcelist=[502, 503, 504])
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))
_session.mount("http://", HTTPAdapter(max_retries=_retry))
_session.headers.update({"User-Agent": USER_AGENT})


def load_crawl_config() -> Dict[str, Any]:
    """
    Load crawl configuration from config/crawl.yaml.

    Returns:
        Config dict or empty dict if file not found
    """
    config_paths = [
        "config/crawl.yaml",
        os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config/crawl.yaml"),
    ]

    for path in config_paths:
        if os.path.exists(path):
            try:
                with open(path, "r") as f:
                    return yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load crawl config from {path}: {e}")

    return {}


def get_config_section(section: str) -> Dict[str, Any]:
    """
    Get one config section, merged over its built-in defaults.

    Args:
        section: ``fetch``, ``crawl`` or ``paths``

    Returns:
        Dict of settings for that section
    """
    defaults = {
        "fetch": DEFAULT_FETCH_CONFIG,
        "crawl": DEFAULT_CRAWL_CONFIG,
        "paths": DEFAULT_PATHS_CONFIG,
    }[section]
    merged = dict(defaults)
    merged.update(load_crawl_config().get(section) or {})
    return merged


class FetchError(Exception):
    """Base class for fetch adapter failures."""
    def __init__(self, target: str, message: str, original_error: Optional[Exception] = None):
        self.target = target
        self.message = message
        self.original_error = original_error
        super().__init__(f"{target}: {message}")


class FetchUnavailableError(FetchError):
    """Raised when the fetch capability is required but not configured."""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(operation, "fetch capability is required but not available")


class MapError(FetchError):
    """Raised when site mapping fails for a domain."""
    def __init__(self, domain: str, original_error: Optional[Exception] = None):
        self.domain = domain
        detail = str(original_error) if original_error else "unknown error"
        super().__init__(domain, f"map failed: {detail}", original_error)


class ScrapeError(FetchError):
    """Raised when a page scrape fails or returns nothing usable."""
    def __init__(self, url: str, reason: str, original_error: Optional[Exception] = None):
        self.url = url
        self.reason = reason
        super().__init__(url, f"scrape failed: {reason}", original_error)


class HttpDownloadNotAllowedError(FetchError):
    """Raised when a binary needs direct HTTP download but the flag is off."""
    def __init__(self, url: str):
        self.url = url
        super().__init__(url, "direct HTTP document download is disabled (use --allow-http-doc-download true)")


class FileTooLargeError(FetchError):
    """Raised when a binary download exceeds the size limit."""
    def __init__(self, url: str, max_bytes: int):
        self.url = url
        self.max_bytes = max_bytes
        super().__init__(url, f"file exceeds {max_bytes} bytes")


@dataclass
class ScrapeResult:
    url: str
    markdown: str = ""
    html: Optional[str] = None
    raw_html: Optional[str] = None
    title: Optional[str] = None
    override_applied: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BinaryDocument:
    url: str
    content: bytes
    content_type: str
    filename: str
    used_http_fallback: bool = False


def get_extension(url: str) -> str:
    try:
        return PurePosixPath(urlparse(url).path).suffix.lower()
    except ValueError:
        return ""


def is_binary_document_url(url: str) -> bool:
    return get_extension(url) in BINARY_EXTENSIONS


def http_download(url: str, timeout_s: float, max_file_size: int) -> bytes:
    """
    Stream a file over plain HTTP, aborting once it grows past ``max_file_size``.

    Raises:
        FileTooLargeError: Declared or streamed size above the limit
        FetchError: Transport or HTTP status failure
    """
    try:
        with _session.get(url, timeout=(10, timeout_s), stream=True) as response:
            response.raise_for_status()
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_file_size:
                raise FileTooLargeError(url, max_file_size)

            chunks: List[bytes] = []
            total = 0
            for chunk in response.iter_content(chunk_size=65536):
                total += len(chunk)
                if total > max_file_size:
                    raise FileTooLargeError(url, max_file_size)
                chunks.append(chunk)
            return b"".join(chunks)
    except requests.RequestException as e:
        raise FetchError(url, f"HTTP download failed: {e}", e) from e


def http_get_text(url: str, timeout_s: float = 15) -> Optional[str]:
    """
    Best-effort GET for small text resources (robots.txt, sitemaps).

    Returns:
        Response text, or None on any transport or status failure
    """
    try:
        response = _session.get(url, timeout=(10, timeout_s))
        response.raise_for_status()
        return response.text
    except requests.RequestException as e:
        logger.debug(f"GET {url} failed: {e}")
        return None


class BaseFetchAdapter(ABC):
    """
    Abstract fetch capability with built-in retry logic.

    Subclasses implement the raw backend calls; this class layers on the
    per-URL override table, constant-delay retries for unclassified errors,
    the empty-content policy and the binary download policy.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        merged = get_config_section("fetch")
        merged.update(config or {})
        self.config = merged
        self.require_firecrawl = bool(merged["require_firecrawl"])
        self.allow_http_doc_download = bool(merged["allow_http_doc_download"])
        self.timeout_ms = int(merged["timeout_ms"])
        self.max_retries = int(merged["max_retries"])
        self.retry_delay_ms = int(merged["retry_delay_ms"])
        self.max_file_size = int(merged["max_file_size_bytes"])
        self.map_limit = int(merged["map_limit"])

    @abstractmethod
    def is_available(self, operation: str = "scrape") -> bool:
        """Whether the backend can serve ``scrape`` / ``map`` calls."""

    @abstractmethod
    def _scrape_impl(self, url: str, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Internal scrape implementation - to be overridden by subclasses.

        Returns:
            Dict with any of markdown, html, rawHtml, metadata/title
        """

    @abstractmethod
    def _map_impl(self, url: str, options: Dict[str, Any]) -> Any:
        """Internal map implementation returning a list or a dict with links/urls."""

    def _fetch_binary_impl(self, url: str) -> Optional[bytes]:
        """Rich-fetch attempt for a binary document; None when unsupported."""
        return None

    def build_scrape_options(self, url: str, options: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        """Defaults, then caller options, then the URL's override."""
        base = dict(DEFAULT_SCRAPE_OPTIONS)
        base["timeout"] = self.timeout_ms
        for key, value in (options or {}).items():
            if key in overrides.ALLOWED_OPTION_KEYS and value is not None:
                base[key] = value
        return overrides.apply_override(url, base)

    def scrape(self, url: str, options: Optional[Dict[str, Any]] = None, allow_empty: bool = False) -> ScrapeResult:
        """
        Scrape a page with retries.

        Args:
            url: Page URL
            options: Caller scrape options (whitelisted keys only)
            allow_empty: Accept a response with no markdown or HTML

        Returns:
            ScrapeResult with postprocessed markdown

        Raises:
            FetchUnavailableError: Backend not configured
            ScrapeError: Backend failure after retries, or empty content
        """
        if not self.is_available("scrape"):
            raise FetchUnavailableError("scrape")

        scrape_options, override = self.build_scrape_options(url, options)
        allow_empty = allow_empty or is_binary_document_url(url)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                raw = self._scrape_impl(url, scrape_options)
                if raw is None:
                    raise ScrapeError(url, "backend returned no result")

                markdown = raw.get("markdown") or ""
                html = raw.get("html")
                raw_html = raw.get("rawHtml")
                if not allow_empty and not markdown and not html and not raw_html:
                    raise ScrapeError(url, "empty content")

                metadata = raw.get("metadata") or {}
                return ScrapeResult(
                    url=url,
                    markdown=overrides.postprocess_markdown(url, markdown),
                    html=html,
                    raw_html=raw_html,
                    title=raw.get("title") or metadata.get("title"),
                    override_applied=override is not None,
                    metadata=metadata,
                )
            except (FetchUnavailableError, ScrapeError):
                raise
            except Exception as e:
                last_error = e
                if attempt < self.max_retries:
                    logger.warning(f"Scrape attempt {attempt + 1} failed for {url}, retrying in {self.retry_delay_ms}ms: {e}")
                    time.sleep(self.retry_delay_ms / 1000)
                else:
                    logger.error(f"Scrape failed after {attempt + 1} attempts for {url}: {e}")

        raise ScrapeError(url, str(last_error) if last_error else "unknown scrape error", last_error)

    def map_site(self, url: str, limit: Optional[int] = None, include_subdomains: bool = False) -> List[str]:
        """
        List URLs discovered for a site.

        Raises:
            FetchUnavailableError: Backend not configured
            MapError: Backend failure or an unexpected response shape
        """
        if not self.is_available("map"):
            raise FetchUnavailableError("map")

        domain = urlparse(url).hostname or url
        options = {"limit": limit or self.map_limit, "includeSubdomains": include_subdomains}
        try:
            result = self._map_impl(url, options)
            if result is None:
                raise ValueError("map returned no result")
            if isinstance(result, list):
                links = result
            elif isinstance(result, dict) and isinstance(result.get("links"), list):
                links = result["links"]
            elif isinstance(result, dict) and isinstance(result.get("urls"), list):
                links = result["urls"]
            else:
                raise ValueError("map returned unexpected format")
        except FetchUnavailableError:
            raise
        except Exception as e:
            raise MapError(domain, e) from e

        urls = []
        for link in links:
            if isinstance(link, dict):
                link = link.get("url")
            if isinstance(link, str) and link:
                urls.append(link)
        return urls

    def fetch_binary(self, url: str) -> BinaryDocument:
        """
        Download a binary document.

        Rich fetch is tried first; direct HTTP is used only when
        ``allow_http_doc_download`` is set.

        Raises:
            FetchUnavailableError: Backend required but missing
            HttpDownloadNotAllowedError: HTTP fallback needed but disabled
            FileTooLargeError: Download above ``max_file_size``
        """
        extension = get_extension(url)
        content_type = MIME_TYPES.get(extension, "application/octet-stream")
        filename = PurePosixPath(urlparse(url).path).name or f"document{extension or '.bin'}"

        if self.is_available("scrape"):
            try:
                content = self._fetch_binary_impl(url)
                if content:
                    return BinaryDocument(url=url, content=content, content_type=content_type, filename=filename)
                logger.info(f"Rich fetch returned no binary content for {url}")
            except FetchError as e:
                logger.warning(f"Rich binary fetch failed for {url}: {e}")
        elif self.require_firecrawl:
            raise FetchUnavailableError("binary document fetch")

        if not self.allow_http_doc_download:
            raise HttpDownloadNotAllowedError(url)

        logger.warning(f"Using HTTP fallback for binary download: {url}")
        content = http_download(url, self.timeout_ms / 1000, self.max_file_size)
        return BinaryDocument(url=url, content=content, content_type=content_type,
                              filename=filename, used_http_fallback=True)

    def validate_for_crawl(self) -> Dict[str, Any]:
        """
        Check that a strict-mode crawl can proceed.

        Raises:
            FetchUnavailableError: Required map/scrape capability missing
        """
        if not self.require_firecrawl:
            return {"valid": True, "message": "Fetch backend not required - proceeding without validation"}

        missing = [op for op in ("map", "scrape") if not self.is_available(op)]
        if missing:
            raise FetchUnavailableError(f"required operations missing: {', '.join(missing)}")
        return {"valid": True, "message": "Fetch backend validated for crawl"}

    def get_status(self) -> Dict[str, Any]:
        return {
            "scrape_available": self.is_available("scrape"),
            "map_available": self.is_available("map"),
            "require_firecrawl": self.require_firecrawl,
            "allow_http_doc_download": self.allow_http_doc_download,
            "timeout_ms": self.timeout_ms,
            "max_retries": self.max_retries,
        }
