"""Firecrawl HTTP API fetch adapter (scrape + map)."""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base_fetcher import BaseFetchAdapter
from ..config.secrets import MissingAPIKeyError, get_firecrawl_api_url, get_firecrawl_key

logger = logging.getLogger(__name__)

# Connect timeout in seconds; read timeout follows the scrape timeout
CONNECT_TIMEOUT = 10

# Leading bytes of PDF, OOXML (zip) and legacy OLE office files
BINARY_SIGNATURES = (b"%PDF-", b"PK\x03\x04", b"\xd0\xcf\x11\xe0")

# Session-level retry for gateway errors and rate limiting
_retry = Retry(
    total=2,
    allowed_methods=["GET", "POST"],
    backoff_factor=1,
    status_forcelist=[429, 502, 503, 504],
    raise_on_status=False,
)
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))
_session.mount("http://", HTTPAdapter(max_retries=_retry))


class FirecrawlAdapter(BaseFetchAdapter):
    """Fetch adapter backed by the Firecrawl v1 REST API."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, api_key: Optional[str] = None):
        super().__init__(config)
        self.api_url = (get_firecrawl_api_url(self.config.get("api_url")) or "").rstrip("/")
        if api_key is None:
            try:
                api_key = get_firecrawl_key()
            except MissingAPIKeyError as e:
                logger.warning(str(e))
                api_key = None
        self.api_key = api_key

    def is_available(self, operation: str = "scrape") -> bool:
        return bool(self.api_key and self.api_url) and operation in ("scrape", "map")

    def _post(self, endpoint: str, payload: Dict[str, Any], read_timeout: float) -> Dict[str, Any]:
        response = _session.post(
            f"{self.api_url}{endpoint}",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=(CONNECT_TIMEOUT, read_timeout),
        )
        response.raise_for_status()
        body = response.json()
        if not body.get("success", False):
            raise RuntimeError(f"Firecrawl {endpoint} error: {body.get('error', 'unknown error')}")
        return body

    def _scrape_impl(self, url: str, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = dict(options)
        payload["url"] = url
        read_timeout = (int(options.get("timeout", self.timeout_ms)) + int(options.get("waitFor", 0))) / 1000 + 10
        body = self._post("/v1/scrape", payload, read_timeout)
        return body.get("data")

    def _map_impl(self, url: str, options: Dict[str, Any]) -> Any:
        payload = dict(options)
        payload["url"] = url
        return self._post("/v1/map", payload, self.timeout_ms / 1000 + 10)

    def _fetch_binary_impl(self, url: str) -> Optional[bytes]:
        result = self.scrape(url, {"formats": ["rawHtml"]}, allow_empty=True)
        content = result.raw_html or ""
        try:
            data = content.encode("latin-1")
        except UnicodeEncodeError:
            logger.debug(f"Scrape of {url} returned decoded text, not document bytes")
            return None
        # Anything without a document signature (landing pages, parsed text) goes to the HTTP fallback
        if not data.startswith(BINARY_SIGNATURES):
            return None
        return data
