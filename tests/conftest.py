"""Shared fixtures: an in-memory fetch adapter for crawl tests."""

from typing import Any, Dict, Optional

import pytest

from src.ingest.base_fetcher import BaseFetchAdapter


class FakeFetchAdapter(BaseFetchAdapter):
    """
    Fetch adapter serving canned responses.

    ``pages`` maps URL -> scrape payload dict (or an exception to raise),
    ``site_maps`` maps start URL -> list of links, ``binaries`` maps URL -> bytes.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, Any]] = None,
        site_maps: Optional[Dict[str, Any]] = None,
        binaries: Optional[Dict[str, bytes]] = None,
        available: bool = True,
        config: Optional[Dict[str, Any]] = None,
    ):
        merged = {"retry_delay_ms": 0}
        merged.update(config or {})
        super().__init__(merged)
        self.pages = dict(pages or {})
        self.site_maps = dict(site_maps or {})
        self.binaries = dict(binaries or {})
        self.available = available
        self.scrape_calls = []
        self.map_calls = []

    def is_available(self, operation: str = "scrape") -> bool:
        return self.available

    def _scrape_impl(self, url, options):
        self.scrape_calls.append((url, dict(options)))
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        return page

    def _map_impl(self, url, options):
        self.map_calls.append((url, dict(options)))
        result = self.site_maps.get(url, [])
        if isinstance(result, Exception):
            raise result
        return result

    def _fetch_binary_impl(self, url):
        return self.binaries.get(url)


@pytest.fixture
def fake_adapter():
    """Factory for FakeFetchAdapter instances."""
    return FakeFetchAdapter
