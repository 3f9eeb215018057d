"""
Product Reconciliation System — Document Transport

Retrieves product pages. The production transport shares one httpx
AsyncClient across a batch; the in-memory transport serves canned pages for
tests and local runs.
"""
from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Any, Optional

import httpx

from models import FetchedDocument

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The network call for a page could not complete."""

# ============================================================
# Embedded Product Object
# ============================================================

_INITIAL_DATA_RE = re.compile(r'window\.initialData\s*=\s*(?=\{)')
_DECODER = json.JSONDecoder()

PRODUCT_DATA_KEY = 'product/dataProduct'


def parse_embedded_product(html: str) -> Optional[dict[str, Any]]:
    """The `product/dataProduct` product object assigned to window.initialData, if any."""
    if not html or 'initialData' not in html:
        return None
    m = _INITIAL_DATA_RE.search(html)
    if not m:
        return None
    try:
        data, _ = _DECODER.raw_decode(html, m.end())
    except json.JSONDecodeError as e:
        logger.debug("initialData is not valid JSON: %s", e)
        return None
    try:
        product = data[PRODUCT_DATA_KEY]['data']['product']
    except (KeyError, TypeError):
        return None
    return product if isinstance(product, dict) else None

# ============================================================
# Transport Interface
# ============================================================

class DocumentTransport:
    """
    Abstract page source. fetch_document returns any HTTP status as a
    document and raises TransportError only when no response was received.
    """

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    async def fetch_document(self, url: str) -> FetchedDocument:
        raise NotImplementedError

    async def __aenter__(self) -> DocumentTransport:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

# ============================================================
# httpx Implementation
# ============================================================

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'de-DE,de;q=0.9,en;q=0.8',
}


class HttpxTransport(DocumentTransport):

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.headers = dict(DEFAULT_HEADERS)
        if user_agent:
            self.headers['User-Agent'] = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> HttpxTransport:
        return cls(timeout=settings.fetch_timeout_seconds,
                   user_agent=settings.user_agent, **kwargs)

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
            logger.info("HTTP session opened (timeout=%ss)", self.timeout)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP session closed")

    async def fetch_document(self, url: str) -> FetchedDocument:
        if self._client is None:
            await self.open()
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise TransportError(f"{url}: {type(e).__name__}: {e}") from e

        final_url = str(response.url)
        if response.status_code != 200:
            logger.info("%s -> HTTP %s", url, response.status_code)
            return FetchedDocument(url=final_url, status_code=response.status_code)

        html = response.text
        return FetchedDocument(
            url=final_url,
            status_code=200,
            html=html,
            embedded_product=parse_embedded_product(html),
        )

# ============================================================
# In-Memory Implementation (for testing / local dev)
# ============================================================

class InMemoryTransport(DocumentTransport):
    """Serves registered pages by URL; anything else is a 404."""

    def __init__(
        self,
        pages: Optional[dict[str, str]] = None,
        failures: Optional[set[str]] = None,
        delay: float = 0.0,
    ):
        self.pages: dict[str, tuple[int, str]] = {
            url: (200, html) for url, html in (pages or {}).items()
        }
        self.failures = set(failures or ())
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._open = False

    def add_page(self, url: str, html: str, status_code: int = 200) -> None:
        self.pages[url] = (status_code, html)

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def fetch_document(self, url: str) -> FetchedDocument:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if url in self.failures:
                raise TransportError(f"{url}: connection refused")
            status_code, html = self.pages.get(url, (404, ''))
            if status_code != 200:
                return FetchedDocument(url=url, status_code=status_code)
            return FetchedDocument(
                url=url, status_code=200, html=html,
                embedded_product=parse_embedded_product(html),
            )
        finally:
            self.in_flight -= 1
