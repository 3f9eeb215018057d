"""
Product Reconciliation System — Fetch Orchestrator

Drives identifier → page → field set for a batch:
  1. Identifier dedup (first-seen order, trimmed, case-sensitive)
  2. Bounded parallelism: a fixed pool of workers over a shared cursor
  3. Per-identifier memoization, failures included (no automatic retry)
  4. Per-identifier lifecycle (pending → fetching → succeeded/partial/failed)

The transport session belongs to whoever created it; the orchestrator only
owns its cache, which is dropped when the batch closes.
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import quote

from models import ExtractedFieldSet, FetchStatus
from extraction_pipeline import DocumentExtractor
from transport import DocumentTransport, TransportError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.mymobase.com/de/p/"


@dataclass
class FetchStats:
    """Outcome counts over everything fetched in the current batch."""
    total: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            'total': self.total,
            'succeeded': self.succeeded,
            'partially_succeeded': self.partial,
            'failed': self.failed,
        }


def dedupe_identifiers(identifiers: Iterable) -> list[str]:
    cleaned = (str(i).strip() for i in identifiers if i is not None)
    return [i for i in dict.fromkeys(cleaned) if i]


class FetchOrchestrator:

    def __init__(
        self,
        transport: DocumentTransport,
        extractor: Optional[DocumentExtractor] = None,
        base_url: str = DEFAULT_BASE_URL,
        concurrency: int = 3,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.transport = transport
        self.extractor = extractor or DocumentExtractor()
        self.base_url = base_url
        self.concurrency = concurrency
        self._cache: dict[str, ExtractedFieldSet] = {}
        self._states: dict[str, FetchStatus] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    @classmethod
    def from_settings(cls, transport: DocumentTransport, settings, **kwargs) -> FetchOrchestrator:
        return cls(transport, base_url=settings.base_url,
                   concurrency=settings.fetch_concurrency, **kwargs)

    # ----------------------------------------------------------
    # Batch lifetime
    # ----------------------------------------------------------

    async def open(self) -> None:
        self._cache.clear()
        self._states.clear()

    async def close(self) -> None:
        logger.debug("Dropping fetch cache (%d entries)", len(self._cache))
        self._cache.clear()
        self._states.clear()

    async def __aenter__(self) -> FetchOrchestrator:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    def url_for(self, identifier: str) -> str:
        return self.base_url + quote(identifier.strip(), safe='')

    def state_of(self, identifier: str) -> Optional[FetchStatus]:
        """None while the identifier is still pending."""
        return self._states.get(identifier.strip())

    def cached(self, identifier: str) -> Optional[ExtractedFieldSet]:
        return self._cache.get(identifier.strip())

    async def fetch_one(self, identifier: str) -> ExtractedFieldSet:
        """Field set for one identifier; each identifier hits the transport at most once."""
        key = identifier.strip()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch_and_extract(key))
        self._inflight[key] = task
        try:
            return await task
        finally:
            self._inflight.pop(key, None)

    async def fetch_many(
        self,
        identifiers: Iterable,
        concurrency: Optional[int] = None,
    ) -> dict[str, ExtractedFieldSet]:
        """
        Fetch every unique identifier with at most `concurrency` in flight.

        Returns a field set for every unique identifier; a failed identifier
        is reported in its field set and never stops the others.
        """
        limit = concurrency if concurrency is not None else self.concurrency
        if limit < 1:
            raise ValueError("concurrency must be at least 1")

        unique = dedupe_identifiers(identifiers)
        if not unique:
            return {}

        start = time.monotonic()
        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(unique):
                identifier = unique[cursor]
                cursor += 1
                await self.fetch_one(identifier)

        await asyncio.gather(*(worker() for _ in range(min(limit, len(unique)))))

        stats = self.stats()
        logger.info(
            "Fetched %d identifiers in %.1fs (succeeded=%d partial=%d failed=%d)",
            len(unique), time.monotonic() - start,
            stats.succeeded, stats.partial, stats.failed)
        return {identifier: self._cache[identifier] for identifier in unique}

    def stats(self) -> FetchStats:
        stats = FetchStats(total=len(self._cache))
        for result in self._cache.values():
            if result.status == FetchStatus.SUCCEEDED:
                stats.succeeded += 1
            elif result.status == FetchStatus.PARTIAL:
                stats.partial += 1
            elif result.status == FetchStatus.FAILED:
                stats.failed += 1
        return stats

    # ----------------------------------------------------------
    # Internal
    # ----------------------------------------------------------

    async def _fetch_and_extract(self, identifier: str) -> ExtractedFieldSet:
        self._states[identifier] = FetchStatus.FETCHING
        url = self.url_for(identifier)
        logger.info("Fetching %s", url)
        try:
            document = await self.transport.fetch_document(url)
            result = await asyncio.to_thread(self.extractor.extract, document, identifier)
        except TransportError as e:
            logger.warning("%s: transport failure: %s", identifier, e)
            result = self._failure(identifier, url, str(e))
        except Exception as e:
            logger.exception("%s: unexpected error while fetching", identifier)
            result = self._failure(identifier, url, f"{type(e).__name__}: {e}")

        self._cache[identifier] = result
        self._states[identifier] = result.status
        return result

    @staticmethod
    def _failure(identifier: str, url: str, reason: str) -> ExtractedFieldSet:
        return ExtractedFieldSet(
            identifier=identifier, source_url=url,
            status=FetchStatus.FAILED, failure_reason=reason,
        )
