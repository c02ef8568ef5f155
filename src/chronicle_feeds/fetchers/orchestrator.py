from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import Optional

from ..errors import InvalidFormat, TransportError
from ..models import FetchResult, FetchStatus, Source
from ..parsers import FeedParser
from .http import FeedFetcher


def overall_status(results: Sequence[FetchResult]) -> FetchStatus:
    """Summarize per-source results.

    ``partial`` needs at least one failed source and at least one article
    from the sources that succeeded; failures with no articles anywhere are
    reported as ``error``.
    """
    failed = [result for result in results if not result.ok]
    if not failed:
        return FetchStatus.SUCCESS
    if any(result.articles for result in results if result.ok):
        return FetchStatus.PARTIAL
    return FetchStatus.ERROR


class FetchOrchestrator:
    def __init__(
        self,
        fetcher: FeedFetcher,
        parser: Optional[FeedParser] = None,
        max_concurrency: int = 0,
        logger: Optional[logging.Logger] = None,
    ):
        self.fetcher = fetcher
        self.logger = logger or logging.getLogger(__name__)
        self.parser = parser or FeedParser(logger=self.logger)
        self.max_concurrency = max(int(max_concurrency), 0)

    async def fetch_all(self, sources: Sequence[Source]) -> list[FetchResult]:
        if not sources:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        tasks = [asyncio.create_task(self.fetch_source(source, semaphore)) for source in sources]
        results = await asyncio.gather(*tasks)

        failed = [result.source_name for result in results if not result.ok]
        self.logger.info(
            "fetch complete: sources=%s failed=%s articles=%s",
            len(results),
            len(failed),
            sum(len(result.articles) for result in results),
        )
        return list(results)

    async def fetch_source(
        self,
        source: Source,
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> FetchResult:
        try:
            async with semaphore or contextlib.nullcontext():
                xml_text = await asyncio.to_thread(self.fetcher.get_text, source.url)
            articles = self.parser.parse(xml_text, source.name)
        except TransportError as exc:
            self.logger.warning("fetch failed: source=%s url=%s error=%s", source.name, source.url, exc)
            return FetchResult(
                source_name=source.name,
                articles=[],
                error=f"Failed to fetch RSS feed from {source.name}: {exc}",
            )
        except InvalidFormat as exc:
            self.logger.warning("parse failed: source=%s url=%s error=%s", source.name, source.url, exc)
            return FetchResult(
                source_name=source.name,
                articles=[],
                error=f"Failed to parse RSS feed from {source.name}: {exc}",
            )
        except Exception as exc:
            self.logger.exception("unexpected feed failure: source=%s url=%s", source.name, source.url)
            return FetchResult(
                source_name=source.name,
                articles=[],
                error=f"Failed to load RSS feed from {source.name}: {exc}",
            )

        self.logger.info("fetched feed: source=%s articles=%s", source.name, len(articles))
        return FetchResult(source_name=source.name, articles=articles)
