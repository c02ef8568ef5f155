from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Optional, Union

from .config import Settings
from .fetchers import FetchOrchestrator, overall_status
from .merge import MergeEngine, article_key, sort_articles
from .message import format_fetch_message
from .models import Article, ArticleState, FetchOutcome, FetchStatus, Source
from .sources import SourceRegistry
from .store import ArticleSnapshotCache


class NewsPipeline:
    def __init__(
        self,
        settings: Settings,
        registry: SourceRegistry,
        orchestrator: FetchOrchestrator,
        engine: MergeEngine,
        snapshot_cache: Optional[ArticleSnapshotCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.orchestrator = orchestrator
        self.engine = engine
        self.snapshot_cache = snapshot_cache
        self.logger = logger or logging.getLogger(__name__)

    @property
    def articles(self) -> list[Article]:
        return self.engine.articles

    def load_persisted_state(self) -> None:
        self.engine.store.load()
        if self.snapshot_cache is None:
            return

        restored = []
        for article in self.snapshot_cache.load():
            state = self.engine.store.get(article_key(article))
            if state is not None:
                article = replace(article, **state.flags())
            restored.append(article)

        self.engine.replace_articles(sort_articles(restored, self.settings.sort_order))
        self.logger.info(
            "persisted state loaded: articles=%s states=%s",
            len(restored),
            len(self.engine.store),
        )

    async def fetch_and_merge(self, sources: Optional[Sequence[Source]] = None) -> FetchOutcome:
        if sources is None:
            sources = self.registry.get_enabled_sources()
        sources = list(sources)

        if not sources:
            self.logger.info("no enabled sources, skipping fetch")
            return FetchOutcome(articles=list(self.engine.articles), status=FetchStatus.SUCCESS)

        results = await self.orchestrator.fetch_all(sources)
        status = overall_status(results)
        failed = [result.source_name for result in results if not result.ok]

        if status is FetchStatus.ERROR:
            outcome = FetchOutcome(
                articles=list(self.engine.articles),
                status=status,
                results=results,
                failed_sources=failed,
            )
            self.logger.error("all sources failed: sources=%s", ", ".join(failed))
            return replace(outcome, message=format_fetch_message(outcome))

        incoming = [article for result in results if result.ok for article in result.articles]
        merged = self.engine.merge_incoming(incoming)
        articles = self.engine.replace_articles(sort_articles(merged, self.settings.sort_order))

        for source, result in zip(sources, results):
            if result.ok:
                self.registry.touch(source.id)

        if self.snapshot_cache is not None:
            self.snapshot_cache.save(articles)

        outcome = FetchOutcome(
            articles=list(articles),
            status=status,
            results=results,
            failed_sources=failed,
        )
        if status is FetchStatus.PARTIAL:
            self.logger.warning("some sources failed: sources=%s", ", ".join(failed))
        return replace(outcome, message=format_fetch_message(outcome))

    def run_once(self, sources: Optional[Sequence[Source]] = None) -> FetchOutcome:
        return asyncio.run(self.fetch_and_merge(sources))

    def mutate_state(self, key: str, **flags: bool) -> ArticleState:
        return self._saved(self.engine.mutate_state(key, **flags))

    def mark_read(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.mark_read(target))

    def toggle_read(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.toggle_read(target))

    def toggle_bookmark(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.toggle_bookmark(target))

    def toggle_saved_for_later(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.toggle_saved_for_later(target))

    def skip(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.skip(target))

    def undo_skip(self, target: Union[Article, str]) -> ArticleState:
        return self._saved(self.engine.undo_skip(target))

    def _saved(self, state: ArticleState) -> ArticleState:
        if self.snapshot_cache is not None:
            self.snapshot_cache.save(self.engine.articles)
        return state
