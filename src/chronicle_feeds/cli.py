from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

import requests

from .config import Settings
from .fetchers import FeedFetcher, FetchOrchestrator
from .merge import FILTER_TYPES, SORT_ORDERS, MergeEngine, filter_articles, sort_articles
from .message import format_article_line
from .models import FetchStatus
from .parsers import FeedParser
from .pipeline import NewsPipeline
from .sources import SourceRegistry
from .store import ArticleSnapshotCache, SQLiteBackend, StateStore

STATE_ACTIONS = (
    ("mark_read", "mark_read"),
    ("toggle_read", "toggle_read"),
    ("toggle_bookmark", "toggle_bookmark"),
    ("toggle_saved", "toggle_saved_for_later"),
    ("skip", "skip"),
    ("undo_skip", "undo_skip"),
)


def build_pipeline(settings: Settings, logger: logging.Logger) -> NewsPipeline:
    backend = SQLiteBackend(settings.state_db_path, max_bytes=settings.storage_max_bytes)
    registry = SourceRegistry(backend)
    if settings.sources_file and settings.sources_file.exists():
        added = registry.load_file(settings.sources_file)
        if added:
            logger.info("sources imported: file=%s added=%s", settings.sources_file, added)

    session = requests.Session()
    fetcher = FeedFetcher(
        timeout_sec=settings.request_timeout_sec,
        user_agent=settings.request_user_agent,
        proxy_url=settings.feed_proxy_url,
        session=session,
    )
    orchestrator = FetchOrchestrator(
        fetcher=fetcher,
        parser=FeedParser(),
        max_concurrency=settings.max_concurrent_fetches,
    )
    store = StateStore(backend, max_items=settings.max_state_items)
    return NewsPipeline(
        settings=settings,
        registry=registry,
        orchestrator=orchestrator,
        engine=MergeEngine(store),
        snapshot_cache=ArticleSnapshotCache(backend, max_items=settings.snapshot_max_items),
        logger=logger,
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch, merge and track articles from RSS and Atom feeds")
    parser.add_argument("--config-file", default="config.ini", help="Path to config.ini file")
    parser.add_argument("--env-file", default=".env", help="Path to .env file")
    parser.add_argument("--loop", action="store_true", help="Keep fetching with interval")
    parser.add_argument("--interval-sec", type=int, default=None, help="Loop interval in seconds")
    parser.add_argument("--no-fetch", action="store_true", help="Use cached articles only")
    parser.add_argument("--filter", choices=FILTER_TYPES, default="all", help="Which articles to list")
    parser.add_argument("--sort-order", choices=SORT_ORDERS, default=None, help="Override SORT_ORDER")
    parser.add_argument("--limit", type=int, default=20, help="Max articles to list (0 lists none)")
    parser.add_argument("--mark-read", metavar="KEY", default=None, help="Mark the article with KEY as read")
    parser.add_argument("--toggle-read", metavar="KEY", default=None, help="Flip the read flag of KEY")
    parser.add_argument("--toggle-bookmark", metavar="KEY", default=None, help="Flip the bookmark flag of KEY")
    parser.add_argument("--toggle-saved", metavar="KEY", default=None, help="Flip the saved-for-later flag of KEY")
    parser.add_argument("--skip", metavar="KEY", default=None, help="Skip the article with KEY")
    parser.add_argument("--undo-skip", metavar="KEY", default=None, help="Undo skipping KEY")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def _apply_state_actions(args: argparse.Namespace, pipeline: NewsPipeline, logger: logging.Logger) -> None:
    for arg_name, method_name in STATE_ACTIONS:
        key = getattr(args, arg_name)
        if not key:
            continue
        state = getattr(pipeline, method_name)(key.strip().lower())
        logger.info(
            "state updated: key=%s read=%s bookmarked=%s saved=%s skipped=%s",
            key,
            state.is_read,
            state.is_bookmarked,
            state.is_saved_for_later,
            state.is_skipped,
        )


def _print_articles(args: argparse.Namespace, pipeline: NewsPipeline, sort_order: str) -> None:
    if args.limit <= 0:
        return
    selected = filter_articles(sort_articles(pipeline.articles, sort_order), args.filter)
    for article in selected[: args.limit]:
        print(format_article_line(article))


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("chronicle_feeds")

    settings = Settings.from_files(
        config_file=Path(args.config_file),
        env_file=Path(args.env_file),
    )
    if args.interval_sec is not None:
        settings.run_interval_sec = args.interval_sec
    if args.sort_order is not None:
        settings.sort_order = args.sort_order

    settings.ensure_dirs()

    pipeline = build_pipeline(settings, logger)
    pipeline.load_persisted_state()
    _apply_state_actions(args, pipeline, logger)

    if args.no_fetch:
        _print_articles(args, pipeline, settings.sort_order)
        return 0

    while True:
        outcome = pipeline.run_once()
        logger.info(
            "run complete: status=%s articles=%s failed=%s",
            outcome.status.value,
            len(outcome.articles),
            len(outcome.failed_sources),
        )
        if outcome.message:
            log = logger.error if outcome.status is FetchStatus.ERROR else logger.warning
            log(outcome.message)
        _print_articles(args, pipeline, settings.sort_order)

        if not args.loop:
            return 1 if outcome.status is FetchStatus.ERROR else 0

        time.sleep(settings.run_interval_sec)


if __name__ == "__main__":
    raise SystemExit(main())
