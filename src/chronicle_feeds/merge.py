from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Optional, Union

from .models import STATE_FLAGS, Article, ArticleState
from .store import StateStore

StateLookup = Callable[[str], Optional[ArticleState]]

SORT_ORDERS = ("desc", "asc")
FILTER_TYPES = ("all", "unread", "read", "bookmarked", "saved", "skipped")


def identity_key(url: Optional[str], source_name: str, title: str) -> str:
    """Return the cross-fetch identity of an article.

    The trimmed, lower-cased URL when there is one, otherwise
    ``source_name-title``. Two different articles with the same title from
    one source and no link share a key.
    """
    link = (url or "").strip()
    if link:
        return link.lower()
    return f"{source_name}-{title}".strip().lower()


def article_key(article: Article) -> str:
    return identity_key(article.url, article.source_name, article.title)


def _with_flags(article: Article, flags: dict[str, bool]) -> Article:
    if article.state_flags() == flags:
        return article
    return replace(article, **flags)


def _default_flags() -> dict[str, bool]:
    return {name: False for name in STATE_FLAGS}


def merge(
    existing: Sequence[Article],
    incoming: Iterable[Article],
    state_lookup: Optional[StateLookup] = None,
) -> list[Article]:
    """Reconcile a fresh fetch with the known article set.

    Incoming articles that match a known key keep their new descriptive
    fields and take the known state flags. Unknown ones take persisted state
    from ``state_lookup`` when there is any, defaults otherwise. Known
    articles missing from ``incoming`` are kept as they are.

    The result lists new articles, then refreshed ones, then carry-overs.
    """
    known: dict[str, Article] = {}
    for article in existing:
        known.setdefault(article_key(article), article)

    added: list[Article] = []
    refreshed: list[Article] = []
    seen: set[str] = set()

    for article in incoming:
        key = article_key(article)
        if key in seen:
            continue
        seen.add(key)

        previous = known.get(key)
        if previous is not None:
            refreshed.append(_with_flags(article, previous.state_flags()))
            continue

        persisted = state_lookup(key) if state_lookup else None
        if persisted is not None:
            added.append(_with_flags(article, persisted.flags()))
        else:
            added.append(_with_flags(article, _default_flags()))

    carried = [article for key, article in known.items() if key not in seen]
    return added + refreshed + carried


def sort_articles(articles: Iterable[Article], order: str = "desc") -> list[Article]:
    if order not in SORT_ORDERS:
        raise ValueError(f"Unsupported sort order '{order}'. Available: {', '.join(SORT_ORDERS)}")
    return sorted(articles, key=lambda article: article.published_at, reverse=order == "desc")


def filter_articles(articles: Iterable[Article], filter_type: str = "all") -> list[Article]:
    if filter_type == "all":
        return list(articles)
    if filter_type == "unread":
        return [article for article in articles if not article.is_read]
    if filter_type == "read":
        return [article for article in articles if article.is_read]
    if filter_type == "bookmarked":
        return [article for article in articles if article.is_bookmarked]
    if filter_type == "saved":
        return saved_for_later(articles)
    if filter_type == "skipped":
        return [article for article in articles if article.is_skipped]
    raise ValueError(f"Unsupported filter '{filter_type}'. Available: {', '.join(FILTER_TYPES)}")


def saved_for_later(articles: Iterable[Article]) -> list[Article]:
    return [article for article in articles if article.is_saved_for_later and not article.is_skipped]


def filter_by_date_range(
    articles: Iterable[Article],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Article]:
    selected = []
    for article in articles:
        if start is not None and article.published_at < start:
            continue
        if end is not None and article.published_at > end:
            continue
        selected.append(article)
    return selected


class MergeEngine:
    """Owns the canonical article list and every write of article state.

    Not thread-safe; callers serialize merges and mutations.
    """

    def __init__(self, store: StateStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.articles: list[Article] = []

    def replace_articles(self, articles: Iterable[Article]) -> list[Article]:
        self.articles = list(articles)
        return self.articles

    def merge_incoming(self, incoming: Iterable[Article]) -> list[Article]:
        incoming = list(incoming)
        merged = merge(self.articles, incoming, state_lookup=self.store.get)
        self.logger.info(
            "merge complete: existing=%s incoming=%s result=%s",
            len(self.articles),
            len(incoming),
            len(merged),
        )
        self.articles = merged
        return merged

    def find(self, key: str) -> Optional[Article]:
        for article in self.articles:
            if article_key(article) == key:
                return article
        return None

    def mutate_state(self, key: str, **flags: bool) -> ArticleState:
        unknown = set(flags) - set(STATE_FLAGS)
        if unknown:
            raise ValueError(f"Unknown article state fields: {', '.join(sorted(unknown))}")

        updated: list[Article] = []
        snapshot: Optional[dict[str, bool]] = None
        for article in self.articles:
            if article_key(article) == key:
                article = replace(article, **flags)
                snapshot = article.state_flags()
            updated.append(article)
        self.articles = updated

        if snapshot is None:
            self.logger.debug("state change for article not in memory: key=%s", key)
            snapshot = dict(flags)

        error = self.store.put(key, **snapshot)
        if error is not None:
            self.logger.warning("article state not persisted: key=%s error=%s", key, error)
        state = self.store.get(key)
        if state is None:
            # Write dropped by the store; report what the session holds.
            current = self.find(key)
            base = current.state_flags() if current else _default_flags()
            base.update(flags)
            state = ArticleState(**base)
        return state

    def _resolve(self, target: Union[Article, str]) -> tuple[str, Optional[Article]]:
        if isinstance(target, Article):
            key = article_key(target)
            return key, self.find(key) or target
        return target, self.find(target)

    def _toggle(self, target: Union[Article, str], flag: str) -> ArticleState:
        key, article = self._resolve(target)
        if article is None:
            current = self.store.get(key)
            value = bool(getattr(current, flag)) if current else False
        else:
            value = bool(getattr(article, flag))
        return self.mutate_state(key, **{flag: not value})

    def mark_read(self, target: Union[Article, str]) -> ArticleState:
        key, _ = self._resolve(target)
        return self.mutate_state(key, is_read=True)

    def toggle_read(self, target: Union[Article, str]) -> ArticleState:
        return self._toggle(target, "is_read")

    def toggle_bookmark(self, target: Union[Article, str]) -> ArticleState:
        return self._toggle(target, "is_bookmarked")

    def toggle_saved_for_later(self, target: Union[Article, str]) -> ArticleState:
        return self._toggle(target, "is_saved_for_later")

    def skip(self, target: Union[Article, str]) -> ArticleState:
        key, _ = self._resolve(target)
        return self.mutate_state(key, is_skipped=True)

    def undo_skip(self, target: Union[Article, str]) -> ArticleState:
        key, _ = self._resolve(target)
        return self.mutate_state(key, is_skipped=False)
