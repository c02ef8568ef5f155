from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from chronicle_feeds.merge import (
    MergeEngine,
    article_key,
    filter_articles,
    filter_by_date_range,
    identity_key,
    merge,
    saved_for_later,
    sort_articles,
)
from chronicle_feeds.models import Article, ArticleState
from chronicle_feeds.store import MemoryBackend, StateStore

BASE_TIME = datetime(2026, 2, 7, tzinfo=timezone.utc)


def _article(
    url: str,
    title: str = "Title",
    source: str = "Source",
    hours: int = 0,
    **flags: bool,
) -> Article:
    return Article(
        id=f"{source}-1-{title}",
        title=title,
        description=f"about {title}",
        url=url,
        source_name=source,
        published_at=BASE_TIME + timedelta(hours=hours),
        **flags,
    )


def _keys(articles: list[Article]) -> list[str]:
    return [article_key(article) for article in articles]


def test_identity_key_prefers_normalized_url() -> None:
    assert identity_key("  HTTP://Example.com/A  ", "Src", "Title") == "http://example.com/a"
    assert identity_key("", "Src", "  Some Title ") == "src-  some title"
    assert identity_key("   ", " Src", "Title ") == "src-title"
    assert identity_key(None, "Src", "Title") == "src-title"


def test_identity_fallback_collides_for_same_title_without_url() -> None:
    first = _article("", title="Daily update")
    second = replace(_article("", title="Daily update"), description="different text")

    assert article_key(first) == article_key(second)
    assert len(merge([first], [second])) == 1


def test_merge_keeps_existing_state_and_refreshes_metadata() -> None:
    existing = [_article("http://x/1", title="Old title", is_read=True, is_bookmarked=True)]
    incoming = [_article("http://x/1", title="New title")]

    merged = merge(existing, incoming)

    assert len(merged) == 1
    assert merged[0].title == "New title"
    assert merged[0].is_read is True
    assert merged[0].is_bookmarked is True
    assert merged[0].is_saved_for_later is False


def test_merge_ignores_flags_carried_by_incoming_articles() -> None:
    existing = [_article("http://x/1")]
    incoming = [_article("http://x/1", is_read=True, is_skipped=True)]

    merged = merge(existing, incoming)

    assert merged[0].is_read is False
    assert merged[0].is_skipped is False


def test_merge_dedup_counts_distinct_keys() -> None:
    existing = [_article("http://x/1"), _article("http://x/2"), _article("", title="No link")]
    incoming = [
        _article("HTTP://X/2 "),
        _article("http://x/3"),
        _article("http://x/3", title="Duplicate in same fetch"),
        _article("", title="no link"),
    ]

    merged = merge(existing, incoming)
    union = set(_keys(existing)) | set(_keys(incoming))

    assert len(merged) == len(set(_keys(merged)))
    assert set(_keys(merged)) == union


def test_merge_orders_new_then_refreshed_then_carried_over() -> None:
    existing = [_article("http://x/old"), _article("http://x/shared")]
    incoming = [_article("http://x/shared"), _article("http://x/new")]

    merged = merge(existing, incoming)

    assert _keys(merged) == ["http://x/new", "http://x/shared", "http://x/old"]


def test_merge_restores_persisted_state_for_unknown_articles() -> None:
    states = {"http://x/9": ArticleState(is_saved_for_later=True, last_modified_at=5)}

    merged = merge([], [_article("http://x/9"), _article("http://x/10")], state_lookup=states.get)

    assert merged[0].is_saved_for_later is True
    assert merged[1].state_flags() == {
        "is_read": False,
        "is_bookmarked": False,
        "is_saved_for_later": False,
        "is_skipped": False,
    }


def test_merge_with_itself_is_idempotent() -> None:
    articles = [
        _article("http://x/1", is_read=True),
        _article("http://x/2", is_bookmarked=True),
        _article("", title="Fallback", is_skipped=True),
    ]

    merged = merge(articles, articles)

    assert set(_keys(merged)) == set(_keys(articles))
    by_key = {article_key(article): article.state_flags() for article in merged}
    for article in articles:
        assert by_key[article_key(article)] == article.state_flags()


def test_sort_and_filters() -> None:
    articles = [
        _article("http://x/1", hours=1, is_read=True),
        _article("http://x/2", hours=3, is_bookmarked=True),
        _article("http://x/3", hours=2, is_saved_for_later=True),
        _article("http://x/4", hours=0, is_saved_for_later=True, is_skipped=True),
    ]

    assert _keys(sort_articles(articles)) == ["http://x/2", "http://x/3", "http://x/1", "http://x/4"]
    assert _keys(sort_articles(articles, "asc")) == ["http://x/4", "http://x/1", "http://x/3", "http://x/2"]
    assert _keys(filter_articles(articles, "read")) == ["http://x/1"]
    assert len(filter_articles(articles, "unread")) == 3
    assert _keys(filter_articles(articles, "bookmarked")) == ["http://x/2"]
    assert _keys(filter_articles(articles, "skipped")) == ["http://x/4"]
    assert _keys(saved_for_later(articles)) == ["http://x/3"]
    assert filter_articles(articles, "saved") == saved_for_later(articles)
    with pytest.raises(ValueError):
        filter_articles(articles, "starred")
    with pytest.raises(ValueError):
        sort_articles(articles, "sideways")


def test_filter_by_date_range_is_inclusive() -> None:
    articles = [_article(f"http://x/{hour}", hours=hour) for hour in range(5)]

    selected = filter_by_date_range(
        articles,
        start=BASE_TIME + timedelta(hours=1),
        end=BASE_TIME + timedelta(hours=3),
    )

    assert _keys(selected) == ["http://x/1", "http://x/2", "http://x/3"]
    assert len(filter_by_date_range(articles, end=BASE_TIME)) == 1


def _engine(articles: list[Article]) -> MergeEngine:
    engine = MergeEngine(StateStore(MemoryBackend()))
    engine.replace_articles(articles)
    return engine


def test_engine_mutation_updates_memory_and_store() -> None:
    engine = _engine([_article("http://x/1"), _article("http://x/2")])

    state = engine.mark_read("http://x/1")

    assert state.is_read is True
    assert engine.find("http://x/1").is_read is True
    assert engine.find("http://x/2").is_read is False
    stored = engine.store.get("http://x/1")
    assert stored is not None
    assert stored.is_read is True
    assert stored.is_bookmarked is False
    assert stored.last_modified_at > 0


def test_engine_toggles_and_skip() -> None:
    article = _article("http://x/1")
    engine = _engine([article])

    assert engine.toggle_bookmark(article).is_bookmarked is True
    assert engine.toggle_bookmark(article).is_bookmarked is False
    assert engine.toggle_saved_for_later("http://x/1").is_saved_for_later is True
    assert engine.toggle_read("http://x/1").is_read is True
    assert engine.skip("http://x/1").is_skipped is True
    assert engine.undo_skip("http://x/1").is_skipped is False

    stored = engine.store.get("http://x/1")
    assert (stored.is_read, stored.is_bookmarked, stored.is_saved_for_later, stored.is_skipped) == (
        True,
        False,
        True,
        False,
    )


def test_engine_persists_state_for_article_not_in_memory() -> None:
    engine = _engine([])

    engine.mutate_state("http://x/gone", is_bookmarked=True)
    engine.merge_incoming([_article("http://x/gone")])

    assert engine.find("http://x/gone").is_bookmarked is True


def test_engine_rejects_unknown_flags() -> None:
    engine = _engine([_article("http://x/1")])

    with pytest.raises(ValueError):
        engine.mutate_state("http://x/1", is_starred=True)


def test_engine_merge_keeps_user_state_across_refetch() -> None:
    engine = _engine([])
    engine.merge_incoming([_article("http://x/1", title="v1"), _article("http://x/2")])
    engine.mark_read("http://x/1")
    engine.toggle_bookmark("http://x/2")

    merged = engine.merge_incoming([_article("http://x/1", title="v2"), _article("http://x/3")])

    assert _keys(merged) == ["http://x/3", "http://x/1", "http://x/2"]
    assert engine.find("http://x/1").title == "v2"
    assert engine.find("http://x/1").is_read is True
    assert engine.find("http://x/2").is_bookmarked is True
