from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

from .models import Article, FetchOutcome, FetchStatus


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3].rstrip() + "..."


def format_partial_failure(failed_sources: Sequence[str]) -> str:
    names = [name.strip() for name in failed_sources if name and name.strip()]
    return f"Some sources failed to load: {', '.join(names)}"


def format_fetch_message(outcome: FetchOutcome) -> Optional[str]:
    if outcome.status is FetchStatus.PARTIAL:
        return format_partial_failure(outcome.failed_sources)
    if outcome.status is FetchStatus.ERROR:
        return "Failed to load news from all sources. Showing previously loaded articles."
    return None


def format_article_line(article: Article, title_limit: int = 100) -> str:
    marks = "".join(
        mark if flag else "-"
        for mark, flag in (
            ("R", article.is_read),
            ("B", article.is_bookmarked),
            ("S", article.is_saved_for_later),
            ("X", article.is_skipped),
        )
    )
    published = article.published_at.strftime("%Y-%m-%d %H:%M")
    title = _truncate(article.title.strip(), title_limit)
    return f"[{marks}] {published} {article.source_name}: {title} <{article.url}>"
