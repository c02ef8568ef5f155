from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Optional, Sequence

from .errors import StorageQuotaExceeded
from .models import STATE_FLAGS, Article, ArticleState, epoch_ms, utc_now_iso

DEFAULT_MAX_ITEMS = 1000
DEFAULT_SNAPSHOT_ITEMS = 500
STATE_STORAGE_KEY = "chronicle-article-states"
SNAPSHOT_STORAGE_KEY = "chronicle-article-snapshot"


SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_blobs (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class KeyValueBackend(ABC):
    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def put(self, name: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self, name: str) -> None:
        raise NotImplementedError


def _check_quota(name: str, value: str, max_bytes: Optional[int]) -> None:
    if max_bytes is None:
        return
    size = len(value.encode("utf-8"))
    if size > max_bytes:
        raise StorageQuotaExceeded(f"value for {name} is {size} bytes, limit is {max_bytes}")


class MemoryBackend(KeyValueBackend):
    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self.values: dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def put(self, name: str, value: str) -> None:
        _check_quota(name, value, self.max_bytes)
        self.values[name] = value

    def clear(self, name: str) -> None:
        self.values.pop(name, None)


class SQLiteBackend(KeyValueBackend):
    def __init__(self, db_path: Path, max_bytes: Optional[int] = None):
        self.db_path = Path(db_path)
        self.max_bytes = max_bytes
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    def get(self, name: str) -> Optional[str]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT value FROM kv_blobs WHERE name = ?",
                (name,),
            ).fetchone()
            if not row:
                return None
            return str(row["value"])

    def put(self, name: str, value: str) -> None:
        _check_quota(name, value, self.max_bytes)
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    """
                    INSERT INTO kv_blobs (name, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (name, value, utc_now_iso()),
                )
                conn.commit()
        except sqlite3.OperationalError as exc:
            if "full" in str(exc).lower():
                raise StorageQuotaExceeded(str(exc)) from exc
            raise

    def clear(self, name: str) -> None:
        with closing(self._connect()) as conn:
            conn.execute("DELETE FROM kv_blobs WHERE name = ?", (name,))
            conn.commit()


class StateStore:
    """Durable map of identity key to :class:`ArticleState`.

    The whole map is persisted as one JSON blob. After every write the map
    is pruned to the ``max_items`` entries with the newest
    ``last_modified_at``. When the backend rejects a write for size, the
    map is cut to the newest ``max_items // 2`` entries and the write is
    retried once; a second rejection is logged and returned, not raised.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        max_items: int = DEFAULT_MAX_ITEMS,
        storage_key: str = STATE_STORAGE_KEY,
        logger: Optional[logging.Logger] = None,
    ):
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.backend = backend
        self.max_items = max_items
        self.storage_key = storage_key
        self.logger = logger or logging.getLogger(__name__)
        self._states: dict[str, ArticleState] = {}
        self._last_stamp = 0
        self.load()

    def load(self) -> None:
        raw = self.backend.get(self.storage_key)
        states: dict[str, ArticleState] = {}
        if raw:
            try:
                payload = json.loads(raw)
                if not isinstance(payload, dict):
                    raise ValueError("state blob is not an object")
                for key, value in payload.items():
                    states[str(key)] = ArticleState.from_dict(value)
            except (ValueError, TypeError, AttributeError) as exc:
                self.logger.error("failed to read article states: key=%s error=%s", self.storage_key, exc)
                states = {}
        self._states = states
        self._last_stamp = max((state.last_modified_at for state in states.values()), default=0)

    def _stamp(self) -> int:
        # Strictly increasing so sequential writes have a total order.
        self._last_stamp = max(epoch_ms(), self._last_stamp + 1)
        return self._last_stamp

    def get(self, key: str) -> Optional[ArticleState]:
        return self._states.get(key)

    def all_states(self) -> dict[str, ArticleState]:
        return dict(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: object) -> bool:
        return key in self._states

    def put(self, key: str, **partial: bool) -> Optional[StorageQuotaExceeded]:
        unknown = set(partial) - set(STATE_FLAGS)
        if unknown:
            raise ValueError(f"Unknown article state fields: {', '.join(sorted(unknown))}")

        current = self._states.get(key) or ArticleState()
        flags = current.flags()
        flags.update({name: bool(value) for name, value in partial.items()})
        self._states[key] = ArticleState(last_modified_at=self._stamp(), **flags)

        self._states = self._most_recent(self._states, self.max_items)
        return self._persist()

    def clear_state(self, key: str) -> Optional[StorageQuotaExceeded]:
        if self._states.pop(key, None) is None:
            return None
        return self._persist()

    def clear_all(self) -> None:
        self._states = {}
        self.backend.clear(self.storage_key)

    def keys_where(self, flag: str) -> list[str]:
        if flag not in STATE_FLAGS:
            raise ValueError(f"Unknown article state field: {flag}")
        return [key for key, state in self._states.items() if getattr(state, flag)]

    def read_keys(self) -> list[str]:
        return self.keys_where("is_read")

    def bookmarked_keys(self) -> list[str]:
        return self.keys_where("is_bookmarked")

    def saved_keys(self) -> list[str]:
        return self.keys_where("is_saved_for_later")

    def skipped_keys(self) -> list[str]:
        return self.keys_where("is_skipped")

    def storage_info(self) -> dict[str, int]:
        raw = self.backend.get(self.storage_key) or ""
        return {"count": len(self._states), "size": len(raw.encode("utf-8"))}

    def _persist(self) -> Optional[StorageQuotaExceeded]:
        try:
            self._write(self._states)
            return None
        except StorageQuotaExceeded as exc:
            self.logger.warning(
                "article state write rejected, keeping newest half: entries=%s error=%s",
                len(self._states),
                exc,
            )

        self._states = self._most_recent(self._states, max(self.max_items // 2, 1))
        try:
            self._write(self._states)
            return None
        except StorageQuotaExceeded as exc:
            self.logger.error("article state write dropped: entries=%s error=%s", len(self._states), exc)
            return exc

    def _write(self, states: dict[str, ArticleState]) -> None:
        payload = {key: state.to_dict() for key, state in states.items()}
        self.backend.put(self.storage_key, json.dumps(payload, ensure_ascii=False))

    @staticmethod
    def _most_recent(states: dict[str, ArticleState], limit: int) -> dict[str, ArticleState]:
        if len(states) <= limit:
            return states
        ordered = sorted(states.items(), key=lambda item: item[1].last_modified_at, reverse=True)
        return dict(ordered[: max(limit, 0)])


class ArticleSnapshotCache:
    """Last canonical article set, bounded to the newest ``max_items`` by publish date.

    A size rejection halves the saved set and retries once, like
    :class:`StateStore`.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        max_items: int = DEFAULT_SNAPSHOT_ITEMS,
        storage_key: str = SNAPSHOT_STORAGE_KEY,
        logger: Optional[logging.Logger] = None,
    ):
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.backend = backend
        self.max_items = max_items
        self.storage_key = storage_key
        self.logger = logger or logging.getLogger(__name__)

    def save(self, articles: Sequence[Article]) -> Optional[StorageQuotaExceeded]:
        kept = self._newest(articles, self.max_items)
        try:
            self._write(kept)
            return None
        except StorageQuotaExceeded as exc:
            self.logger.warning(
                "article snapshot write rejected, keeping newest half: articles=%s error=%s",
                len(kept),
                exc,
            )

        kept = self._newest(kept, max(len(kept) // 2, 1))
        try:
            self._write(kept)
            return None
        except StorageQuotaExceeded as exc:
            self.logger.error("article snapshot write dropped: articles=%s error=%s", len(kept), exc)
            return exc

    def _write(self, articles: Sequence[Article]) -> None:
        payload = json.dumps([article.to_dict() for article in articles], ensure_ascii=False)
        self.backend.put(self.storage_key, payload)

    @staticmethod
    def _newest(articles: Sequence[Article], limit: int) -> list[Article]:
        if len(articles) <= limit:
            return list(articles)
        ranked = sorted(range(len(articles)), key=lambda index: articles[index].published_at, reverse=True)
        keep = set(ranked[:limit])
        return [article for index, article in enumerate(articles) if index in keep]

    def load(self) -> list[Article]:
        raw = self.backend.get(self.storage_key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
            return [Article.from_dict(item) for item in payload]
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            self.logger.error("failed to read article snapshot: key=%s error=%s", self.storage_key, exc)
            return []

    def clear(self) -> None:
        self.backend.clear(self.storage_key)
