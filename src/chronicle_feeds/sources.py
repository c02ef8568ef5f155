from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .models import Source, epoch_ms, utc_now
from .store import KeyValueBackend

SOURCES_STORAGE_KEY = "chronicle-news-sources"

DEFAULT_SOURCES = (
    ("1", "TechCrunch", "https://techcrunch.com/feed/"),
    ("2", "The Verge", "https://www.theverge.com/rss/index.xml"),
    ("3", "Hacker News", "https://news.ycombinator.com/rss"),
)


class SourceRegistry:
    """Ordered list of configured feeds, persisted in the key-value backend."""

    def __init__(
        self,
        backend: KeyValueBackend,
        storage_key: str = SOURCES_STORAGE_KEY,
        logger: Optional[logging.Logger] = None,
    ):
        self.backend = backend
        self.storage_key = storage_key
        self.logger = logger or logging.getLogger(__name__)
        self._sources: list[Source] = []
        self._load()

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    def _load(self) -> None:
        raw = self.backend.get(self.storage_key)
        if not raw:
            self._initialize_defaults()
            return
        try:
            self._sources = [Source.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as exc:
            self.logger.error("failed to read sources, restoring defaults: error=%s", exc)
            self._initialize_defaults()

    def _initialize_defaults(self) -> None:
        self._sources = [Source(id=source_id, name=name, url=url) for source_id, name, url in DEFAULT_SOURCES]
        self._save()

    def _save(self) -> None:
        payload = json.dumps([source.to_dict() for source in self._sources], ensure_ascii=False)
        self.backend.put(self.storage_key, payload)

    def _index(self, source_id: str) -> int:
        for index, source in enumerate(self._sources):
            if source.id == source_id:
                return index
        return -1

    def _new_id(self) -> str:
        candidate = epoch_ms()
        existing = {source.id for source in self._sources}
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)

    def get_enabled_sources(self) -> list[Source]:
        return [source for source in self._sources if source.enabled]

    def get(self, source_id: str) -> Optional[Source]:
        index = self._index(source_id)
        return self._sources[index] if index >= 0 else None

    def add(self, name: str, url: str, enabled: bool = True) -> Source:
        source = Source(id=self._new_id(), name=name.strip(), url=url.strip(), enabled=enabled)
        self._sources.append(source)
        self._save()
        return source

    def update(self, source_id: str, name: str, url: str, enabled: bool) -> bool:
        index = self._index(source_id)
        if index < 0:
            return False
        self._sources[index] = replace(
            self._sources[index],
            name=name.strip(),
            url=url.strip(),
            enabled=enabled,
            last_updated=utc_now(),
        )
        self._save()
        return True

    def toggle(self, source_id: str) -> bool:
        index = self._index(source_id)
        if index < 0:
            return False
        current = self._sources[index]
        self._sources[index] = replace(current, enabled=not current.enabled, last_updated=utc_now())
        self._save()
        return True

    def touch(self, source_id: str) -> bool:
        index = self._index(source_id)
        if index < 0:
            return False
        self._sources[index] = replace(self._sources[index], last_updated=utc_now())
        self._save()
        return True

    def delete(self, source_id: str) -> bool:
        remaining = [source for source in self._sources if source.id != source_id]
        if len(remaining) == len(self._sources):
            return False
        self._sources = remaining
        self._save()
        return True

    def load_file(self, path: Path) -> int:
        """Add feeds listed in a ``{"feeds": [...]}`` JSON file.

        Entries whose URL is already registered are skipped. Returns the
        number of sources added.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        known_urls = {source.url for source in self._sources}
        added = 0
        for feed in data.get("feeds", []):
            url = str(feed.get("url") or "").strip()
            if not url or url in known_urls:
                continue
            name = str(feed.get("name") or url).strip()
            self._sources.append(
                Source(id=self._new_id(), name=name, url=url, enabled=bool(feed.get("enabled", True)))
            )
            known_urls.add(url)
            added += 1
        if added:
            self._save()
        return added
