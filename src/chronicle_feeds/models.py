from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser

STATE_FLAGS = ("is_read", "is_bookmarked", "is_saved_for_later", "is_skipped")
DEFAULT_CATEGORY = "News"

# Field names used in the persisted JSON blobs.
_STATE_JSON_NAMES = {
    "is_read": "isRead",
    "is_bookmarked": "isBookmarked",
    "is_saved_for_later": "isSavedForLater",
    "is_skipped": "isSkipped",
}
_LEGACY_STATE_JSON_NAMES = {"is_saved_for_later": "isReadLater"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def epoch_ms() -> int:
    return int(time.time() * 1000)


def _to_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        parsed = date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_epoch_ms(value: object) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    return int(_to_datetime(value).timestamp() * 1000)


@dataclass(frozen=True)
class Article:
    id: str
    title: str
    description: str
    url: str
    source_name: str
    published_at: datetime
    image_url: str = ""
    category: str = DEFAULT_CATEGORY
    author: Optional[str] = None
    is_read: bool = False
    is_bookmarked: bool = False
    is_saved_for_later: bool = False
    is_skipped: bool = False

    def state_flags(self) -> dict[str, bool]:
        return {name: bool(getattr(self, name)) for name in STATE_FLAGS}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "imageUrl": self.image_url,
            "sourceName": self.source_name,
            "publishedAt": self.published_at.isoformat(),
            "category": self.category,
        }
        if self.author:
            payload["author"] = self.author
        for name, json_name in _STATE_JSON_NAMES.items():
            payload[json_name] = bool(getattr(self, name))
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Article":
        flags = {
            name: bool(payload.get(json_name, payload.get(_LEGACY_STATE_JSON_NAMES.get(name, ""), False)))
            for name, json_name in _STATE_JSON_NAMES.items()
        }
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            url=str(payload.get("url") or ""),
            image_url=str(payload.get("imageUrl") or ""),
            source_name=str(payload.get("sourceName") or ""),
            published_at=_to_datetime(payload.get("publishedAt") or utc_now()),
            category=str(payload.get("category") or DEFAULT_CATEGORY),
            author=payload.get("author") or None,
            **flags,
        )


@dataclass(frozen=True)
class ArticleState:
    is_read: bool = False
    is_bookmarked: bool = False
    is_saved_for_later: bool = False
    is_skipped: bool = False
    last_modified_at: int = 0

    def flags(self) -> dict[str, bool]:
        return {name: bool(getattr(self, name)) for name in STATE_FLAGS}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            json_name: bool(getattr(self, name)) for name, json_name in _STATE_JSON_NAMES.items()
        }
        payload["lastModifiedAt"] = self.last_modified_at
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ArticleState":
        flags = {
            name: bool(payload.get(json_name, payload.get(_LEGACY_STATE_JSON_NAMES.get(name, ""), False)))
            for name, json_name in _STATE_JSON_NAMES.items()
        }
        modified = payload.get("lastModifiedAt", payload.get("lastModified"))
        return cls(last_modified_at=_to_epoch_ms(modified), **flags)


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    url: str
    enabled: bool = True
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "lastUpdated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Source":
        last_updated = payload.get("lastUpdated")
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            url=str(payload["url"]),
            enabled=bool(payload.get("enabled", True)),
            last_updated=_to_datetime(last_updated) if last_updated else utc_now(),
        )


@dataclass(frozen=True)
class FetchResult:
    source_name: str
    articles: list[Article]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FetchStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


@dataclass(frozen=True)
class FetchOutcome:
    articles: list[Article]
    status: FetchStatus
    results: list[FetchResult] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    message: Optional[str] = None
