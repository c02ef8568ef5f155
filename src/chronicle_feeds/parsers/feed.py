from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Optional, Union

from lxml import etree

from ..errors import InvalidFormat
from ..models import DEFAULT_CATEGORY, Article, utc_now
from .text import clean_text, first_datetime, first_image_src

ATOM_NS = "http://www.w3.org/2005/Atom"
NAMESPACES = {
    "dc": "http://purl.org/dc/elements/1.1/",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "media": "http://search.yahoo.com/mrss/",
}

RSS_NAMESPACES = (None,)
ATOM_NAMESPACES = (None, ATOM_NS)

Element = etree._Element


def _split_tag(tag: str) -> tuple[Optional[str], str]:
    if tag.startswith("{"):
        uri, _, local = tag[1:].partition("}")
        return uri, local
    return None, tag


def _is_element(node: Element) -> bool:
    return isinstance(node.tag, str)


def _local_name(node: Element) -> str:
    return _split_tag(node.tag)[1]


def _descendants(parent: Element) -> Iterator[Element]:
    for node in parent.iterdescendants():
        if _is_element(node):
            yield node


def _children(parent: Element, name: str) -> list[Element]:
    return [node for node in parent if _is_element(node) and _local_name(node) == name]


def _text(node: Optional[Element]) -> str:
    if node is None:
        return ""
    return "".join(node.itertext()).strip()


def _find(parent: Element, name: str, namespaces: tuple[Optional[str], ...]) -> Optional[Element]:
    for node in _descendants(parent):
        uri, local = _split_tag(node.tag)
        if local == name and uri in namespaces:
            return node
    return None


def _find_all(parent: Element, name: str, namespaces: tuple[Optional[str], ...]) -> list[Element]:
    found = []
    for node in _descendants(parent):
        uri, local = _split_tag(node.tag)
        if local == name and uri in namespaces:
            found.append(node)
    return found


def _find_namespaced(parent: Element, prefix: str, name: str) -> Optional[Element]:
    """Look up ``prefix:name`` under ``parent``.

    The literal prefixed name is tried first, which also covers documents
    that use the prefix without declaring it. The namespace URI is tried
    second, for documents that bind the namespace to another prefix.
    """
    literal = f"{prefix}:{name}"
    for node in _descendants(parent):
        if node.tag == literal:
            return node
        if node.prefix == prefix and _local_name(node) == name:
            return node

    uri = NAMESPACES.get(prefix)
    if uri:
        qualified = f"{{{uri}}}{name}"
        for node in _descendants(parent):
            if node.tag == qualified:
                return node
    return None


def _first_non_empty(*values: str) -> str:
    for value in values:
        if value:
            return value
    return ""


class FeedParser:
    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or utc_now

    def parse(self, xml_text: Union[str, bytes], source_name: str) -> list[Article]:
        root = self._parse_document(xml_text)
        fetched_at = self.clock()
        fetch_epoch = int(fetched_at.timestamp() * 1000)

        items = self._rss_items(root)
        if items:
            build = self._build_rss_article
        else:
            items = self._atom_entries(root)
            build = self._build_atom_article
        if not items:
            self.logger.info("feed has no items: source=%s", source_name)
            return []

        articles: list[Article] = []
        for index, item in enumerate(items):
            try:
                article = build(item, source_name, f"{source_name}-{fetch_epoch}-{index}", fetched_at)
            except Exception as exc:
                self.logger.warning("failed to parse feed item: source=%s index=%s error=%s", source_name, index, exc)
                continue
            if article is None:
                self.logger.debug("item skipped without title or link: source=%s index=%s", source_name, index)
                continue
            articles.append(article)

        self.logger.debug("parsed feed: source=%s items=%s articles=%s", source_name, len(items), len(articles))
        return articles

    def _parse_document(self, xml_text: Union[str, bytes]) -> Element:
        if isinstance(xml_text, str):
            data = xml_text.lstrip("\ufeff \t\r\n").encode("utf-8")
            encoding: Optional[str] = "utf-8"
        else:
            data = xml_text.lstrip()
            encoding = None
        if not data:
            raise InvalidFormat("Invalid XML format: empty document")

        strict = self._xml_parser(encoding, recover=False)
        try:
            return etree.fromstring(data, strict)
        except etree.XMLSyntaxError as exc:
            # The exception log can carry entries from earlier parses on this thread.
            if not self._only_namespace_errors(strict.error_log):
                raise InvalidFormat(f"Invalid XML format: {exc}") from exc

        # Undeclared prefixes such as content:encoded: keep the literal names.
        try:
            root = etree.fromstring(data, self._xml_parser(encoding, recover=True))
        except etree.XMLSyntaxError as exc:
            raise InvalidFormat(f"Invalid XML format: {exc}") from exc
        if root is None:
            raise InvalidFormat("Invalid XML format: empty document")
        return root

    @staticmethod
    def _xml_parser(encoding: Optional[str], recover: bool) -> etree.XMLParser:
        return etree.XMLParser(
            encoding=encoding,
            recover=recover,
            resolve_entities=False,
            no_network=True,
        )

    @staticmethod
    def _only_namespace_errors(error_log: etree._ListErrorLog) -> bool:
        errors = [entry for entry in error_log if entry.level >= etree.ErrorLevels.ERROR]
        if not errors:
            return False
        return all(entry.domain == etree.ErrorDomains.NAMESPACE for entry in errors)

    def _rss_items(self, root: Element) -> list[Element]:
        items: list[Element] = []
        for node in root.iter():
            if not _is_element(node) or _local_name(node) != "rss":
                continue
            for channel in _children(node, "channel"):
                items.extend(_children(channel, "item"))
        return items

    def _atom_entries(self, root: Element) -> list[Element]:
        entries: list[Element] = []
        for node in root.iter():
            if not _is_element(node) or _local_name(node) != "feed":
                continue
            entries.extend(_children(node, "entry"))
        return entries

    def _build_rss_article(
        self,
        item: Element,
        source_name: str,
        article_id: str,
        fetched_at: datetime,
    ) -> Optional[Article]:
        title = _text(_find(item, "title", RSS_NAMESPACES))
        link = _text(_find(item, "link", RSS_NAMESPACES))
        if not title or not link:
            return None

        raw_description = _first_non_empty(
            _text(_find(item, "description", RSS_NAMESPACES)),
            _text(_find_namespaced(item, "content", "encoded")),
            _text(_find(item, "summary", RSS_NAMESPACES)),
        )
        published_at = first_datetime(
            [
                _text(_find(item, "pubDate", RSS_NAMESPACES)),
                _text(_find_namespaced(item, "dc", "date")),
            ]
        )
        author = _first_non_empty(
            _text(_find(item, "author", RSS_NAMESPACES)),
            _text(_find_namespaced(item, "dc", "creator")),
        )
        category = _text(_find(item, "category", RSS_NAMESPACES))

        return self._make_article(
            article_id=article_id,
            title=title,
            raw_description=raw_description,
            url=link,
            image_url=self._rss_image_url(item),
            source_name=source_name,
            published_at=published_at or fetched_at,
            category=category,
            author=author,
        )

    def _build_atom_article(
        self,
        entry: Element,
        source_name: str,
        article_id: str,
        fetched_at: datetime,
    ) -> Optional[Article]:
        title = _text(_find(entry, "title", ATOM_NAMESPACES))
        link = self._atom_link(entry)
        if not title or not link:
            return None

        raw_description = _first_non_empty(
            _text(_find(entry, "summary", ATOM_NAMESPACES)),
            _text(_find(entry, "content", ATOM_NAMESPACES)),
        )
        published_at = first_datetime(
            [
                _text(_find(entry, "published", ATOM_NAMESPACES)),
                _text(_find(entry, "updated", ATOM_NAMESPACES)),
            ]
        )
        author_node = _find(entry, "author", ATOM_NAMESPACES)
        author = _text(_find(author_node, "name", ATOM_NAMESPACES)) if author_node is not None else ""
        category_node = _find(entry, "category", ATOM_NAMESPACES)
        category = (category_node.get("term") or "").strip() if category_node is not None else ""

        return self._make_article(
            article_id=article_id,
            title=title,
            raw_description=raw_description,
            url=link,
            image_url=self._atom_image_url(entry),
            source_name=source_name,
            published_at=published_at or fetched_at,
            category=category,
            author=author,
        )

    def _make_article(
        self,
        *,
        article_id: str,
        title: str,
        raw_description: str,
        url: str,
        image_url: str,
        source_name: str,
        published_at: datetime,
        category: str,
        author: str,
    ) -> Optional[Article]:
        clean_title = clean_text(title)
        if not clean_title:
            return None
        return Article(
            id=article_id,
            title=clean_title,
            description=clean_text(raw_description),
            url=url.strip(),
            image_url=image_url,
            source_name=source_name,
            published_at=published_at,
            category=clean_text(category) or DEFAULT_CATEGORY,
            author=clean_text(author) or None,
        )

    def _atom_link(self, entry: Element) -> str:
        links = _find_all(entry, "link", ATOM_NAMESPACES)
        for link in links:
            if link.get("rel") == "alternate" and (link.get("href") or "").strip():
                return (link.get("href") or "").strip()
        for link in links:
            href = (link.get("href") or "").strip()
            if href:
                return href
        return ""

    def _rss_image_url(self, item: Element) -> str:
        for name in ("content", "thumbnail"):
            media = _find_namespaced(item, "media", name)
            if media is not None and media.get("url"):
                return media.get("url")

        for enclosure in _find_all(item, "enclosure", RSS_NAMESPACES):
            if (enclosure.get("type") or "").startswith("image") and enclosure.get("url"):
                return enclosure.get("url")

        body = _first_non_empty(
            _text(_find(item, "description", RSS_NAMESPACES)),
            _text(_find_namespaced(item, "content", "encoded")),
        )
        return first_image_src(body)

    def _atom_image_url(self, entry: Element) -> str:
        for name in ("content", "thumbnail"):
            media = _find_namespaced(entry, "media", name)
            if media is not None and media.get("url"):
                return media.get("url")

        for link in _find_all(entry, "link", ATOM_NAMESPACES):
            if (link.get("type") or "").startswith("image") and link.get("href"):
                return link.get("href")

        body = _first_non_empty(
            _text(_find(entry, "content", ATOM_NAMESPACES)),
            _text(_find(entry, "summary", ATOM_NAMESPACES)),
        )
        return first_image_src(body)
