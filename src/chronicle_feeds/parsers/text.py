from __future__ import annotations

import re
import warnings
from datetime import datetime, timezone
from typing import Iterable, Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning
from dateutil import parser as date_parser
from dateutil import tz

TAG_RE = re.compile(r"<[^>]*>")
IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"'>]+)[\"']", re.IGNORECASE)

# Zone abbreviations that still show up in RFC 822 pubDate values.
TZINFOS = {
    "UT": tz.UTC,
    "UTC": tz.UTC,
    "GMT": tz.UTC,
    "Z": tz.UTC,
    "EST": tz.tzoffset("EST", -5 * 3600),
    "EDT": tz.tzoffset("EDT", -4 * 3600),
    "CST": tz.tzoffset("CST", -6 * 3600),
    "CDT": tz.tzoffset("CDT", -5 * 3600),
    "MST": tz.tzoffset("MST", -7 * 3600),
    "MDT": tz.tzoffset("MDT", -6 * 3600),
    "PST": tz.tzoffset("PST", -8 * 3600),
    "PDT": tz.tzoffset("PDT", -7 * 3600),
}


def clean_text(value: Optional[str]) -> str:
    """Strip markup from a feed field and decode its HTML entities.

    Tags are removed with a regex first; the remainder is passed through
    the HTML parser so that named and numeric entities come back as text.
    """
    if not value:
        return ""
    text = TAG_RE.sub("", value)
    if "&" in text:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            text = BeautifulSoup(text, "html.parser").get_text()
    return text.strip()


def first_image_src(html: Optional[str]) -> str:
    if not html:
        return ""
    match = IMG_SRC_RE.search(html)
    if match:
        return match.group(1)
    return ""


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value.strip(), tzinfos=TZINFOS)
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def first_datetime(values: Iterable[Optional[str]]) -> Optional[datetime]:
    for value in values:
        parsed = parse_datetime(value)
        if parsed is not None:
            return parsed
    return None
