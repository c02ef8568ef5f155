"""RSS 2.0 and Atom parsing into normalized articles."""

from .feed import FeedParser
from .text import clean_text, first_image_src, parse_datetime

__all__ = ["FeedParser", "clean_text", "first_image_src", "parse_datetime"]
