from datetime import datetime, timezone

import pytest

from chronicle_feeds.errors import InvalidFormat
from chronicle_feeds.parsers import FeedParser, clean_text, first_image_src, parse_datetime

FIXED_NOW = datetime(2026, 2, 7, 12, 0, tzinfo=timezone.utc)


def _parser() -> FeedParser:
    return FeedParser(clock=lambda: FIXED_NOW)


def test_parse_minimal_rss_item() -> None:
    xml = """<?xml version="1.0" encoding="UTF-8"?>
    <rss version="2.0"><channel><title>Feed</title>
      <item>
        <title>A</title>
        <link>http://x/1</link>
        <pubDate>Mon, 06 Sep 2021 16:45:00 GMT</pubDate>
      </item>
    </channel></rss>
    """

    articles = _parser().parse(xml, "Example")

    assert len(articles) == 1
    article = articles[0]
    assert article.title == "A"
    assert article.url == "http://x/1"
    assert article.published_at == datetime(2021, 9, 6, 16, 45, tzinfo=timezone.utc)
    assert article.source_name == "Example"
    assert article.category == "News"
    assert article.id == f"Example-{int(FIXED_NOW.timestamp() * 1000)}-0"
    assert article.state_flags() == {
        "is_read": False,
        "is_bookmarked": False,
        "is_saved_for_later": False,
        "is_skipped": False,
    }


def test_parse_falls_back_to_atom_entries() -> None:
    xml = """<feed xmlns="http://www.w3.org/2005/Atom">
      <title>Atom feed</title>
      <entry>
        <title>Entry one</title>
        <link rel="self" href="http://x/self"/>
        <link rel="alternate" href="http://x/entry-1"/>
        <updated>2024-01-02T03:04:05Z</updated>
        <summary>Short &amp; sweet</summary>
      </entry>
    </feed>
    """

    articles = _parser().parse(xml, "Atom")

    assert len(articles) == 1
    assert articles[0].title == "Entry one"
    assert articles[0].url == "http://x/entry-1"
    assert articles[0].description == "Short & sweet"
    assert articles[0].published_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_atom_prefers_published_and_uses_first_link_with_href() -> None:
    xml = """<feed xmlns="http://www.w3.org/2005/Atom">
      <entry>
        <title>Entry</title>
        <link href="http://x/only"/>
        <published>2024-05-01T00:00:00+02:00</published>
        <updated>2024-06-01T00:00:00Z</updated>
        <content type="html">&lt;p&gt;Body&lt;/p&gt;</content>
        <author><name>Ada</name></author>
      </entry>
    </feed>
    """

    article = _parser().parse(xml, "Atom")[0]

    assert article.url == "http://x/only"
    assert article.published_at == datetime(2024, 4, 30, 22, 0, tzinfo=timezone.utc)
    assert article.description == "Body"
    assert article.author == "Ada"


def test_missing_optional_fields_are_tolerated() -> None:
    xml = "<rss><channel><item><title>Bare</title><link>http://x/bare</link></item></channel></rss>"

    articles = _parser().parse(xml, "Bare")

    assert len(articles) == 1
    assert articles[0].description == ""
    assert articles[0].image_url == ""
    assert articles[0].published_at == FIXED_NOW


def test_unparseable_date_defaults_to_parse_time() -> None:
    xml = (
        "<rss><channel><item><title>T</title><link>http://x/t</link>"
        "<pubDate>not a date</pubDate></item></channel></rss>"
    )

    assert _parser().parse(xml, "S")[0].published_at == FIXED_NOW


def test_items_without_title_or_link_are_skipped() -> None:
    xml = """<rss><channel>
      <item><title>No link</title></item>
      <item><link>http://x/no-title</link></item>
      <item><title>Kept</title><link>http://x/kept</link></item>
    </channel></rss>"""

    articles = _parser().parse(xml, "S")

    assert [article.title for article in articles] == ["Kept"]
    assert articles[0].id.endswith("-2")


def test_malformed_document_raises_invalid_format() -> None:
    with pytest.raises(InvalidFormat):
        _parser().parse("<rss><channel><item><title>A</title>", "Broken")


def test_empty_text_raises_invalid_format() -> None:
    with pytest.raises(InvalidFormat):
        _parser().parse("", "Empty")


def test_document_without_items_returns_empty_list() -> None:
    assert _parser().parse("<rss><channel><title>Empty</title></channel></rss>", "S") == []
    assert _parser().parse("<html><body>nothing</body></html>", "S") == []


def test_declared_namespaces_supply_description_date_and_image() -> None:
    xml = """<rss version="2.0"
        xmlns:content="http://purl.org/rss/1.0/modules/content/"
        xmlns:dc="http://purl.org/dc/elements/1.1/"
        xmlns:media="http://search.yahoo.com/mrss/">
      <channel><item>
        <title>Namespaced</title>
        <link>http://x/ns</link>
        <content:encoded><![CDATA[<p>Full <b>body</b></p>]]></content:encoded>
        <dc:date>2023-03-04T05:06:07Z</dc:date>
        <dc:creator>Grace</dc:creator>
        <media:content url="http://img/media.jpg" medium="image"/>
      </item></channel>
    </rss>"""

    article = _parser().parse(xml, "S")[0]

    assert article.description == "Full body"
    assert article.published_at == datetime(2023, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    assert article.image_url == "http://img/media.jpg"
    assert article.author == "Grace"


def test_namespace_bound_to_other_prefix_is_found_by_uri() -> None:
    xml = """<rss xmlns:mrss="http://search.yahoo.com/mrss/"
        xmlns:purl="http://purl.org/rss/1.0/modules/content/">
      <channel><item>
        <title>Other prefix</title>
        <link>http://x/other</link>
        <purl:encoded>Encoded body</purl:encoded>
        <mrss:thumbnail url="http://img/thumb.jpg"/>
      </item></channel>
    </rss>"""

    article = _parser().parse(xml, "S")[0]

    assert article.description == "Encoded body"
    assert article.image_url == "http://img/thumb.jpg"


def test_undeclared_prefixes_are_read_by_literal_name() -> None:
    xml = """<rss version="2.0"><channel><item>
        <title>Undeclared</title>
        <link>http://x/undeclared</link>
        <content:encoded><![CDATA[<p>Body <img src="http://img/inline.png"></p>]]></content:encoded>
        <dc:date>2022-02-02T02:02:02Z</dc:date>
      </item></channel></rss>"""

    article = _parser().parse(xml, "S")[0]

    assert article.description == "Body"
    assert article.image_url == "http://img/inline.png"
    assert article.published_at == datetime(2022, 2, 2, 2, 2, 2, tzinfo=timezone.utc)


def test_malformed_document_does_not_affect_later_undeclared_prefixes() -> None:
    parser = _parser()
    undeclared = """<rss version="2.0"><channel><item>
        <title>Thumb</title>
        <link>http://x/thumb</link>
        <media:thumbnail url="http://img/t.jpg"/>
      </item></channel></rss>"""

    with pytest.raises(InvalidFormat):
        parser.parse("<rss><channel><item><title>A</title>", "Broken")
    with pytest.raises(InvalidFormat):
        _parser().parse("<rss><channel><item>", "Other broken")

    assert parser.parse(undeclared, "S")[0].image_url == "http://img/t.jpg"
    assert _parser().parse(undeclared, "S")[0].image_url == "http://img/t.jpg"


def test_description_wins_over_content_encoded() -> None:
    xml = """<rss xmlns:content="http://purl.org/rss/1.0/modules/content/"><channel><item>
        <title>T</title><link>http://x/t</link>
        <description>Short</description>
        <content:encoded>Long</content:encoded>
      </item></channel></rss>"""

    assert _parser().parse(xml, "S")[0].description == "Short"


def test_image_falls_back_to_enclosure_then_inline_img() -> None:
    xml = """<rss><channel>
      <item>
        <title>Enclosure</title><link>http://x/1</link>
        <enclosure url="http://img/audio.mp3" type="audio/mpeg"/>
        <enclosure url="http://img/photo.jpg" type="image/jpeg"/>
        <description>&lt;img src="http://img/inline.jpg"&gt;</description>
      </item>
      <item>
        <title>Inline</title><link>http://x/2</link>
        <description>&lt;p&gt;Text &lt;img class="a" src="http://img/second.jpg"/&gt;&lt;/p&gt;</description>
      </item>
    </channel></rss>"""

    first, second = _parser().parse(xml, "S")

    assert first.image_url == "http://img/photo.jpg"
    assert second.image_url == "http://img/second.jpg"
    assert second.description == "Text"


def test_atom_image_link_is_used() -> None:
    xml = """<feed xmlns="http://www.w3.org/2005/Atom"><entry>
        <title>Pic</title>
        <link rel="alternate" href="http://x/pic"/>
        <link rel="enclosure" type="image/png" href="http://img/pic.png"/>
      </entry></feed>"""

    assert _parser().parse(xml, "S")[0].image_url == "http://img/pic.png"


def test_title_markup_and_entities_are_cleaned() -> None:
    xml = """<rss><channel><item>
        <title><![CDATA[<b>Tom</b> &amp; Jerry &#8211; &quot;Live&quot;]]></title>
        <link> http://x/clean </link>
      </item></channel></rss>"""

    article = _parser().parse(xml, "S")[0]

    assert article.title == 'Tom & Jerry – "Live"'
    assert article.url == "http://x/clean"


def test_rss_category_overrides_default() -> None:
    xml = """<rss><channel><item>
        <title>T</title><link>http://x/c</link><category>Science</category>
      </item></channel></rss>"""

    assert _parser().parse(xml, "S")[0].category == "Science"


def test_clean_text_helpers() -> None:
    assert clean_text(None) == ""
    assert clean_text("  <p>Hello&nbsp;<i>world</i></p> ") == "Hello\xa0world"
    assert clean_text("plain text") == "plain text"


def test_first_image_src_and_parse_datetime() -> None:
    assert first_image_src('<div><img alt="x" src="http://a/b.png"></div>') == "http://a/b.png"
    assert first_image_src("<p>none</p>") == ""
    assert parse_datetime("Tue, 10 Jun 2003 04:00:00 EST") == datetime(2003, 6, 10, 9, 0, tzinfo=timezone.utc)
    assert parse_datetime("") is None
    assert parse_datetime("garbage") is None
