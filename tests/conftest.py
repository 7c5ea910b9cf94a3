"""Shared fixtures for feed_ingest tests."""

import pytest

from feed_ingest import db


SAMPLE_RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <atom:link href="https://example.com/feed.xml" rel="self"/>
    <item>
      <title> First Article </title>
      <link>https://example.com/article-1</link>
      <guid isPermaLink="false">article-1</guid>
      <description><![CDATA[<p>Description of the first article</p>]]></description>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_RDF = b"""<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/">
  <channel rdf:about="https://example.org/">
    <title>RDF Feed</title>
  </channel>
  <item rdf:about="https://example.org/one">
    <title>One</title>
    <link>https://example.org/one</link>
    <description>First RDF item</description>
  </item>
</rdf:RDF>"""

SAMPLE_ATOM = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <entry>
    <title>Atom Entry 1</title>
    <link rel="edit" href="https://example.com/edit/1"/>
    <link rel="alternate" href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
  <entry>
    <title>Atom Entry 2</title>
    <link href="https://example.com/entry-2"/>
    <id>urn:uuid:entry-2</id>
    <content type="html">Content of entry 2</content>
    <published>2026-02-12T08:30:00.123456789+01:00</published>
    <updated>2026-02-13T08:30:00Z</updated>
  </entry>
</feed>"""

SAMPLE_JSON_FEED = b"""{
  "version": "https://jsonfeed.org/version/1.1",
  "title": "Test JSON Feed",
  "items": [
    {
      "id": "1",
      "title": "JSON Item 1",
      "url": "https://example.com/json-1",
      "content_text": "Plain text body",
      "date_published": "2026-02-13T10:00:00Z"
    },
    {
      "id": "",
      "title": "JSON Item 2",
      "external_url": "https://elsewhere.example.com/2",
      "content_html": "<p>HTML body</p>",
      "date_modified": "2026-02-13T11:00:00+00:00"
    }
  ]
}"""


@pytest.fixture
def sample_rss():
    return SAMPLE_RSS


@pytest.fixture
def sample_rdf():
    return SAMPLE_RDF


@pytest.fixture
def sample_atom():
    return SAMPLE_ATOM


@pytest.fixture
def sample_json_feed():
    return SAMPLE_JSON_FEED


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine so worker threads share the database."""
    engine = db.init_engine(f"sqlite:///{tmp_path / 'feeds.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def feed(session):
    """A registered feed that has never been fetched."""
    return db.create_feed(session, "Example", "https://example.com/feed.xml", 60)
