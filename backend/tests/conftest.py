import os

# Antes de importar readerly: settings exige DATABASE_URL
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DISABLE_SCHEDULER", "true")

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from readerly.db.session import Base
from readerly.db.models import Feed


RSS_TWO_ITEMS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Example Feed</title>
    <link>https://example.com/</link>
    <description>Example description</description>
    <item>
      <title>Article A</title>
      <link>https://example.com/a?utm_source=rss&amp;utm_medium=feed</link>
      <guid isPermaLink="false">a-1</guid>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
      <description>Short A</description>
      <content:encoded><![CDATA[<p>Full A <img src="https://example.com/a.png"></p>]]></content:encoded>
    </item>
    <item>
      <title>Article B</title>
      <link>https://example.com/b/</link>
      <guid>https://example.com/b/#frag</guid>
      <pubDate>not a date</pubDate>
      <description>&lt;p&gt;B body&lt;/p&gt;</description>
    </item>
  </channel>
</rss>
"""

ATOM_DOC = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <id>urn:example:feed</id>
  <updated>2025-01-05T00:00:00Z</updated>
  <entry>
    <title>Entry One</title>
    <id>urn:uuid:1</id>
    <link rel="self" href="https://example.com/self/1"/>
    <link rel="alternate" href="https://example.com/posts/1/amp"/>
    <updated>2025-01-05T12:00:00Z</updated>
    <content type="html">&lt;b&gt;one&lt;/b&gt;</content>
  </entry>
  <entry>
    <title>Entry Two</title>
    <id>urn:uuid:2</id>
    <link rel="enclosure" type="audio/mpeg" href="https://example.com/two.mp3"/>
    <published>2025-01-04T08:30:00Z</published>
    <summary>two summary</summary>
  </entry>
</feed>
"""


class FakeClock:
    """Reloj virtual: los tests avanzan el tiempo en vez de esperar."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_feed(db):
    def _make(**fields) -> Feed:
        fields.setdefault("url", f"https://example.com/{uuid.uuid4().hex}.xml")
        fields.setdefault("title", "")
        feed = Feed(**fields)
        db.add(feed)
        db.commit()
        return feed

    return _make
