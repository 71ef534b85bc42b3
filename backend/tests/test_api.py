import pytest
from fastapi.testclient import TestClient

from readerly.api.routes_feeds import get_job_queue
from readerly.db.session import get_db
from readerly.main import app
from readerly.services.ingest.dedupe import ingest_entries
from readerly.services.ingest.normalize import FeedEntry
from readerly.workers.queue import FetchJob, InMemoryJobQueue


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def client(session_factory, queue):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_job_queue] = lambda: queue
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    """Test health endpoint"""
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_feed_detail_exposes_health_fields(client, make_feed):
    """Test operator visibility of fetch health"""
    feed = make_feed(title="Example", error_count=3)

    resp = client.get(f"/feeds/{feed.id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == feed.url
    assert body["error_count"] == 3
    assert body["last_fetched"] is None
    assert body["backoff_until"] is None


def test_feed_detail_not_found(client):
    """Test 404 for unknown feeds"""
    assert client.get("/feeds/nope").status_code == 404


def test_fetch_now_enqueues_job(client, make_feed, queue):
    """Test manual fetch uses the queue contract"""
    feed = make_feed()

    resp = client.post(f"/feeds/{feed.id}/fetch")

    assert resp.status_code == 202
    assert resp.json() == {"queued": True, "feed_id": feed.id}
    assert list(queue.jobs) == [FetchJob(feed.id)]


def test_fetch_now_unknown_feed(client, queue):
    """Test that unknown feeds are not enqueued"""
    assert client.post("/feeds/nope/fetch").status_code == 404
    assert len(queue) == 0


def test_list_items(client, db, make_feed):
    """Test canonical item rows"""
    feed = make_feed()
    ingest_entries(db, feed.id, [
        FeedEntry(guid="g-1", title="One", link="https://example.com/1?utm_source=x", content_html="<p>1</p>"),
        FeedEntry(guid="g-2", title="Two"),
    ])

    resp = client.get(f"/feeds/{feed.id}/items", params={"limit": 10})

    assert resp.status_code == 200
    rows = resp.json()
    assert len(rows) == 2
    assert set(rows[0]) == {
        "id", "feed_id", "guid", "title", "url", "content_html",
        "content_text", "image_url", "published_at", "fetched_at",
    }
    by_title = {r["title"]: r for r in rows}
    assert by_title["One"]["guid"] == "https://example.com/1"
    assert by_title["One"]["url"] == "https://example.com/1"
    assert by_title["Two"]["guid"] == "g-2"
