from __future__ import annotations

import logging
import random
from dataclasses import dataclass, asdict

import requests
from sqlalchemy import update
from sqlalchemy.orm import Session

from readerly.core.clock import Clock, utcnow
from readerly.core.config import settings
from readerly.db.models import Feed
from readerly.services.ingest.backoff import backoff_delay
from readerly.services.ingest.dedupe import FeedGone, IngestStats, ingest_entries
from readerly.services.ingest.normalize import apply_feed_title, normalize_document

logger = logging.getLogger(__name__)

ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.1"


@dataclass
class FetchResult:
    status: int | None
    inserted: int = 0
    skipped: int = 0
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def build_headers(etag: str | None, last_modified: str | None) -> dict[str, str]:
    headers = {
        "User-Agent": f"{settings.app_name}/0.1 (+https://localhost)",
        "Accept": ACCEPT,
    }
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified
    return headers


def _mark_success(db: Session, feed_id: str, now, **validators) -> None:
    values = {"last_fetched": now, "error_count": 0, "backoff_until": None}
    # Un validador ausente en la respuesta no borra el guardado
    values.update({k: v for k, v in validators.items() if v})
    db.execute(update(Feed).where(Feed.id == feed_id).values(**values))
    db.commit()


def _mark_failure(db: Session, feed_id: str, error_count: int, now, rng) -> int:
    count = error_count + 1
    db.execute(
        update(Feed)
        .where(Feed.id == feed_id)
        .values(last_fetched=now, error_count=count, backoff_until=now + backoff_delay(count, rng))
    )
    db.commit()
    return count


def process_document(
    db: Session,
    feed_id: str,
    body: bytes | str | None,
    content_type: str | None = None,
    base_url: str | None = None,
) -> IngestStats:
    """Normaliza el documento, actualiza el título del feed y deduplica las entradas."""
    doc = normalize_document(feed_id, body, content_type=content_type, base_url=base_url)
    apply_feed_title(db, feed_id, doc.title)
    if not doc.entries:
        return IngestStats()
    return ingest_entries(db, feed_id, doc.entries)


def perform_fetch(
    db: Session,
    feed_id: str,
    *,
    http=None,
    clock: Clock = utcnow,
    rng: random.Random | None = None,
    timeout: float | None = None,
) -> FetchResult | None:
    """
    Un ciclo de fetch para un feed: GET condicional, parseo, dedup y
    actualización de metadata.

    Los fallos HTTP / de transporte son esperables: alimentan el backoff y se
    devuelven como resultado. Solo los errores inesperados (p.ej. DB caída)
    se propagan a la cola.

    Returns:
        FetchResult, o None si el feed ya no existe.
    """
    feed = db.get(Feed, feed_id)
    if feed is None:
        logger.info("Feed %s no existe (borrado?), se ignora el job", feed_id)
        return None

    url = feed.url
    error_count = feed.error_count or 0
    http = http or requests

    try:
        resp = http.get(
            url,
            headers=build_headers(feed.etag, feed.last_modified),
            timeout=timeout or settings.fetch_timeout_seconds,
        )
    except requests.RequestException as e:
        count = _mark_failure(db, feed_id, error_count, clock(), rng)
        logger.warning("Feed %s: error de red (%s), fallos consecutivos=%d", feed_id, e, count)
        return FetchResult(status=None, error=str(e))

    now = clock()

    if resp.status_code == 304:
        _mark_success(db, feed_id, now)
        return FetchResult(status=304)

    if not 200 <= resp.status_code < 300:
        count = _mark_failure(db, feed_id, error_count, now, rng)
        logger.warning("Feed %s: HTTP %s, fallos consecutivos=%d", feed_id, resp.status_code, count)
        return FetchResult(status=resp.status_code, error=f"HTTP {resp.status_code}")

    etag = resp.headers.get("ETag")
    last_modified = resp.headers.get("Last-Modified")

    try:
        stats = process_document(
            db,
            feed_id,
            resp.content,
            content_type=resp.headers.get("Content-Type"),
            base_url=url,
        )
    except FeedGone:
        db.rollback()
        logger.info("Feed %s se borró durante el fetch, se descarta el ciclo", feed_id)
        return None

    _mark_success(db, feed_id, now, etag=etag, last_modified=last_modified)
    return FetchResult(status=resp.status_code, inserted=stats.inserted, skipped=stats.skipped)
