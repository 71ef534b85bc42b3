from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import feedparser
from bs4 import BeautifulSoup
from sqlalchemy import update
from sqlalchemy.orm import Session

from readerly.db.models import Feed
from readerly.services.ingest.fields import classify, field_text, text_of

logger = logging.getLogger(__name__)

HTML_TYPES = ("text/html", "application/xhtml+xml")
FEED_TITLE_MAX = 500


@dataclass
class FeedEntry:
    guid: str | None = None
    title: str | None = None
    link: str | None = None
    published_at: datetime | None = None
    content_html: str | None = None
    image_url: str | None = None


@dataclass
class NormalizedFeed:
    title: str | None = None
    entries: list[FeedEntry] = field(default_factory=list)
    format: str | None = None  # rss|atom


def _detect_format(version: str) -> str | None:
    if version.startswith("rss"):
        return "rss"
    if version.startswith("atom"):
        return "atom"
    return None


def _to_datetime(parsed) -> datetime | None:
    # feedparser entrega struct_time en UTC, o None si no pudo parsear la fecha
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _pick_published(entry) -> datetime | None:
    # pubDate/published primero, luego updated. Nunca "ahora" por defecto.
    return _to_datetime(entry.get("published_parsed")) or _to_datetime(entry.get("updated_parsed"))


def _pick_content(entry) -> str | None:
    """content:encoded (HTML) > content genérico > description/summary."""
    contents = [c for c in (entry.get("content") or []) if field_text(classify(c))]
    for c in contents:
        if c.get("type") in HTML_TYPES:
            return field_text(classify(c))
    if contents:
        return field_text(classify(contents[0]))
    return text_of(entry.get("summary_detail")) or text_of(entry.get("summary"))


def _pick_image(entry, html: str | None) -> str | None:
    for thumb in entry.get("media_thumbnail") or []:
        url = text_of(thumb.get("url"))
        if url:
            return url

    for media in entry.get("media_content") or []:
        kind = media.get("medium") or ""
        mime = media.get("type") or ""
        if kind == "image" or mime.startswith("image/"):
            url = text_of(media.get("url"))
            if url:
                return url

    for enc in entry.get("enclosures") or []:
        if (enc.get("type") or "").startswith("image/"):
            url = text_of(enc.get("href"))
            if url:
                return url

    if html:
        img = BeautifulSoup(html, "lxml").find("img", src=True)
        if img is not None:
            return text_of(img.get("src"))
    return None


def _pick_link(entry, fmt: str) -> str | None:
    # En RSS solo cuenta <link>: feedparser mete los <enclosure> en entry.links
    if fmt == "rss":
        return text_of(entry.get("link"))
    return text_of(entry.get("links")) or text_of(entry.get("link"))


def _normalize_entry(entry, fmt: str) -> FeedEntry:
    html = _pick_content(entry)
    return FeedEntry(
        guid=text_of(entry.get("id")),
        title=text_of(entry.get("title")) or text_of(entry.get("title_detail")),
        link=_pick_link(entry, fmt),
        published_at=_pick_published(entry),
        content_html=html,
        image_url=_pick_image(entry, html),
    )


def normalize_document(
    feed_id: str,
    body: bytes | str | None,
    content_type: str | None = None,
    base_url: str | None = None,
) -> NormalizedFeed:
    """
    Parsea un documento RSS o Atom y lo aplana a título + entradas en orden
    de documento.

    Un documento roto o de otro formato devuelve una lista vacía en vez de
    lanzar: un feed malo produce 0 inserts en ese ciclo, no tumba al worker.
    """
    if not body:
        return NormalizedFeed()
    if isinstance(body, str):
        body = body.encode("utf-8")

    headers = {}
    if content_type:
        headers["content-type"] = content_type
    if base_url:
        # feedparser resuelve links relativos contra content-location
        headers["content-location"] = base_url

    try:
        parsed = feedparser.parse(io.BytesIO(body), response_headers=headers or None)
    except Exception:
        logger.warning("Feed %s: documento no parseable", feed_id, exc_info=True)
        return NormalizedFeed()

    fmt = _detect_format(parsed.get("version") or "")
    if fmt is None:
        logger.warning(
            "Feed %s: formato no reconocido (bozo=%s)",
            feed_id,
            parsed.get("bozo_exception") or parsed.get("bozo"),
        )
        return NormalizedFeed()

    meta = parsed.get("feed") or {}
    title = text_of(meta.get("title")) or text_of(meta.get("title_detail"))
    entries = [_normalize_entry(e, fmt) for e in parsed.get("entries") or []]

    logger.debug("Feed %s: %s con %d entradas", feed_id, fmt, len(entries))
    return NormalizedFeed(title=title, entries=entries, format=fmt)


def apply_feed_title(db: Session, feed_id: str, title: str | None) -> bool:
    """Actualiza el título guardado solo si el documento trae uno no vacío."""
    title = (title or "").strip()
    if not title:
        return False
    result = db.execute(
        update(Feed).where(Feed.id == feed_id).values(title=title[:FEED_TITLE_MAX])
    )
    db.commit()
    # rowcount == 0 -> el feed se borró en paralelo; no es un error
    return result.rowcount > 0
