from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from readerly.db.models import Feed, Item
from readerly.services.ingest.canonical import canonicalize_url, looks_like_url
from readerly.services.ingest.normalize import FeedEntry

logger = logging.getLogger(__name__)

ITEM_TITLE_MAX = 1000


class FeedGone(Exception):
    """El feed se borró mientras se ingerían sus entradas."""

    def __init__(self, feed_id: str):
        super().__init__(f"feed {feed_id} no existe")
        self.feed_id = feed_id


@dataclass
class IngestStats:
    inserted: int = 0
    skipped: int = 0


def fallback_guid(feed_id: str, url: str | None, title: str | None, published_at: datetime | None) -> str:
    """
    Identidad determinista para entradas sin guid ni link.
    Reprocesar la misma entrada rota siempre produce la misma clave.
    """
    raw = "\n".join([
        feed_id,
        url or "",
        title or "",
        published_at.isoformat() if published_at else "",
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _canonical_guid(guid: str | None) -> str | None:
    if guid and looks_like_url(guid):
        return canonicalize_url(guid)
    return guid


def identity_candidates(entry: FeedEntry) -> list[str]:
    """guid (canónico si es URL), guid crudo, link canónico, link original; sin repetidos."""
    values = (
        _canonical_guid(entry.guid),
        entry.guid,
        canonicalize_url(entry.link),
        entry.link,
    )
    return list(dict.fromkeys(v for v in values if v))


def effective_guid(feed_id: str, entry: FeedEntry) -> str:
    """Prioridad: link canónico > guid del feed > hash de respaldo."""
    url = canonicalize_url(entry.link)
    guid = _canonical_guid(entry.guid)
    if url:
        return url
    if guid:
        return guid
    return fallback_guid(feed_id, entry.link, entry.title, entry.published_at)


def _find_by_candidates(db: Session, feed_id: str, candidates: list[str]) -> Item | None:
    if not candidates:
        return None
    return db.execute(
        select(Item)
        .where(Item.feed_id == feed_id, Item.guid.in_(candidates))
        .order_by(Item.fetched_at, Item.id)
        .limit(1)
    ).scalars().first()


def _find_by_guid(db: Session, feed_id: str, guid: str) -> Item | None:
    return db.execute(
        select(Item).where(Item.feed_id == feed_id, Item.guid == guid)
    ).scalar_one_or_none()


def _refresh(item: Item, entry: FeedEntry, url: str | None) -> None:
    # Solo se pisan campos presentes; el guid guardado nunca cambia
    if url:
        item.url = url
    if entry.title:
        item.title = entry.title[:ITEM_TITLE_MAX]
    if entry.content_html:
        item.content_html = entry.content_html
    if entry.image_url:
        item.image_url = entry.image_url
    if entry.published_at:
        item.published_at = entry.published_at


def upsert_entry(db: Session, feed_id: str, entry: FeedEntry) -> bool:
    """
    Inserta o actualiza una entrada normalizada. Devuelve True si creó una
    fila nueva, False si actualizó una existente (skip).
    """
    url = canonicalize_url(entry.link)

    existing = _find_by_candidates(db, feed_id, identity_candidates(entry))
    if existing is not None:
        _refresh(existing, entry, url)
        db.commit()
        return False

    guid = effective_guid(feed_id, entry)

    # Cubre guids que derivaron y que la búsqueda por candidatos no vio
    existing = _find_by_guid(db, feed_id, guid)
    if existing is not None:
        _refresh(existing, entry, url)
        db.commit()
        return False

    if not url and not entry.guid:
        logger.warning(
            "Feed %s: entrada sin guid ni link, identidad por hash %s (title=%r)",
            feed_id, guid[:12], entry.title,
        )

    item = Item(
        feed_id=feed_id,
        guid=guid,
        title=(entry.title or url or "Untitled")[:ITEM_TITLE_MAX],
        url=url,
        content_html=entry.content_html,
        image_url=entry.image_url,
        published_at=entry.published_at,
    )
    try:
        db.add(item)
        db.commit()
    except IntegrityError:
        # Otro worker insertó el mismo (feed_id, guid): pasa a update
        db.rollback()
        existing = _find_by_guid(db, feed_id, guid)
        if existing is None:
            if db.get(Feed, feed_id) is None:
                raise FeedGone(feed_id) from None
            raise
        _refresh(existing, entry, url)
        db.commit()
        return False

    return True


def ingest_entries(db: Session, feed_id: str, entries: list[FeedEntry]) -> IngestStats:
    stats = IngestStats()
    for entry in entries:
        if upsert_entry(db, feed_id, entry):
            stats.inserted += 1
        else:
            stats.skipped += 1
    return stats
