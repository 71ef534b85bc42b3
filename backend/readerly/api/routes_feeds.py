from functools import lru_cache

from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from readerly.db.session import get_db
from readerly.db.models import Feed, Item
from readerly.workers.queue import JobQueue, RQJobQueue

router = APIRouter()


@lru_cache
def get_job_queue() -> JobQueue:
    return RQJobQueue.from_settings()


def _get_feed(db: Session, feed_id: str) -> Feed:
    feed = db.get(Feed, feed_id)
    if not feed:
        raise HTTPException(status_code=404, detail="Feed not found")
    return feed


@router.get("/{feed_id}")
def get_feed(feed_id: str, db: Session = Depends(get_db)):
    """
    Detalle del feed, incluyendo los campos de salud para operadores
    """
    f = _get_feed(db, feed_id)
    return {
        "id": f.id,
        "url": f.url,
        "title": f.title,
        "fetch_interval": f.fetch_interval,
        "last_fetched": f.last_fetched,
        "error_count": f.error_count,
        "backoff_until": f.backoff_until,
        "created_at": f.created_at,
        "updated_at": f.updated_at,
    }


@router.post("/{feed_id}/fetch", status_code=202)
def fetch_now(feed_id: str, db: Session = Depends(get_db), queue: JobQueue = Depends(get_job_queue)):
    # Mismo contrato de cola que el scheduler
    f = _get_feed(db, feed_id)
    queue.enqueue(f.id)
    return {"queued": True, "feed_id": f.id}


@router.get("/{feed_id}/items")
def list_items(feed_id: str, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    _get_feed(db, feed_id)
    items = db.execute(
        select(Item)
        .where(Item.feed_id == feed_id)
        .order_by(Item.published_at.desc().nulls_last(), Item.fetched_at.desc())
        .limit(limit)
    ).scalars().all()

    return [{
        "id": i.id,
        "feed_id": i.feed_id,
        "guid": i.guid,
        "title": i.title,
        "url": i.url,
        "content_html": i.content_html,
        "content_text": i.content_text,
        "image_url": i.image_url,
        "published_at": i.published_at,
        "fetched_at": i.fetched_at,
    } for i in items]
