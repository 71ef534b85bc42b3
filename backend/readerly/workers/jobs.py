# readerly/workers/jobs.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from readerly.core.clock import Clock, as_utc, utcnow
from readerly.core.config import settings
from readerly.core.logging import configure_logging
from readerly.db.models import Feed
from readerly.db.session import SessionLocal, engine, init_db
from readerly.services.ingest.pipeline import perform_fetch
from readerly.workers.queue import JobQueue, RQJobQueue

logger = logging.getLogger(__name__)


def db_is_ready() -> bool:
    """
    Verifica rápidamente si la DB está accesible.
    Si no lo está, devolvemos False y evitamos crashear el startup.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("DB no disponible aún: %s", e)
        return False


def is_due(
    feed,
    now: datetime,
    min_interval: int | None = None,
    default_interval: int | None = None,
) -> bool:
    """
    Un feed toca si no está en ventana de backoff y pasó su intervalo
    (mínimo 5 minutos) desde el último fetch. Nunca fetcheado -> toca ya.
    """
    if min_interval is None:
        min_interval = settings.min_fetch_interval_minutes
    if default_interval is None:
        default_interval = settings.default_fetch_interval_minutes

    backoff_until = as_utc(feed.backoff_until)
    if backoff_until and backoff_until > now:
        return False

    last_fetched = as_utc(feed.last_fetched)
    if last_fetched is None:
        return True

    # 0 es un intervalo válido (queda en el mínimo), solo None usa el default
    interval = feed.fetch_interval if feed.fetch_interval is not None else default_interval
    interval = max(min_interval, interval)
    return now - last_fetched >= timedelta(minutes=interval)


class FeedScheduler:
    """
    Productor periódico de la cola de fetch.

    Cada tick recorre todos los feeds y encola un job por cada feed que toca.
    El reloj es inyectable para poder avanzar el tiempo en tests.
    """

    def __init__(
        self,
        queue: JobQueue,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Clock = utcnow,
        tick_seconds: int | None = None,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.clock = clock
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self._scheduler = BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def due_feed_ids(self, db: Session, now: datetime) -> list[str]:
        rows = db.execute(
            select(Feed.id, Feed.last_fetched, Feed.fetch_interval, Feed.backoff_until)
            .order_by(Feed.created_at, Feed.id)
        ).all()
        return [row.id for row in rows if is_due(row, now)]

    def tick(self) -> list[str]:
        """Un pase completo. Si falla se loguea y se reintenta entero en el próximo tick."""
        enqueued: list[str] = []
        try:
            now = self.clock()
            db = self.session_factory()
            try:
                due = self.due_feed_ids(db, now)
            finally:
                db.close()

            for feed_id in due:
                self.queue.enqueue(feed_id)
                enqueued.append(feed_id)
        except Exception:
            # Los ya encolados pueden repetirse en el próximo tick
            logger.exception("Error en tick del scheduler (%d encolados antes del fallo)", len(enqueued))
            return []

        if enqueued:
            logger.info("Tick: %d feeds encolados", len(enqueued))
        return enqueued

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="fetch-tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)


feed_scheduler: FeedScheduler | None = None


def run_fetch_job(feed_id: str) -> dict | None:
    """
    Punto de entrada del worker para un FetchJob.
    Los errores inesperados se propagan para que la cola registre el fallo.
    """
    db = SessionLocal()
    try:
        result = perform_fetch(db, feed_id)
    finally:
        db.close()

    if result is None:
        return None
    logger.info("Fetched %s %s", feed_id, result.as_dict())
    return result.as_dict()


def start_scheduler(queue: JobQueue | None = None) -> FeedScheduler | None:
    """
    Inicia el scheduler SOLO si:
    - no está deshabilitado por env (DISABLE_SCHEDULER=true)
    - la DB responde (SELECT 1)
    """
    global feed_scheduler

    if settings.disable_scheduler:
        logger.info("Scheduler deshabilitado por DISABLE_SCHEDULER=true")
        return None

    if feed_scheduler is not None and feed_scheduler.running:
        return feed_scheduler

    if not db_is_ready():
        logger.info("No se inicia scheduler porque la DB no está lista.")
        return None

    init_db()

    feed_scheduler = FeedScheduler(queue or RQJobQueue.from_settings())
    # primer tick al arranque, sin esperar el intervalo
    feed_scheduler.tick()
    feed_scheduler.start()
    logger.info("Scheduler iniciado (tick=%ss)", feed_scheduler.tick_seconds)
    return feed_scheduler


def stop_scheduler() -> None:
    if feed_scheduler is not None:
        feed_scheduler.shutdown()


def run_worker() -> None:
    """Proceso worker: consume la cola de fetch."""
    configure_logging()
    init_db()
    RQJobQueue.from_settings().work()
