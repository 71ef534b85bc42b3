"""
Contrato de la cola de fetch entre el scheduler (productor) y los workers.

El mensaje es {"feed_id": str}. La entrega es at-least-once: un job se puede
repetir, por eso todo consumidor tiene que ser idempotente.

Todas las referencias a rq/redis viven en este módulo.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from redis import Redis
from rq import Queue, Worker

from readerly.core.config import settings

logger = logging.getLogger(__name__)

# Resuelto por el worker rq al ejecutar el job
FETCH_JOB_FUNC = "readerly.workers.jobs.run_fetch_job"


@dataclass(frozen=True)
class FetchJob:
    feed_id: str

    def to_message(self) -> dict[str, str]:
        return {"feed_id": self.feed_id}

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "FetchJob":
        feed_id = message.get("feed_id")
        if not isinstance(feed_id, str) or not feed_id:
            raise ValueError(f"mensaje de fetch inválido: {message!r}")
        return cls(feed_id=feed_id)


class JobQueue(Protocol):
    def enqueue(self, feed_id: str) -> Any:
        """Encola un FetchJob para el feed."""


class RQJobQueue:
    """Cola durable sobre Redis usando rq."""

    def __init__(self, connection: Redis, name: str | None = None):
        self.connection = connection
        self.queue = Queue(name or settings.fetch_queue_name, connection=connection)

    @classmethod
    def from_settings(cls) -> "RQJobQueue":
        return cls(Redis.from_url(settings.redis_url))

    def enqueue(self, feed_id: str):
        job = FetchJob(feed_id)
        return self.queue.enqueue(
            FETCH_JOB_FUNC,
            kwargs=job.to_message(),
            job_timeout=settings.job_timeout_seconds,
            result_ttl=settings.job_result_ttl_seconds,
            failure_ttl=settings.job_failure_ttl_seconds,
        )

    def work(self) -> None:
        logger.info("Worker rq escuchando la cola %s", self.queue.name)
        Worker([self.queue], connection=self.connection).work()


class InMemoryJobQueue:
    """Cola FIFO en proceso (desarrollo y tests)."""

    def __init__(self):
        self.jobs: deque[FetchJob] = deque()

    def __len__(self) -> int:
        return len(self.jobs)

    def enqueue(self, feed_id: str) -> FetchJob:
        job = FetchJob(feed_id)
        self.jobs.append(job)
        return job

    def drain(self, handler: Callable[..., Any]) -> list[Any]:
        results = []
        while self.jobs:
            job = self.jobs.popleft()
            results.append(handler(**job.to_message()))
        return results
