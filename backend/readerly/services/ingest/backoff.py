from __future__ import annotations

import random
from datetime import timedelta

BASE_DELAY = timedelta(minutes=1)
MAX_EXPONENT = 10
MAX_DELAY = timedelta(hours=6)
MAX_JITTER = timedelta(seconds=30)


def base_delay(failure_count: int) -> timedelta:
    """
    Delay exponencial sin jitter: 1m * 2^n, con n acotado a 10 y tope de 6h.
    """
    exponent = min(max(failure_count, 0), MAX_EXPONENT)
    return min(BASE_DELAY * (2 ** exponent), MAX_DELAY)


def backoff_delay(failure_count: int, rng: random.Random | None = None) -> timedelta:
    """
    Delay hasta el próximo intento tras `failure_count` fallos consecutivos.
    El jitter (hasta 30s) evita que muchos feeds caídos reintenten a la vez.
    """
    rng = rng or random
    jitter = rng.uniform(0, MAX_JITTER.total_seconds())
    return base_delay(failure_count) + timedelta(seconds=jitter)
