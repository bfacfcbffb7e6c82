"""Rate limit por janela fixa.

Os contadores ficam em memória do processo por padrão ou no Redis quando
``REDIS_URL`` está configurado (necessário com mais de um worker).
"""
import math
import threading
import time
from typing import Callable, Optional

import redis

from qrsaas import config
from qrsaas.app_logger import get_logger
from qrsaas.errors import DependencyUnavailable, RateLimited

logger = get_logger("ratelimit")


class MemoryCounter:
    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 500):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}
        self._sweep_every = sweep_every
        self._calls = 0

    def _current(self, key: str, now: float) -> tuple[float, int]:
        expires_at, count = self._windows.get(key, (0.0, 0))
        if expires_at <= now:
            self._windows.pop(key, None)
            return 0.0, 0
        return expires_at, count

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._windows.items() if expires_at <= now]
        for key in expired:
            del self._windows[key]

    def size(self) -> int:
        with self._lock:
            return len(self._windows)

    def incr(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Incrementa e devolve (contagem, segundos até a janela fechar)."""
        with self._lock:
            now = self._clock()
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)
            expires_at, count = self._current(key, now)
            if not count:
                expires_at = now + window_seconds
            count += 1
            self._windows[key] = (expires_at, count)
        return count, math.ceil(expires_at - now)

    def get(self, key: str) -> tuple[int, int]:
        with self._lock:
            now = self._clock()
            expires_at, count = self._current(key, now)
        return count, max(math.ceil(expires_at - now), 0)


class RedisCounter:
    def __init__(self, client: redis.Redis):
        self.client = client

    def incr(self, key: str, window_seconds: int) -> tuple[int, int]:
        try:
            pipe = self.client.pipeline()
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = pipe.execute()
            if ttl < 0:
                self.client.expire(key, window_seconds)
                ttl = window_seconds
        except redis.RedisError as exc:
            logger.warning("Backend de rate limit indisponível: %s", exc)
            raise DependencyUnavailable() from exc
        return int(count), int(ttl)

    def get(self, key: str) -> tuple[int, int]:
        try:
            value = self.client.get(key)
            ttl = self.client.ttl(key)
        except redis.RedisError as exc:
            logger.warning("Backend de rate limit indisponível: %s", exc)
            raise DependencyUnavailable() from exc
        return int(value or 0), max(int(ttl), 0)


class FixedWindowRateLimiter:
    def __init__(self, limit: int, window_seconds: int, counter=None, scope: str = ""):
        self.limit = limit
        self.window_seconds = window_seconds
        self.counter = counter if counter is not None else MemoryCounter()
        self.scope = scope

    def _key(self, key: str) -> str:
        return f"rate:{self.scope}:{key}" if self.scope else f"rate:{key}"

    def hit(self, key: str) -> int:
        """Conta uma requisição; acima do limite levanta ``RateLimited``."""
        count, ttl = self.counter.incr(self._key(key), self.window_seconds)
        if count > self.limit:
            logger.info("Rate limit %s excedido por %s", self.scope or "-", key)
            raise RateLimited(retry_after=ttl or self.window_seconds)
        return self.limit - count

    def check(self, key: str) -> None:
        """Só verifica, sem contar (usado no login, que conta apenas falhas)."""
        count, ttl = self.counter.get(self._key(key))
        if count >= self.limit:
            raise RateLimited(retry_after=ttl or self.window_seconds)


def build_counter(redis_url: Optional[str] = None):
    redis_url = redis_url or config.REDIS_URL
    if redis_url:
        return RedisCounter(redis.Redis.from_url(redis_url, decode_responses=True))
    return MemoryCounter()


class RateLimiters:
    def __init__(self, counter=None):
        if counter is None:
            counter = build_counter()
        self.scan = FixedWindowRateLimiter(
            config.SCAN_RATE_LIMIT, config.SCAN_RATE_WINDOW_SECONDS, counter, "scan"
        )
        self.create = FixedWindowRateLimiter(
            config.QR_CREATE_RATE_LIMIT, config.QR_CREATE_RATE_WINDOW_SECONDS, counter, "create"
        )
        self.auth = FixedWindowRateLimiter(
            config.AUTH_RATE_LIMIT, config.AUTH_RATE_WINDOW_SECONDS, counter, "auth"
        )


_limiters: Optional[RateLimiters] = None


def get_rate_limiters() -> RateLimiters:
    global _limiters
    if _limiters is None:
        _limiters = RateLimiters()
    return _limiters
