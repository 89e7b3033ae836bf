"""
Redis access layer
==================

Một client dùng chung cho session state, escalation queue và metrics mirror.
Mọi operation đi qua `_call`: lỗi được log và trả về giá trị mặc định, caller
kiểm tra `is_connected` để tự chuyển sang in-memory.
"""

import json
import time
import logging
from dataclasses import dataclass
from typing import Optional, Any, List, Callable

import redis

logger = logging.getLogger(__name__)


@dataclass
class RedisConfig:
    url: str = "redis://localhost:6379/0"
    max_connections: int = 20
    socket_timeout: float = 3.0
    socket_connect_timeout: float = 3.0
    retry_on_timeout: bool = True
    health_check_interval: int = 30
    ttl_metrics: int = 86400


def _decode(raw: Any) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


class RedisManager:
    """Bọc redis-py client: connection pool, health check định kỳ, degrade khi Redis down."""

    def __init__(self, config: RedisConfig = None, client=None):
        self.config = config or RedisConfig()
        self._client = client if client is not None else self._create_client()
        self._healthy = False
        self._checked_at = 0.0
        self.refresh()

    def _create_client(self):
        try:
            pool = redis.ConnectionPool.from_url(
                self.config.url,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
                retry_on_timeout=self.config.retry_on_timeout,
                decode_responses=True,
            )
        except ValueError as e:
            logger.warning(f"Invalid Redis URL {self.config.url!r}: {e}")
            return None
        return redis.Redis(connection_pool=pool)

    def refresh(self) -> bool:
        """Ping lại Redis, log khi trạng thái thay đổi."""
        was_healthy = self._healthy
        self._healthy = self.ping()
        self._checked_at = time.time()

        if self._healthy and not was_healthy:
            logger.info("Redis connected")
        elif was_healthy and not self._healthy:
            logger.warning("Redis went away, falling back to in-memory")
        return self._healthy

    @property
    def is_connected(self) -> bool:
        if self._healthy and time.time() - self._checked_at > self.config.health_check_interval:
            self.refresh()
        return self._healthy

    @property
    def client(self):
        """Raw client cho SessionManager / EscalationQueue; None nếu Redis không dùng được."""
        return self._client if self.is_connected else None

    @property
    def ttl_metrics(self) -> int:
        return self.config.ttl_metrics

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def _call(self, op: str, fn: Callable[[Any], Any], default: Any) -> Any:
        if not self.is_connected:
            return default
        try:
            return fn(self._client)
        except Exception as e:
            logger.error(f"Redis {op} failed: {e}")
            return default

    # ==================== Counters ====================

    def incrby(self, key: str, amount: int = 1, ttl: int = None) -> int:
        def op(c):
            value = c.incrby(key, amount)
            if ttl:
                c.expire(key, ttl)
            return int(value)
        return self._call("incrby", op, -1)

    def get_int(self, key: str) -> int:
        return self._call("get", lambda c: int(c.get(key) or 0), 0)

    # ==================== Lists ====================

    def list_push(self, key: str, *values, ttl: int = None) -> int:
        encoded = [v if isinstance(v, str) else json.dumps(v) for v in values]

        def op(c):
            length = c.rpush(key, *encoded)
            if ttl:
                c.expire(key, ttl)
            return length
        return self._call("rpush", op, 0)

    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        return self._call("lrange", lambda c: [_decode(v) for v in c.lrange(key, start, end)], [])

    def list_trim(self, key: str, start: int, end: int) -> bool:
        return self._call("ltrim", lambda c: bool(c.ltrim(key, start, end)), False)

    def delete(self, *keys: str) -> int:
        return self._call("delete", lambda c: c.delete(*keys), 0)

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except Exception as e:
            logger.debug(f"Redis close error: {e}")
        self._client = None
        self._healthy = False
        logger.info("Redis connection closed")


_redis_manager: Optional[RedisManager] = None


def get_redis_manager(config: RedisConfig = None) -> RedisManager:
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisManager(config)
    return _redis_manager


def init_redis(url: str = None, **kwargs) -> RedisManager:
    """Tạo RedisManager global từ URL (REDIS_URL)."""
    global _redis_manager
    config = RedisConfig(url=url, **kwargs) if url else RedisConfig(**kwargs)
    _redis_manager = RedisManager(config)
    return _redis_manager
