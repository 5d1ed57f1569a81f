"""
Redis 连接：仅在 REDIS__URL 配置后启用，承载幂等键与健康检查
"""
from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Optional, Sequence

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


def _keepalive_options() -> dict:
    # macOS 缺少 TCP_KEEPIDLE
    names = ("TCP_KEEPIDLE", "TCP_KEEPINTVL", "TCP_KEEPCNT")
    if not all(hasattr(socket, n) for n in names):
        return {}
    return {socket.TCP_KEEPIDLE: 1, socket.TCP_KEEPINTVL: 1, socket.TCP_KEEPCNT: 3}


class RedisClient:
    """
    带命名空间的 JSON 键值访问

    写入失败不吞掉：幂等存储要能区分 "键已被占用" 和 "Redis 不可用"。
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def key(self, name: str) -> str:
        return f"{self._namespace}:{name}" if self._namespace else name

    @staticmethod
    def encode(value: Any) -> str:
        return json.dumps(value, default=str, ensure_ascii=False)

    async def get(self, name: str, default: Any = None) -> Any:
        raw = await self._client.get(self.key(name))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(
        self,
        name: str,
        value: Any,
        ttl: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keepttl: bool = False,
    ) -> bool:
        """nx/xx 条件不成立时返回 False；keepttl 时忽略 ttl"""
        expire = None
        if not keepttl:
            expire = ttl if ttl is not None else settings.redis.default_ttl
            expire = expire if expire > 0 else None
        written = await self._client.set(
            self.key(name),
            self.encode(value),
            ex=expire,
            nx=nx,
            xx=xx,
            keepttl=keepttl,
        )
        return bool(written)

    async def eval(self, script: str, names: Sequence[str], *args: Any) -> Any:
        """执行 Lua 脚本；names 按命名空间格式化后作为 KEYS"""
        keys = [self.key(n) for n in names]
        return await self._client.eval(script, len(keys), *keys, *args)

    async def delete(self, *names: str) -> int:
        if not names:
            return 0
        return await self._client.delete(*(self.key(n) for n in names))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False

    async def close(self) -> None:
        await self._client.aclose()


_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    global _instance
    async with _lock:
        if _instance is not None:
            return _instance
        if not settings.redis.url:
            raise RuntimeError("REDIS__URL is not configured")

        namespace = namespace or settings.redis.namespace
        raw = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        await raw.ping()
        _instance = RedisClient(raw, namespace=namespace)
        logger.info("redis_client_initialized", namespace=namespace)
        return _instance


async def get_redis_client() -> RedisClient:
    return _instance if _instance is not None else await init_redis_client()


def redis_enabled() -> bool:
    return _instance is not None


async def shutdown_redis_client() -> None:
    global _instance
    if _instance is None:
        return
    client, _instance = _instance, None
    try:
        await client.close()
        logger.info("redis_client_closed")
    except RedisError as exc:
        logger.error("redis_client_close_failed", error=str(exc))
