from .redis_client import (
    RedisClient,
    get_redis_client,
    init_redis_client,
    redis_enabled,
    shutdown_redis_client,
)

__all__ = [
    "RedisClient",
    "get_redis_client",
    "init_redis_client",
    "redis_enabled",
    "shutdown_redis_client",
]
