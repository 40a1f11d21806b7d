# storefront/cache.py
"""
Read-through cache for catalog listings, kept in Redis.

Keys are versioned per namespace: invalidating a namespace just bumps its
version, so every old key is orphaned at once and ages out on its TTL.
The cache is best effort. With no Redis configured, or Redis failing,
callers simply get a fresh value from the loader.
"""

import json
import logging
from typing import Any, Callable, Optional

import redis

from storefront.config import PRODUCT_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


def _version_key(namespace: str) -> str:
    return f"cache:{namespace}:version"


def get_or_set(
    kv: Optional[redis.Redis],
    namespace: str,
    key: str,
    loader: Callable[[], Any],
    ttl: int = PRODUCT_CACHE_TTL_SECONDS,
) -> Any:
    if kv is None:
        return loader()

    try:
        version = kv.get(_version_key(namespace)) or "0"
        full_key = f"cache:{namespace}:v{version}:{key}"
        cached = kv.get(full_key)
        if cached is not None:
            return json.loads(cached)
    except redis.RedisError as e:
        logger.warning("Cache read failed for %s:%s: %s", namespace, key, e)
        return loader()

    value = loader()
    try:
        kv.set(full_key, json.dumps(value), ex=ttl)
    except redis.RedisError as e:
        logger.warning("Cache write failed for %s:%s: %s", namespace, key, e)
    return value


def invalidate_namespace(kv: Optional[redis.Redis], namespace: str) -> None:
    if kv is None:
        return
    try:
        kv.incr(_version_key(namespace))
    except redis.RedisError as e:
        logger.warning("Cache invalidation failed for %s: %s", namespace, e)
        return
    logger.debug("Invalidated cache namespace %s", namespace)
