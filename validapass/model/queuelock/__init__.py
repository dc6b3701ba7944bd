# model/queuelock/__init__.py
import os
from typing import Optional
import redis.asyncio as redis

BACKEND = os.getenv("QUEUE_LOCK_BACKEND", "local").lower()  # 'local' | 'redis'

if BACKEND == "redis":
    from ._redis import QueueLock as _QueueLock
else:
    from ._local import QueueLock as _QueueLock


# Factory keeps server.py simple and constructor-agnostic:
def new_lock(*, r: Optional[redis.Redis] = None, ttl_seconds: int = 300):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("QueueLock(redis) requires r=redis.Redis")
        return _QueueLock(r=r, ttl_seconds=ttl_seconds)
    return _QueueLock(ttl_seconds=ttl_seconds)


QueueLock = _QueueLock
__all__ = ["QueueLock", "new_lock", "BACKEND"]
