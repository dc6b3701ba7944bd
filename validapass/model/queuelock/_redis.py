# cross-process lock for the email queue processor
from __future__ import annotations
import uuid
import redis.asyncio as redis

LOCK_KEY = "emailqueue:lock"

# delete the key only if we still own it
_RELEASE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


class QueueLock:
    def __init__(self, r: redis.Redis, ttl_seconds: int = 300) -> None:
        self.r = r
        self.ttl = ttl_seconds
        self._token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        # NX gate with TTL so a crashed worker cannot hold it forever
        ok = await self.r.set(LOCK_KEY, self._token, nx=True, ex=self.ttl)
        return bool(ok)

    async def release(self) -> None:
        await self.r.eval(_RELEASE_LUA, 1, LOCK_KEY, self._token)
