from validapass.model.queuelock import _local, _redis


class RecordingRedis:
    """Just enough of redis.asyncio.Redis for the lock."""

    def __init__(self):
        self.data = {}
        self.ttl = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttl[key] = ex
        return True

    async def eval(self, script, numkeys, key, token):
        # compare-and-delete, as the Lua script does
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


async def test_local_lock_is_non_blocking():
    lock = _local.QueueLock()
    assert await lock.acquire()
    assert not await lock.acquire()
    await lock.release()
    assert await lock.acquire()


async def test_redis_lock_uses_nx_with_ttl():
    r = RecordingRedis()
    a = _redis.QueueLock(r=r, ttl_seconds=120)
    b = _redis.QueueLock(r=r, ttl_seconds=120)

    assert await a.acquire()
    assert r.ttl[_redis.LOCK_KEY] == 120
    assert not await b.acquire()

    # only the owner can release
    await b.release()
    assert _redis.LOCK_KEY in r.data
    await a.release()
    assert await b.acquire()
