# single-process lock for the email queue processor
from __future__ import annotations


class QueueLock:
    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl = ttl_seconds
        self._held = False

    async def acquire(self) -> bool:
        # non-blocking: a second run reports "busy" instead of queueing up.
        # no await between check and set, so this is atomic on one loop
        if self._held:
            return False
        self._held = True
        return True

    async def release(self) -> None:
        self._held = False
