"""
Email queue processor.

Per entry: pending -> sending -> sent | pending (retry) | failed.
Batches are sent one at a time with a fixed pause in between so the mail
provider's requests-per-second ceiling is never hit.
"""
from __future__ import annotations
import asyncio
import logging
import os
from typing import Any, Dict, Optional

from .helpers import now_ts
from .mailer import MailSender
from .model.emailqueue import EmailQueueStore

logger = logging.getLogger(__name__)

BATCH_SIZE = int(os.getenv("EMAIL_BATCH_SIZE", "10"))
# Resend allows 2 req/s
SEND_INTERVAL = float(os.getenv("EMAIL_SEND_INTERVAL", "0.6"))
# backoff = retry_count * RETRY_DELAY
RETRY_DELAY = float(os.getenv("EMAIL_RETRY_DELAY", str(5 * 60)))
MAX_RETRIES = int(os.getenv("EMAIL_MAX_RETRIES", "3"))
SENDING_STALE_SECONDS = float(os.getenv("EMAIL_SENDING_STALE", str(10 * 60)))

STALE_ERROR = "envio interrompido (status 'sending' expirado)"


class QueueProcessor:
    def __init__(
        self, *, store: EmailQueueStore, mailer: MailSender, lock=None,
        batch_size: int = BATCH_SIZE, send_interval: float = SEND_INTERVAL,
        retry_delay: float = RETRY_DELAY,
        stale_after: float = SENDING_STALE_SECONDS,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.lock = lock
        self.batch_size = batch_size
        self.send_interval = send_interval
        self.retry_delay = retry_delay
        self.stale_after = stale_after

    async def _fail_attempt(
        self, entry: Dict[str, Any], error: str, now: float
    ) -> str:
        retry_count = int(entry["retry_count"]) + 1
        if retry_count >= int(entry["max_retries"]):
            await self.store.mark_failed(
                entry["id"], retry_count=retry_count, error=error
            )
            return "failed"
        await self.store.mark_retry(
            entry["id"],
            retry_count=retry_count,
            scheduled_at=now + retry_count * self.retry_delay,
            error=error,
        )
        return "pending"

    async def reclaim_stale(self, now: Optional[float] = None) -> int:
        """
        Rows left in 'sending' by a crashed run count as one failed attempt.
        """
        now = now if now is not None else now_ts()
        stale = await self.store.fetch_stale_sending(
            older_than=now - self.stale_after
        )
        for entry in stale:
            state = await self._fail_attempt(entry, STALE_ERROR, now)
            logger.warning("queue entry %s reclaimed from 'sending' -> %s",
                           entry["id"], state)
        return len(stale)

    async def process(self) -> Dict[str, Any]:
        if self.lock is not None and not await self.lock.acquire():
            logger.info("email queue run skipped: another run holds the lock")
            return {
                "message": "Processamento já em andamento",
                "processed": 0, "successful": 0, "failed": 0,
            }
        try:
            return await self._process()
        finally:
            if self.lock is not None:
                await self.lock.release()

    async def _process(self) -> Dict[str, Any]:
        await self.reclaim_stale()

        # exhausted entries are never selected, so they cannot fill a batch
        entries = await self.store.fetch_due(limit=self.batch_size)
        if not entries:
            logger.info("no pending emails")
            return {
                "message": "Nenhum email pendente",
                "processed": 0, "successful": 0, "failed": 0,
            }

        logger.info("processing %d queued emails", len(entries))
        successful = 0
        failed = 0
        for i, entry in enumerate(entries):
            if i > 0 and self.send_interval > 0:
                await asyncio.sleep(self.send_interval)

            await self.store.mark_sending(entry["id"])
            try:
                await self.mailer.send(
                    to=entry["email"],
                    subject=entry["subject"],
                    html=entry["html_content"],
                )
            except Exception as e:
                state = await self._fail_attempt(entry, str(e), now_ts())
                logger.warning("queued email %s to %s failed (%s) -> %s",
                               entry["id"], entry["email"], e, state)
                failed += 1
                continue

            await self.store.mark_sent(entry["id"])
            logger.info("queued email %s sent to %s", entry["id"],
                        entry["email"])
            successful += 1

        result = {
            "message": "Processamento concluído",
            "processed": len(entries),
            "successful": successful,
            "failed": failed,
        }
        logger.info("email queue run finished: %s", result)
        return result

    async def retry_failed(self) -> int:
        n = await self.store.reset_failed()
        logger.info("%d failed emails rescheduled", n)
        return n
