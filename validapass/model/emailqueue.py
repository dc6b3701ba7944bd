from __future__ import annotations
from typing import Optional, Dict, Any, List
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, new_id
from ..infra.sql import Gated
from .db import (
    EmailQueueEntry, Q_PENDING, Q_SENDING, Q_SENT, Q_FAILED,
)

QUEUE_COLUMNS = """
  id, participant_id, email, subject, html_content, status, retry_count,
  max_retries, error_message, scheduled_at, sent_at, created_at, updated_at
"""


class EmailQueueStore:
    """
    Every mutation is its own committed transaction; rows are never deleted.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def enqueue(
        self, *, participant_id: str, email: str, subject: str, html: str,
        max_retries: int = 3, scheduled_at: Optional[float] = None,
    ) -> str:
        qid = new_id()
        ts = now_ts()
        async with self.gated():
            async with self.db.begin():
                self.db.add(EmailQueueEntry(
                    id=qid,
                    participant_id=participant_id,
                    email=email,
                    subject=subject,
                    html_content=html,
                    status=Q_PENDING,
                    retry_count=0,
                    max_retries=max_retries,
                    error_message=None,
                    scheduled_at=ts if scheduled_at is None else scheduled_at,
                    sent_at=None,
                    created_at=ts,
                    updated_at=ts,
                ))
        return qid

    async def get(self, qid: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text(f"""
                  SELECT {QUEUE_COLUMNS} FROM email_queue WHERE id = :id
                """), {"id": qid})).mappings().first()
        return dict(row) if row else None

    async def fetch_due(
        self, *, limit: int, now: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        now = now if now is not None else now_ts()
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                  SELECT {QUEUE_COLUMNS} FROM email_queue
                  WHERE status = :pending AND scheduled_at <= :now
                    AND retry_count < max_retries
                  ORDER BY scheduled_at ASC
                  LIMIT :lim
                """), {
                    "pending": Q_PENDING, "now": now, "lim": int(limit)
                })).mappings().all()
        return [dict(r) for r in rows]

    async def fetch_stale_sending(
        self, *, older_than: float
    ) -> List[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                  SELECT {QUEUE_COLUMNS} FROM email_queue
                  WHERE status = :sending AND updated_at < :cutoff
                  ORDER BY updated_at ASC
                """), {
                    "sending": Q_SENDING, "cutoff": older_than
                })).mappings().all()
        return [dict(r) for r in rows]

    async def _update(self, qid: str, **fields) -> None:
        fields["updated_at"] = now_ts()
        assignments = ", ".join(f"{k} = :{k}" for k in fields)
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text(f"UPDATE email_queue SET {assignments} WHERE id = :id"),
                    {"id": qid, **fields},
                )

    async def mark_sending(self, qid: str) -> None:
        await self._update(qid, status=Q_SENDING)

    async def mark_sent(self, qid: str, sent_at: Optional[float] = None) -> None:
        await self._update(
            qid, status=Q_SENT,
            sent_at=sent_at if sent_at is not None else now_ts(),
        )

    async def mark_retry(
        self, qid: str, *, retry_count: int, scheduled_at: float, error: str
    ) -> None:
        await self._update(
            qid, status=Q_PENDING, retry_count=retry_count,
            scheduled_at=scheduled_at, error_message=error,
        )

    async def mark_failed(
        self, qid: str, *, retry_count: int, error: Optional[str]
    ) -> None:
        await self._update(
            qid, status=Q_FAILED, retry_count=retry_count,
            error_message=error,
        )

    async def reset_failed(self, now: Optional[float] = None) -> int:
        now = now if now is not None else now_ts()
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(text("""
                  UPDATE email_queue
                  SET status = :pending, retry_count = 0,
                      error_message = NULL, scheduled_at = :now,
                      updated_at = :now
                  WHERE status = :failed
                """), {"pending": Q_PENDING, "failed": Q_FAILED, "now": now})
        return int(res.rowcount or 0)

    async def list_entries(
        self, *, limit: int = 100, status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"lim": int(limit)}
        clause = ""
        if status:
            clause = "WHERE status = :status"
            params["status"] = status
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                  SELECT id, participant_id, email, subject, status,
                         retry_count, max_retries, error_message,
                         scheduled_at, sent_at, created_at
                  FROM email_queue
                  {clause}
                  ORDER BY created_at DESC
                  LIMIT :lim
                """), params)).mappings().all()
        return [dict(r) for r in rows]

    async def count_by_status(self) -> Dict[str, int]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text("""
                  SELECT status, COUNT(*) AS n FROM email_queue
                  GROUP BY status
                """))).all()
        out = {s: 0 for s in (Q_PENDING, Q_SENDING, Q_SENT, Q_FAILED)}
        for status, n in rows:
            out[status] = int(n)
        return out
