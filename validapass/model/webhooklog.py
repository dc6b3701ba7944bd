from __future__ import annotations
from typing import Optional, Dict, Any, List
from sqlalchemy import text, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, new_id
from ..infra.sql import Gated
from .db import WebhookSalesLog, WebhookRawEvent


class WebhookLogStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def write_raw_event(
        self, *, provider: str, event_type: str,
        transaction_id: Optional[str], payload: Any,
    ) -> str:
        rid = new_id()
        async with self.gated():
            async with self.db.begin():
                self.db.add(WebhookRawEvent(
                    id=rid,
                    provider=provider,
                    type=event_type or "unknown",
                    transaction_id=transaction_id,
                    payload=payload,
                    received_at=now_ts(),
                ))
        return rid

    async def write_audit(self, entry: Dict[str, Any]) -> str:
        lid = new_id()
        async with self.gated():
            async with self.db.begin():
                self.db.add(WebhookSalesLog(
                    id=lid,
                    processed_at=now_ts(),
                    **entry,
                ))
        return lid

    async def list_logs(
        self, *, limit: int = 50, status: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        where = []
        params: Dict[str, Any] = {"lim": int(limit)}
        if status:
            where.append("status = :status")
            params["status"] = status
        if origin:
            where.append("origin = :origin")
            params["origin"] = origin
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                  SELECT id, origin, status, buyer_name, buyer_email,
                         offer_id, offer_name_v2, product_id, product_name,
                         assigned_category, participant_id, amount_cents,
                         name_source, phone_source, error_message,
                         processed_at
                  FROM webhook_sales_logs
                  {clause}
                  ORDER BY processed_at DESC
                  LIMIT :lim
                """), params)).mappings().all()
        return [dict(r) for r in rows]

    async def list_raw_events(
        self, *, limit: int = 100, provider: Optional[str] = None,
    ) -> List[WebhookRawEvent]:
        stmt = select(WebhookRawEvent).order_by(
            WebhookRawEvent.received_at.asc()
        ).limit(int(limit))
        if provider:
            stmt = stmt.where(WebhookRawEvent.provider == provider)
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(stmt)).scalars().all()
        return list(rows)
