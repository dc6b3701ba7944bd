from __future__ import annotations
from typing import Optional, Dict, Any
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, new_id, event_today
from ..infra.sql import Gated
from .db import Participant, Ticket


class ParticipantStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT id, name, email, phone, category
                  FROM participants WHERE email = :email
                """), {"email": email})).mappings().first()
        return dict(row) if row else None

    async def get(self, participant_id: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT id, name, email, phone, category
                  FROM participants WHERE id = :id
                """), {"id": participant_id})).mappings().first()
        return dict(row) if row else None

    async def create(
        self, *, name: str, email: str, phone: Optional[str], category: str,
        transaction_id: Optional[str] = None,
    ) -> str:
        pid = new_id()
        ts = now_ts()
        async with self.gated():
            async with self.db.begin():
                self.db.add(Participant(
                    id=pid,
                    name=name,
                    email=email,
                    phone=phone or None,
                    category=category,
                    presencas={},
                    transaction_id=transaction_id,
                    created_at=ts,
                    updated_at=ts,
                ))
        return pid

    async def backfill_phone(self, participant_id: str, phone: str) -> bool:
        """Set the phone only where none is stored. True if a row changed."""
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(text("""
                  UPDATE participants
                  SET phone = :phone, updated_at = :now
                  WHERE id = :id AND (phone IS NULL OR phone = '')
                """), {"id": participant_id, "phone": phone, "now": now_ts()})
        return res.rowcount > 0

    async def get_ticket(self, participant_id: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT id, participant_id, qr_code, is_validated,
                         validated_at
                  FROM tickets WHERE participant_id = :pid
                """), {"pid": participant_id})).mappings().first()
        return dict(row) if row else None

    async def create_ticket(self, participant_id: str) -> str:
        tid = new_id()
        ts = now_ts()
        async with self.gated():
            async with self.db.begin():
                self.db.add(Ticket(
                    id=tid,
                    participant_id=participant_id,
                    qr_code=participant_id,
                    is_validated=False,
                    validated_at=None,
                    created_at=ts,
                    updated_at=ts,
                ))
        return tid

    async def mark_present(
        self, participant_id: str, ts: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Presence validation: add today's date to `presencas` and flag the
        ticket as validated.

        Returns None for an unknown participant, otherwise
          {"date": "YYYY-MM-DD", "already_validated": bool,
           "presencas": {...}}
        """
        ts = ts if ts is not None else now_ts()
        today = event_today(ts)
        async with self.gated():
            async with self.db.begin():
                participant = await self.db.get(Participant, participant_id)
                if participant is None:
                    return None
                presencas = dict(participant.presencas or {})
                already = presencas.get(today) is True
                if not already:
                    presencas[today] = True
                    participant.presencas = presencas
                    participant.updated_at = ts
                    await self.db.execute(text("""
                      UPDATE tickets
                      SET is_validated = :yes, validated_at = :ts,
                          updated_at = :ts
                      WHERE participant_id = :pid
                    """), {"yes": True, "ts": ts, "pid": participant_id})
        return {
            "date": today,
            "already_validated": already,
            "presencas": presencas,
        }
