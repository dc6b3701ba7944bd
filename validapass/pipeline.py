"""
Sale webhook pipeline:

  raw event -> resolve -> category -> paid gate -> sale dedup
    -> participant/ticket -> ticket email -> audit row

Steps after the paid gate are independent best-effort writes. Only a missing
participant id aborts the run; the audit row is written on every exit path.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .categories import CategoryMapper
from .infra.sql import Gated
from .mailer import EmailDispatcher, MailSender
from .model.emailqueue import EmailQueueStore
from .model.participants import ParticipantStore
from .model.sales import SALE_DUPLICATE, SALE_FAILED, SALE_NEW, SaleStore
from .model.webhooklog import WebhookLogStore
from .provisioning import ensure_participant, ensure_ticket
from .providers import get_provider
from .resolver import (
    ResolvedSale, payload_root, resolve_event_type, resolve_sale,
    resolve_transaction_id,
)

logger = logging.getLogger(__name__)

# audit statuses
A_SUCCESS = "success"
A_DUPLICATE = "duplicate"
A_SKIPPED = "skipped"
A_SKIPPED_UNPAID = "skipped_unpaid"
A_ERROR = "error"


class AuditScope:
    """
    async with AuditScope(logs, origin, payload) as audit:
        ...

    Exit always writes exactly one webhook_sales_logs row. An exception
    leaving the block is recorded as status 'error' and suppressed.
    """

    def __init__(self, logs: WebhookLogStore, origin: str, payload: Any):
        self.logs = logs
        self.entry: Dict[str, Any] = {
            "origin": origin,
            "status": A_ERROR,
            "raw_payload": payload,
            "buyer_name": None,
            "buyer_email": None,
            "offer_id": None,
            "offer_name_v2": None,
            "product_id": None,
            "product_name": None,
            "assigned_category": None,
            "participant_id": None,
            "amount_cents": None,
            "name_source": None,
            "phone_source": None,
            "error_message": None,
        }

    @property
    def status(self) -> str:
        return self.entry["status"]

    def record_sale(self, sale: ResolvedSale) -> None:
        self.entry.update(
            buyer_name=sale.name,
            buyer_email=sale.email,
            offer_id=sale.offer_id,
            offer_name_v2=sale.offer_name_v2 or sale.offer_name,
            product_id=sale.product_id,
            product_name=sale.product_name,
            amount_cents=sale.amount_cents,
            name_source=sale.name_source,
            phone_source=sale.phone_source,
        )

    def set(self, status: str, error: Optional[str] = None) -> None:
        self.entry["status"] = status
        if error is not None:
            self.entry["error_message"] = error

    def note(self, error: str) -> None:
        # non-fatal problem; keeps the current status
        prev = self.entry["error_message"]
        self.entry["error_message"] = f"{prev}; {error}" if prev else error

    async def __aenter__(self) -> "AuditScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        suppress = isinstance(exc, Exception)
        if suppress:
            logger.error("webhook pipeline failed (%s): %s",
                         self.entry["origin"], exc,
                         exc_info=(exc_type, exc, tb))
            self.entry["status"] = A_ERROR
            self.entry["error_message"] = str(exc) or exc_type.__name__
        try:
            await self.logs.write_audit(self.entry)
        except Exception:
            await self.logs.db.rollback()
            logger.exception("audit row for %s could not be written: %s",
                             self.entry["origin"], self.entry)
        return suppress


async def write_raw_event(
    logs: WebhookLogStore, origin: str, payload: Any
) -> None:
    """Forensic copy of the payload; never blocks the pipeline."""
    try:
        provider = get_provider(origin)
        await logs.write_raw_event(
            provider=origin,
            event_type=resolve_event_type(payload, provider) or "unknown",
            transaction_id=resolve_transaction_id(
                payload_root(payload), provider
            ),
            payload=payload,
        )
    except Exception:
        await logs.db.rollback()
        logger.exception("raw %s event could not be stored", origin)


async def process_sale_webhook(
    *,
    db: AsyncSession,
    gated: Gated,
    payload: Any,
    origin: str,
    mapper: CategoryMapper,
    mailer: MailSender,
    max_retries: int = 3,
) -> Dict[str, Any]:
    logs = WebhookLogStore(db=db, gated=gated)
    participants = ParticipantStore(db=db, gated=gated)
    sales = SaleStore(db=db, gated=gated)
    dispatcher = EmailDispatcher(
        mailer=mailer,
        queue=EmailQueueStore(db=db, gated=gated),
        participants=participants,
        max_retries=max_retries,
    )

    await write_raw_event(logs, origin, payload)

    result: Dict[str, Any] = {"ok": True}
    async with AuditScope(logs, origin, payload) as audit:
        sale = resolve_sale(payload, origin)
        audit.record_sale(sale)

        if not sale.complete:
            audit.set(A_SKIPPED, "payload without email or transaction id")
            logger.info("%s webhook skipped: email=%r transaction=%r",
                        origin, sale.email, sale.transaction_id)
            result["status"] = "skipped"
            return result

        category = mapper.map(
            sale.offer_id, sale.offer_name, sale.offer_name_v2,
            sale.product_name,
        )
        audit.entry["assigned_category"] = category

        if not sale.paid.paid:
            audit.set(
                A_SKIPPED_UNPAID,
                f"not paid ({sale.paid.source}: {sale.paid.value})",
            )
            logger.info("%s sale %s skipped: not paid (%s=%s)", origin,
                        sale.transaction_id, sale.paid.source,
                        sale.paid.value)
            result["status"] = "skipped_unpaid"
            return result

        sale_outcome, sale_error = await sales.record_sale(sale, origin)
        new_sale = sale_outcome == SALE_NEW
        duplicate = sale_outcome == SALE_DUPLICATE
        if sale_outcome == SALE_FAILED:
            audit.note(f"sale record write failed: {sale_error}")

        pid, new_participant = await ensure_participant(
            participants,
            email=sale.email,
            name=sale.name,
            phone=sale.phone,
            category=category,
            transaction_id=sale.transaction_id,
        )
        audit.entry["participant_id"] = pid

        ticket_id, new_ticket = await ensure_ticket(participants, pid)
        if ticket_id is None:
            audit.note("ticket creation failed")

        email_status = None
        # redelivery of a sale whose ticket already exists sends nothing
        if not duplicate or new_ticket:
            try:
                stored = await participants.get(pid) or {}
                email_status = await dispatcher.dispatch(
                    participant_id=pid,
                    name=stored.get("name") or sale.name,
                    email=sale.email,
                    category=stored.get("category") or category,
                )
            except Exception as e:
                await db.rollback()
                logger.exception("ticket email for %s not dispatched",
                                 sale.email)
                audit.note(f"email dispatch failed: {e}")
                email_status = "failed"
            if email_status == "failed":
                audit.note("ticket email neither sent nor queued")

        audit.set(A_DUPLICATE if duplicate else A_SUCCESS)
        result.update(
            status="processed",
            duplicate=duplicate,
            sale_recorded=new_sale,
            participant_id=pid,
            new_participant=new_participant,
            new_ticket=new_ticket,
            email=email_status,
        )

    if audit.status == A_ERROR:
        result = {"ok": True, "status": "error"}
    return result
