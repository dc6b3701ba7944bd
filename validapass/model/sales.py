from __future__ import annotations
import logging
from typing import Optional, Dict, Any, Tuple
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..infra.sql import Gated
from .db import Sale

logger = logging.getLogger(__name__)

# record_sale outcomes
SALE_NEW = "new"
SALE_DUPLICATE = "duplicate"
SALE_FAILED = "failed"


class SaleStore:
    """
    One row per transaction id. The primary key is the dedup anchor: a
    concurrent redelivery that loses the insert race hits IntegrityError and
    is reported as a duplicate.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def get(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT transaction_id, origin, user_email, user_name,
                         user_phone, offer_name, product_name, total_amount,
                         created_at, paid_at
                  FROM sales WHERE transaction_id = :tid
                """), {"tid": transaction_id})).mappings().first()
        return dict(row) if row else None

    async def record_sale(
        self, sale, origin: str
    ) -> Tuple[str, Optional[str]]:
        """
        (SALE_NEW, None)       -> new sale row written
        (SALE_DUPLICATE, None) -> transaction already recorded
        (SALE_FAILED, error)   -> the write failed (logged, not raised)
        """
        tid = sale.transaction_id
        try:
            if await self.get(tid) is not None:
                logger.info("sale %s already recorded", tid)
                return SALE_DUPLICATE, None
            async with self.gated():
                async with self.db.begin():
                    self.db.add(Sale(
                        transaction_id=tid,
                        origin=origin,
                        user_email=sale.email,
                        user_name=sale.name,
                        user_phone=sale.phone or None,
                        offer_name=sale.offer_name or sale.offer_name_v2,
                        product_name=sale.product_name,
                        total_amount=sale.amount_cents,
                        created_at=sale.created_at,
                        paid_at=sale.paid_at,
                    ))
        except IntegrityError:
            # idempotent replay racing the first write
            await self.db.rollback()
            logger.info("sale %s inserted concurrently", tid)
            return SALE_DUPLICATE, None
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("could not record sale %s", tid)
            return SALE_FAILED, str(e)
        return SALE_NEW, None
