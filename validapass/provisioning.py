from __future__ import annotations
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ProvisioningError
from .model.participants import ParticipantStore

logger = logging.getLogger(__name__)


async def ensure_participant(
    ps: ParticipantStore,
    *,
    email: str,
    name: str,
    phone: Optional[str],
    category: str,
    transaction_id: Optional[str] = None,
) -> Tuple[str, bool]:
    """
    Exactly one participant per email.

    Returns (participant_id, created). An existing participant keeps its name;
    its phone is only filled in when empty. Raises ProvisioningError when no
    participant id can be obtained.
    """
    try:
        existing = await ps.get_by_email(email)
        if existing is None:
            try:
                pid = await ps.create(
                    name=name, email=email, phone=phone, category=category,
                    transaction_id=transaction_id,
                )
                logger.info("participant %s created for %s", pid, email)
                return pid, True
            except IntegrityError:
                # lost the unique-email race; the winner's row is the one
                await ps.db.rollback()
                existing = await ps.get_by_email(email)
                if existing is None:
                    raise
    except SQLAlchemyError as e:
        raise ProvisioningError(
            f"could not provision participant for {email}: {e}"
        ) from e

    pid = existing["id"]
    if phone and not existing.get("phone"):
        try:
            if await ps.backfill_phone(pid, phone):
                logger.info("participant %s: phone backfilled", pid)
        except SQLAlchemyError:
            await ps.db.rollback()
            logger.exception("participant %s: phone backfill failed", pid)
    return pid, False


async def ensure_ticket(
    ps: ParticipantStore, participant_id: str
) -> Tuple[Optional[str], bool]:
    """
    Returns (ticket_id, created). Failures are logged and reported as
    (None, False); the participant stays valid without a ticket.
    """
    try:
        ticket = await ps.get_ticket(participant_id)
        if ticket is not None:
            return ticket["id"], False
        try:
            tid = await ps.create_ticket(participant_id)
        except IntegrityError:
            await ps.db.rollback()
            ticket = await ps.get_ticket(participant_id)
            if ticket is None:
                raise
            return ticket["id"], False
        logger.info("ticket %s created for participant %s", tid,
                    participant_id)
        return tid, True
    except SQLAlchemyError:
        await ps.db.rollback()
        logger.exception("ticket creation failed for participant %s",
                         participant_id)
        return None, False
