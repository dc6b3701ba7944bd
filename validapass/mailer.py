from __future__ import annotations
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import quote

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .errors import MailError, MailNotConfigured
from .model.emailqueue import EmailQueueStore
from .model.participants import ParticipantStore

logger = logging.getLogger(__name__)

RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com")
MAIL_FROM = os.environ.get(
    "MAIL_FROM", "Wolf Day Brazil <noreply@wolfdaybr.com.br>"
)
EVENT_NAME = os.environ.get("EVENT_NAME", "Wolf Day Brazil")
VALIDATION_URL = os.environ.get(
    "VALIDATION_URL", "https://validapass.com.br/validar"
)
QR_IMAGE_URL = "https://api.qrserver.com/v1/create-qr-code/?size=200x200&data="
EVENT_DETAILS = (
    ("Data", os.environ.get("EVENT_DATES", "24 e 25 de setembro de 2025")),
    ("Horário", os.environ.get("EVENT_HOURS", "08h às 20h")),
    ("Local", os.environ.get(
        "EVENT_VENUE",
        "Vibra São Paulo - Av. das Nações Unidas, nº 17955 - São Paulo - SP",
    )),
)

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def render_ticket_email(
    *, participant_id: str, name: str, email: str, category: str,
    qr_code: str,
) -> Tuple[str, str]:
    """(subject, html) for the ticket email."""
    validation_url = f"{VALIDATION_URL}?id={qr_code}"
    html = _templates.get_template("ticket_email.html").render(
        event_name=EVENT_NAME,
        name=name,
        email=email,
        category=category,
        short_id=participant_id[:8].upper() if participant_id else "N/A",
        qr_image_url=QR_IMAGE_URL + quote(validation_url, safe=""),
        event_details=EVENT_DETAILS,
    )
    subject = f"Seu ingresso para o {EVENT_NAME} está pronto!"
    return subject, html


# ----------------------------
# Mail service interface
# ----------------------------
class MailSender(ABC):
    @abstractmethod
    async def send(self, *, to: str, subject: str, html: str) -> dict:
        """Raises MailError when the message was not accepted."""


class ResendMailer(MailSender):
    def __init__(
        self, api_key: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        sender: str = MAIL_FROM, base_url: str = RESEND_API_URL,
    ) -> None:
        self.api_key = api_key
        self.http = http
        self.sender = sender
        self.base_url = base_url.rstrip("/")

    async def send(self, *, to: str, subject: str, html: str) -> dict:
        if not self.api_key:
            raise MailNotConfigured("RESEND_API_KEY is not set")
        body = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {"authorization": f"Bearer {self.api_key}"}
        try:
            if self.http is not None:
                r = await self.http.post(
                    f"{self.base_url}/emails", json=body, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    r = await client.post(
                        f"{self.base_url}/emails", json=body, headers=headers
                    )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MailError(
                f"mail service answered {e.response.status_code}: "
                f"{e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise MailError(f"mail service unreachable: {e}") from e
        return r.json()


# ----------------------------
# Email dispatch gateway
# ----------------------------
class EmailDispatcher:
    """
    One inline send attempt; anything that goes wrong turns into a pending
    queue entry for the queue processor.
    """

    def __init__(
        self, *, mailer: MailSender, queue: EmailQueueStore,
        participants: ParticipantStore, max_retries: int = 3,
    ) -> None:
        self.mailer = mailer
        self.queue = queue
        self.participants = participants
        self.max_retries = max_retries

    async def _render(self, participant_id, name, email, category):
        ticket = await self.participants.get_ticket(participant_id)
        qr_code = ticket["qr_code"] if ticket else participant_id
        return render_ticket_email(
            participant_id=participant_id, name=name, email=email,
            category=category, qr_code=qr_code,
        )

    async def enqueue_ticket_email(
        self, *, participant_id: str, name: str, email: str, category: str,
    ) -> str:
        subject, html = await self._render(
            participant_id, name, email, category
        )
        return await self.queue.enqueue(
            participant_id=participant_id, email=email, subject=subject,
            html=html, max_retries=self.max_retries,
        )

    async def dispatch(
        self, *, participant_id: str, name: str, email: str, category: str,
    ) -> str:
        """'sent' | 'queued' | 'failed'"""
        subject, html = await self._render(
            participant_id, name, email, category
        )
        try:
            await self.mailer.send(to=email, subject=subject, html=html)
            logger.info("ticket email sent to %s", email)
            return "sent"
        except Exception as e:
            logger.warning("inline send to %s failed (%s); queueing",
                           email, e)
            error = str(e)

        try:
            qid = await self.queue.enqueue(
                participant_id=participant_id, email=email, subject=subject,
                html=html, max_retries=self.max_retries,
            )
        except Exception:
            await self.queue.db.rollback()
            logger.exception("could not queue ticket email for %s", email)
            return "failed"
        logger.info("ticket email for %s queued as %s (%s)", email, qid,
                    error)
        return "queued"
