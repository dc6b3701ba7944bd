from __future__ import annotations
import sys

import httpx
import json
import logging
import os
from typing import Any, Dict, Iterable, Optional

from .infra.sql import make_async_engine

from .categories import CategoryMapper
from .errors import CategoryMapError, MailError
from .helpers import ct_equal, digits_only, is_valid_email, to_iso
from .mailer import EmailDispatcher, MailSender, ResendMailer
from .mailer import render_ticket_email
from .model.db import Base, CATEGORIES
from .model.emailqueue import EmailQueueStore
from .model.participants import ParticipantStore
from .model.queuelock import new_lock, BACKEND as QUEUE_LOCK_BACKEND
from .model.webhooklog import WebhookLogStore
from .pipeline import process_sale_webhook
from .providers import GENERIC_TOKEN_HEADERS, PROVIDERS
from .provisioning import ensure_ticket
from .queueprocessor import MAX_RETRIES, QueueProcessor

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import redis.asyncio as redis

logger = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)

if DATABASE_URL is None:
    print("NEED DATABASE_URL! e.g. sqlite:///./validapass.sqlite")
    sys.exit(1)

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# provider name -> shared secret; empty secrets never authenticate
PROVIDER_SECRETS: Dict[str, str] = {
    name: os.environ.get(p.token_env, "") for name, p in PROVIDERS.items()
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers":
        "authorization, x-client-info, apikey, content-type, "
        "x-admin-token, x-hubla-token, x-hubla-webhook-token, "
        "x-lastlink-token, x-monetizze-token, x-webhook-token",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


engine, SessionAsync, gated = make_async_engine(DATABASE_URL)

category_mapper = CategoryMapper.from_env()


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


app = FastAPI(
    title="ValidaPass",
    default_response_class=ORJSONResponse,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_mailer(request: Request) -> MailSender:
    return ResendMailer(
        api_key=RESEND_API_KEY,
        http=getattr(request.app.state, "http", None),
    )


def get_category_mapper() -> CategoryMapper:
    return category_mapper


def get_queue_lock():
    lock = getattr(app.state, "queue_lock", None)
    if lock is None:
        lock = new_lock(r=getattr(app.state, "redis", None))
        app.state.queue_lock = lock
    return lock


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    enabled = [n for n, s in PROVIDER_SECRETS.items() if s]
    print('\n' * 3)
    print('=' * 50)
    print('ValidaPass is starting up...')
    print(f'   - Webhook providers: {", ".join(enabled) or "NONE"}')
    print(f'   - Offer map entries: {len(category_mapper.offer_map)}')
    print(f'   - Queue lock backend: {QUEUE_LOCK_BACKEND}')
    print(f'   - Mail: {"Resend" if RESEND_API_KEY else "NOT CONFIGURED"}')
    print('=' * 50)
    print('\n' * 3)


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=16
        ),
    )


@app.on_event("startup")
async def _redis_start():
    if QUEUE_LOCK_BACKEND == "redis":
        REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.close()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Helpers
# ----------------------------
def _token_candidates(headers) -> Iterable[str]:
    names = list(GENERIC_TOKEN_HEADERS)
    for p in PROVIDERS.values():
        names.extend(p.token_headers)
    for name in names:
        raw = (headers.get(name) or "").strip()
        if raw.lower().startswith("bearer "):
            raw = raw[7:].strip()
        if raw:
            yield raw


def authenticate_webhook(headers) -> Optional[str]:
    """Provider whose secret matches the presented token, else None."""
    for token in _token_candidates(headers):
        for provider, secret in PROVIDER_SECRETS.items():
            if secret and ct_equal(token, secret):
                return provider
    return None


def require_admin(x_admin_token: Optional[str] = Header(default=None)):
    if not (ADMIN_TOKEN and x_admin_token
            and ct_equal(x_admin_token, ADMIN_TOKEN)):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _parse_body(body: bytes) -> Any:
    if not body:
        return {}
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # keep the raw text for the audit trail
        return {"_raw": text}


def _iso_fields(row: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    out = dict(row)
    for k in keys:
        if k in out:
            out[k] = to_iso(out[k])
    return out


def _clamp(limit: int) -> int:
    return max(1, min(int(limit), 500))


# ----------------------------
# CORS preflight for the function-style endpoints
# ----------------------------
@app.options("/{rest:path}")
async def cors_preflight(rest: str):
    return Response(status_code=200, headers=CORS_HEADERS)


# ----------------------------
# Sales webhook (Hubla / Lastlink / Monetizze)
# ----------------------------
@app.post("/webhooks/sales")
@app.post("/functions/v1/webhook-sales")
async def webhook_sales(
    request: Request,
    db: AsyncSession = Depends(get_db),
    mailer: MailSender = Depends(get_mailer),
    mapper: CategoryMapper = Depends(get_category_mapper),
):
    origin = authenticate_webhook(request.headers)
    if origin is None:
        return ORJSONResponse(
            {"error": "Unauthorized"}, status_code=401, headers=CORS_HEADERS
        )

    payload = _parse_body(await request.body())
    result = await process_sale_webhook(
        db=db,
        gated=gated,
        payload=payload,
        origin=origin,
        mapper=mapper,
        mailer=mailer,
        max_retries=MAX_RETRIES,
    )
    # always 2xx: providers retry-storm on anything else
    return ORJSONResponse(result, headers=CORS_HEADERS)


# ----------------------------
# Email queue
# ----------------------------
@app.post("/functions/v1/process-email-queue")
async def process_email_queue(
    db: AsyncSession = Depends(get_db),
    mailer: MailSender = Depends(get_mailer),
    _: None = Depends(require_admin),
):
    processor = QueueProcessor(
        store=EmailQueueStore(db=db, gated=gated),
        mailer=mailer,
        lock=get_queue_lock(),
    )
    try:
        result = await processor.process()
    except SQLAlchemyError as e:
        logger.exception("email queue run failed")
        return ORJSONResponse(
            {"error": str(e)}, status_code=500, headers=CORS_HEADERS
        )
    return ORJSONResponse(result, headers=CORS_HEADERS)


@app.post("/functions/v1/retry-failed-emails")
async def retry_failed_emails(
    db: AsyncSession = Depends(get_db),
    mailer: MailSender = Depends(get_mailer),
    _: None = Depends(require_admin),
):
    processor = QueueProcessor(
        store=EmailQueueStore(db=db, gated=gated), mailer=mailer
    )
    return {"reset": await processor.retry_failed()}


class TicketEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    participant_id: str = Field(alias="participantId")
    participant_name: str = Field(alias="participantName")
    participant_email: str = Field(alias="participantEmail")
    participant_category: str = Field(alias="participantCategory")
    qr_code_data: str = Field(alias="qrCodeData")


@app.post("/functions/v1/send-ticket-email")
async def send_ticket_email(
    req: TicketEmailRequest,
    mailer: MailSender = Depends(get_mailer),
    _: None = Depends(require_admin),
):
    subject, html = render_ticket_email(
        participant_id=req.participant_id,
        name=req.participant_name,
        email=req.participant_email,
        category=req.participant_category,
        qr_code=req.qr_code_data,
    )
    try:
        resp = await mailer.send(
            to=req.participant_email, subject=subject, html=html
        )
    except MailError as e:
        logger.error("send-ticket-email to %s failed: %s",
                     req.participant_email, e)
        return ORJSONResponse(
            {"error": str(e)}, status_code=500, headers=CORS_HEADERS
        )
    return ORJSONResponse(
        {"success": True, "emailResponse": resp}, headers=CORS_HEADERS
    )


# ----------------------------
# Direct registration and presence validation
# ----------------------------
@app.post("/api/participants", status_code=201)
async def register_participant(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    mailer: MailSender = Depends(get_mailer),
    _: None = Depends(require_admin),
):
    name = " ".join(str(payload.get("name") or "").split())
    email = (payload.get("email") or "").strip().lower()
    phone = digits_only(payload.get("phone")) or None
    category = payload.get("category")
    send_email = payload.get("send_email", True)

    if not name:
        raise HTTPException(400, detail="name is required")
    if not is_valid_email(email):
        raise HTTPException(400, detail="a valid email is required")
    if category not in CATEGORIES:
        raise HTTPException(400, detail="invalid category")

    ps = ParticipantStore(db=db, gated=gated)
    if await ps.get_by_email(email) is not None:
        raise HTTPException(409, detail="email already registered")

    try:
        pid = await ps.create(name=name, email=email, phone=phone,
                              category=category)
    except IntegrityError:
        # a concurrent registration won the unique-email race
        await db.rollback()
        raise HTTPException(409, detail="email already registered")
    ticket_id, _created = await ensure_ticket(ps, pid)

    queued = None
    if send_email:
        dispatcher = EmailDispatcher(
            mailer=mailer,
            queue=EmailQueueStore(db=db, gated=gated),
            participants=ps,
            max_retries=MAX_RETRIES,
        )
        queued = await dispatcher.enqueue_ticket_email(
            participant_id=pid, name=name, email=email, category=category,
        )
    return {
        "participant_id": pid,
        "ticket_id": ticket_id,
        "email_queue_id": queued,
    }


@app.post("/api/tickets/{participant_id}/validate")
async def validate_presence(
    participant_id: str,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    ps = ParticipantStore(db=db, gated=gated)
    result = await ps.mark_present(participant_id)
    if result is None:
        raise HTTPException(404, detail="participant not found")
    participant = await ps.get(participant_id)
    return {"participant": participant, **result}


# ----------------------------
# Operator views
# ----------------------------
@app.get("/api/admin/webhook-logs")
async def api_admin_webhook_logs(
    limit: int = 50,
    status: Optional[str] = None,
    origin: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    logs = WebhookLogStore(db=db, gated=gated)
    rows = await logs.list_logs(limit=_clamp(limit), status=status,
                                origin=origin)
    items = [_iso_fields(r, "processed_at") for r in rows]
    return {"items": items, "limit": _clamp(limit)}


@app.get("/api/admin/email-queue")
async def api_admin_email_queue(
    limit: int = 100,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    store = EmailQueueStore(db=db, gated=gated)
    rows = await store.list_entries(limit=_clamp(limit), status=status)
    items = [
        _iso_fields(r, "scheduled_at", "sent_at", "created_at") for r in rows
    ]
    return {"items": items, "limit": _clamp(limit)}


@app.get("/api/admin/email-queue/stats")
async def api_admin_email_queue_stats(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    return await EmailQueueStore(db=db, gated=gated).count_by_status()


@app.post("/api/admin/offer-map/reload")
async def api_admin_reload_offer_map(
    mapper: CategoryMapper = Depends(get_category_mapper),
    _: None = Depends(require_admin),
):
    try:
        n = mapper.reload()
    except CategoryMapError as e:
        raise HTTPException(400, detail=str(e))
    return {"entries": n}
