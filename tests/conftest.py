"""Pytest configuration and fixtures."""

import os
import tempfile

# the server module reads its configuration at import time
_TMP = tempfile.mkdtemp(prefix="validapass-test-")
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'test.sqlite')}"
)
os.environ.setdefault("HUBLA_WEBHOOK_TOKEN", "hubla-secret")
os.environ.setdefault("LASTLINK_WEBHOOK_TOKEN", "lastlink-secret")
os.environ.setdefault("ADMIN_TOKEN", "admin-secret")
os.environ.pop("MONETIZZE_WEBHOOK_TOKEN", None)
os.environ.pop("OFFER_CATEGORY_MAP", None)
os.environ.pop("OFFER_CATEGORY_MAP_FILE", None)
os.environ.pop("QUEUE_LOCK_BACKEND", None)

import pytest
from sqlalchemy import text

from validapass.categories import CategoryMapper
from validapass.errors import MailError
from validapass.infra.sql import make_async_engine
from validapass.mailer import MailSender
from validapass.model.db import Base


class FakeMailer(MailSender):
    """Records every message; raises MailError while `fail` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, *, to, subject, html):
        if self.fail:
            raise MailError("mail service answered 503: unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return {"id": f"msg-{len(self.sent)}"}


@pytest.fixture
async def engine_bundle():
    engine, SessionAsync, gated = make_async_engine(
        os.environ["DATABASE_URL"]
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine, SessionAsync, gated
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(engine_bundle):
    _, SessionAsync, _ = engine_bundle
    async with SessionAsync() as session:
        yield session


@pytest.fixture
def gated(engine_bundle):
    return engine_bundle[2]


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def failing_mailer():
    return FakeMailer(fail=True)


@pytest.fixture
def mapper():
    return CategoryMapper({"off-camarote": "Camarote"})


@pytest.fixture
def count_rows(db):
    async def _count(table: str) -> int:
        async with db.begin():
            return (await db.execute(
                text(f"SELECT COUNT(*) FROM {table}")
            )).scalar_one()
    return _count


# ----------------------------
# sample payloads
# ----------------------------
def hubla_payload(
    *, invoice_id="inv-1", email="Joana@Example.com", first="Joana",
    last="Prado", name="J. Prado", phone=None, status="paid",
    offer_name="Ingresso Wolf Gold", offer_id="off-gold",
):
    user = {
        "firstName": first,
        "lastName": last,
        "name": name,
        "email": email,
    }
    if phone is not None:
        user["phone"] = phone
    return {
        "type": "invoice.payment_succeeded",
        "version": "2.0.0",
        "event": {
            "user": user,
            "invoice": {
                "id": invoice_id,
                "status": status,
                "amount": {"totalCents": 19700},
                "paidAt": "2025-08-01T12:00:00.000Z",
                "createdAt": "2025-08-01T11:58:00.000Z",
            },
            "offer": {"id": offer_id, "name": offer_name},
            "product": {"id": "prod-1", "name": "Wolf Day Brazil"},
        },
    }


def lastlink_payload(*, payment_id="pay-1", event="Purchase_Order_Confirmed",
                     email="RAFAEL@EXAMPLE.COM", name="RAFAEL DOS SANTOS",
                     phone="+55 (11) 98888-7777"):
    return {
        "Id": "evt-1",
        "IsTest": False,
        "Event": event,
        "CreatedAt": "2025-08-01T12:00:00Z",
        "Data": {
            "Buyer": {"Email": email, "Name": name, "PhoneNumber": phone},
            "Purchase": {
                "PaymentId": payment_id,
                "Price": {"Value": 497.9},
                "PaymentDate": "2025-08-01T12:00:00Z",
            },
            "Offer": {"Id": "off-vip", "Name": "Ingresso VIP"},
            "Products": [{"Id": "prod-1", "Name": "Wolf Day Brazil"}],
        },
    }


@pytest.fixture
def hubla():
    return hubla_payload


@pytest.fixture
def lastlink():
    return lastlink_payload
