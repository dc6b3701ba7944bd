import json

import httpx
import pytest

from validapass.errors import MailError, MailNotConfigured
from validapass.helpers import to_title_case
from validapass.mailer import ResendMailer, render_ticket_email


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_resend_request_shape():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    async with _client(handler) as http:
        mailer = ResendMailer(api_key="re_key", http=http,
                              sender="Evento <no-reply@example.com>",
                              base_url="https://mail.test/")
        resp = await mailer.send(to="a@example.com", subject="Oi",
                                 html="<b>x</b>")

    assert resp == {"id": "re_123"}
    assert seen["url"] == "https://mail.test/emails"
    assert seen["auth"] == "Bearer re_key"
    assert seen["body"] == {
        "from": "Evento <no-reply@example.com>",
        "to": ["a@example.com"],
        "subject": "Oi",
        "html": "<b>x</b>",
    }


async def test_rejected_message_raises_mail_error():
    def handler(request):
        return httpx.Response(422, json={"message": "invalid `to`"})

    async with _client(handler) as http:
        mailer = ResendMailer(api_key="re_key", http=http)
        with pytest.raises(MailError) as e:
            await mailer.send(to="x", subject="s", html="h")
    assert "422" in str(e.value)


async def test_unreachable_service_raises_mail_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as http:
        mailer = ResendMailer(api_key="re_key", http=http)
        with pytest.raises(MailError):
            await mailer.send(to="x@example.com", subject="s", html="h")


async def test_missing_api_key():
    with pytest.raises(MailNotConfigured):
        await ResendMailer(api_key="").send(to="a@b.co", subject="s",
                                            html="h")


def test_ticket_email_rendering():
    subject, html = render_ticket_email(
        participant_id="abcdef1234", name="Léo <script>", email="leo@x.com",
        category="Wolf Black", qr_code="abcdef1234",
    )
    assert "está pronto" in subject
    assert "ABCDEF12" in html
    assert "Wolf Black" in html
    assert "<script>" not in html
    assert "data=https%3A%2F%2F" in html
    assert "abcdef1234" in html


def test_title_case_keeps_prepositions_lower():
    assert to_title_case("JOSÉ DOS SANTOS E SILVA") == "José dos Santos e Silva"
    assert to_title_case("DA COSTA") == "Da Costa"
