from datetime import datetime, timezone

from validapass.resolver import (
    FALLBACK_NAME, parse_timestamp, resolve_sale,
)

from conftest import hubla_payload, lastlink_payload


def test_hubla_sale_resolves_generic_shape():
    sale = resolve_sale(hubla_payload(), "hubla")

    assert sale.complete
    assert sale.email == "joana@example.com"
    assert sale.transaction_id == "inv-1"
    assert sale.amount_cents == 19700
    assert sale.offer_id == "off-gold"
    assert sale.offer_name_v2 == "Ingresso Wolf Gold"
    assert sale.product_name == "Wolf Day Brazil"
    assert sale.paid.paid and sale.paid.source == "status"
    assert sale.paid_at == datetime(
        2025, 8, 1, 12, tzinfo=timezone.utc
    ).timestamp()


def test_first_and_last_name_win_over_full_name():
    sale = resolve_sale(hubla_payload(first="Joana", last="Prado",
                                      name="Someone Else"), "hubla")
    assert sale.name == "Joana Prado"
    assert sale.name_source == "user.first+last"


def test_name_falls_back_through_tiers():
    p = hubla_payload(first="", last="", name="  Carla   Mendes ")
    sale = resolve_sale(p, "hubla")
    assert sale.name == "Carla Mendes"
    assert sale.name_source == "user.name"

    del p["event"]["user"]["name"]
    sale = resolve_sale(p, "hubla")
    assert sale.name == FALLBACK_NAME
    assert sale.name_source == "fallback"


def test_all_caps_names_are_title_cased():
    sale = resolve_sale(hubla_payload(first="MARIA", last="DA SILVA"),
                        "hubla")
    assert sale.name == "Maria da Silva"


def test_phone_keeps_digits_only():
    sale = resolve_sale(hubla_payload(phone="+55 (21) 99999-0000"), "hubla")
    assert sale.phone == "5521999990000"
    assert sale.phone_source == "user.phone"

    sale = resolve_sale(hubla_payload(), "hubla")
    assert sale.phone is None
    assert sale.phone_source == "none"


def test_lastlink_layout():
    sale = resolve_sale(lastlink_payload(), "lastlink")

    assert sale.complete
    assert sale.email == "rafael@example.com"
    assert sale.name == "Rafael dos Santos"
    assert sale.name_source == "lastlink.name"
    assert sale.phone == "5511988887777"
    assert sale.phone_source == "lastlink.phone"
    assert sale.transaction_id == "pay-1"
    assert sale.amount_cents == 49790
    assert sale.offer_id == "off-vip"
    assert sale.offer_name_v2 == "Ingresso VIP"
    assert sale.paid.paid and sale.paid.source == "event"


def test_lastlink_cancellation_is_unpaid():
    sale = resolve_sale(
        lastlink_payload(event="Purchase_Request_Canceled"), "lastlink"
    )
    assert not sale.paid.paid
    assert sale.paid.source == "event"


def test_monetizze_layout_with_brazilian_amount():
    payload = {
        "tipoPostback": {"codigo": 2, "descricao": "Finalizada"},
        "venda": {
            "codigo": "M-100",
            "status": "Finalizada",
            "valor": "1.234,56",
            "dataFinalizada": "2025-08-01 10:00:00",
        },
        "comprador": {
            "nome": "Ana Lima",
            "email": "ana@example.com",
            "telefone": "11 91234-5678",
        },
        "plano": {"codigo": "pl-1", "nome": "Lote Black"},
        "produto": {"codigo": 9, "nome": "Wolf Day Brazil"},
    }
    sale = resolve_sale(payload, "monetizze")

    assert sale.transaction_id == "M-100"
    assert sale.amount_cents == 123456
    assert sale.offer_name_v2 == "Lote Black"
    assert sale.product_id == "9"
    assert sale.phone == "11912345678"
    assert sale.paid.paid

    payload["venda"]["status"] = "Aguardando pagamento"
    assert not resolve_sale(payload, "monetizze").paid.paid


def test_unpaid_status_wins_over_event():
    sale = resolve_sale(hubla_payload(status="pending"), "hubla")
    assert not sale.paid.paid
    assert sale.paid.value == "pending"


def test_missing_paid_signal_is_assumed_paid():
    p = hubla_payload()
    del p["event"]["invoice"]["status"]
    del p["event"]["invoice"]["paidAt"]
    p["type"] = "something.new"
    sale = resolve_sale(p, "hubla")
    assert sale.paid.paid and sale.paid.source == "assumed"


def test_incomplete_and_odd_payloads_never_raise():
    p = hubla_payload()
    del p["event"]["invoice"]["id"]
    assert not resolve_sale(p, "hubla").complete

    assert not resolve_sale(hubla_payload(email="not-an-email"),
                            "hubla").complete

    for odd in ([], "text", None, {"event": "string"}, {"user": [1, 2]}):
        sale = resolve_sale(odd, "hubla")
        assert not sale.complete
        assert sale.name == FALLBACK_NAME


def test_legacy_total_amount_is_major_units():
    payload = {"userEmail": "x@example.com", "transactionId": "t-1",
               "totalAmount": "197.5"}
    sale = resolve_sale(payload, "hubla")
    assert sale.complete
    assert sale.amount_cents == 19750


def test_parse_timestamp():
    utc_noon = datetime(2025, 8, 1, 12, tzinfo=timezone.utc).timestamp()
    assert parse_timestamp("2025-08-01T12:00:00Z") == utc_noon
    assert parse_timestamp(int(utc_noon * 1000)) == utc_noon
    assert parse_timestamp(utc_noon) == utc_noon
    # no offset -> venue time (UTC-3)
    assert parse_timestamp("2025-08-01T09:00:00") == utc_noon
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp(True) is None
