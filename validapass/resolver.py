"""
Field resolution for sale webhooks.

Every field has its own tier list, most specific first. A tier is a path into
the payload; a missing key, a wrong type or an empty value at any depth simply
moves on to the next tier, so resolution never raises on odd payloads.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import math
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Tuple

from .helpers import (
    EVENT_TZ, collapse_ws, digits_only, is_all_caps, is_valid_email,
    to_title_case,
)
from .providers import Path, ProviderPaths, get_provider

FALLBACK_NAME = "Cliente"

# compared lower-cased
PAID_STATUSES = frozenset({
    "paid", "approved", "completed", "complete", "confirmed", "succeeded",
    "aprovado", "aprovada", "pago", "paga", "finalizada", "completa",
    "concluida", "concluída",
})

_MISSING = object()


@dataclass(frozen=True)
class PaidSignal:
    paid: bool
    # status | event | paid_at | assumed
    source: str
    value: Optional[str] = None


@dataclass
class ResolvedSale:
    provider: str
    email: Optional[str] = None
    name: str = FALLBACK_NAME
    name_source: str = "fallback"
    phone: Optional[str] = None
    phone_source: str = "none"
    transaction_id: Optional[str] = None
    amount_cents: Optional[int] = None
    paid_at: Optional[float] = None
    created_at: Optional[float] = None
    offer_id: Optional[str] = None
    offer_name: Optional[str] = None
    offer_name_v2: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    event_type: Optional[str] = None
    paid: PaidSignal = field(
        default_factory=lambda: PaidSignal(True, "assumed")
    )

    @property
    def complete(self) -> bool:
        return bool(self.transaction_id) and is_valid_email(self.email)


# ----------------------------
# path walking
# ----------------------------
def dig(obj: Any, path: Path) -> Any:
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or not -len(cur) <= key < len(cur):
                return _MISSING
            cur = cur[key]
        else:
            if not isinstance(cur, dict) or key not in cur:
                return _MISSING
            cur = cur[key]
    return cur


def _text(value: Any) -> Optional[str]:
    if value is _MISSING or value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return None
    s = str(value).strip()
    return s or None


def first_text(
    root: Any, tiers: Iterable[Tuple[str, Path]]
) -> Tuple[Optional[str], Optional[str]]:
    """(value, tag) of the first tier with a non-empty scalar."""
    for tag, path in tiers:
        value = _text(dig(root, path))
        if value is not None:
            return value, tag
    return None, None


def _alt(provider: ProviderPaths, paths: Tuple[Path, ...], label: str):
    return [(f"{provider.name}.{label}", p) for p in paths]


def payload_root(payload: Any) -> dict:
    if not isinstance(payload, dict):
        return {}
    event = payload.get("event")
    if isinstance(event, dict):
        return event
    return payload


# ----------------------------
# per-field resolution
# ----------------------------
def resolve_email(root: dict, provider: ProviderPaths) -> Optional[str]:
    tiers = [
        ("user.email", ("user", "email")),
        ("customer.email", ("customer", "email")),
        ("buyer.email", ("buyer", "email")),
        ("invoice.payer.email", ("invoice", "payer", "email")),
        ("order.customer.email", ("order", "customer", "email")),
        *_alt(provider, provider.email, "email"),
        ("userEmail", ("userEmail",)),
    ]
    value, _ = first_text(root, tiers)
    return value.lower() if value else None


def resolve_name(root: dict, provider: ProviderPaths) -> Tuple[str, str]:
    first = _text(dig(root, ("user", "firstName"))) or ""
    last = _text(dig(root, ("user", "lastName"))) or ""
    full = collapse_ws(f"{first} {last}")
    if full:
        name, tag = full, "user.first+last"
    else:
        tiers = [
            ("user.name", ("user", "name")),
            ("buyer.name", ("buyer", "name")),
            ("customer.name", ("customer", "name")),
            *_alt(provider, provider.buyer_name, "name"),
            ("userName", ("userName",)),
        ]
        name, tag = first_text(root, tiers)
        if name is None:
            return FALLBACK_NAME, "fallback"
        name = collapse_ws(name)
    if is_all_caps(name):
        name = to_title_case(name)
    return name, tag


def resolve_phone(
    root: dict, provider: ProviderPaths
) -> Tuple[Optional[str], str]:
    tiers = [
        ("user.phone", ("user", "phone")),
        ("buyer.phone", ("buyer", "phone")),
        *_alt(provider, provider.phone, "phone"),
        ("customer.phone", ("customer", "phone")),
        ("userPhone", ("userPhone",)),
        ("whatsapp", ("whatsapp",)),
    ]
    for tag, path in tiers:
        phone = digits_only(_text(dig(root, path)))
        if phone:
            return phone, tag
    return None, "none"


def resolve_transaction_id(
    root: dict, provider: ProviderPaths
) -> Optional[str]:
    tiers = [
        ("invoice.id", ("invoice", "id")),
        ("purchase.id", ("purchase", "id")),
        ("order.id", ("order", "id")),
        *_alt(provider, provider.transaction_id, "transaction_id"),
        ("transactionId", ("transactionId",)),
    ]
    value, _ = first_text(root, tiers)
    return value


def _decimal(value: Any) -> Optional[Decimal]:
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        d = Decimal(str(value))
        return d if d.is_finite() else None
    if not isinstance(value, str):
        return None
    s = value.strip().replace("R$", "").replace(" ", "")
    if "," in s and "." in s:
        # 1.234,56
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def _to_int(d: Decimal) -> int:
    return int(d.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_amount_cents(
    root: dict, provider: ProviderPaths
) -> Optional[int]:
    cents_paths = [
        ("invoice", "amount", "totalCents"),
        ("amount", "totalCents"),
        ("invoice", "amountCents"),
        ("amountCents",),
    ]
    for path in cents_paths:
        d = _decimal(dig(root, path))
        if d is not None:
            return _to_int(d)
    for path in provider.price:
        d = _decimal(dig(root, path))
        if d is not None:
            return _to_int(d * 100)
    # legacy flat total is in major units
    d = _decimal(dig(root, ("totalAmount",)))
    if d is not None:
        return _to_int(d * 100)
    return None


def parse_timestamp(value: Any) -> Optional[float]:
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        # epoch millis vs seconds
        return value / 1000.0 if value > 1e12 else float(value)
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        # providers without an offset send venue-local time
        dt = dt.replace(tzinfo=EVENT_TZ)
    return dt.timestamp()


def _first_timestamp(root: dict, paths: Iterable[Path]) -> Optional[float]:
    for path in paths:
        ts = parse_timestamp(dig(root, path))
        if ts is not None:
            return ts
    return None


def resolve_paid_at(root: dict, provider: ProviderPaths) -> Optional[float]:
    return _first_timestamp(root, [
        ("invoice", "paidAt"),
        ("purchase", "paidAt"),
        *provider.paid_at,
        ("paidAt",),
    ])


def resolve_created_at(
    root: dict, provider: ProviderPaths
) -> Optional[float]:
    return _first_timestamp(root, [
        ("invoice", "createdAt"),
        ("purchase", "createdAt"),
        *provider.created_at,
        ("createdAt",),
    ])


def resolve_offer(root: dict, provider: ProviderPaths) -> dict:
    offer_id, _ = first_text(root, [
        ("offer.id", ("offer", "id")),
        ("invoice.offer.id", ("invoice", "offer", "id")),
        ("products.offers.id", ("products", 0, "offers", 0, "id")),
        *_alt(provider, provider.offer_id, "offer_id"),
        ("offerId", ("offerId",)),
    ])
    offer_name_v2, _ = first_text(root, [
        ("offer.name", ("offer", "name")),
        ("invoice.offer.name", ("invoice", "offer", "name")),
        ("products.offers.name", ("products", 0, "offers", 0, "name")),
        *_alt(provider, provider.offer_name, "offer_name"),
    ])
    offer_name, _ = first_text(root, [("offerName", ("offerName",))])
    product_id, _ = first_text(root, [
        ("product.id", ("product", "id")),
        ("products.id", ("products", 0, "id")),
        *_alt(provider, provider.product_id, "product_id"),
        ("productId", ("productId",)),
    ])
    product_name, _ = first_text(root, [
        ("product.name", ("product", "name")),
        ("products.name", ("products", 0, "name")),
        *_alt(provider, provider.product_name, "product_name"),
        ("productName", ("productName",)),
    ])
    return {
        "offer_id": offer_id,
        "offer_name": offer_name,
        "offer_name_v2": offer_name_v2,
        "product_id": product_id,
        "product_name": product_name,
    }


def resolve_event_type(
    payload: Any, provider: ProviderPaths
) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    value, _ = first_text(payload, [
        ("type", ("type",)),
        ("event", ("event",)),
        *_alt(provider, provider.event_type, "event"),
    ])
    return value


def resolve_paid(
    root: dict, provider: ProviderPaths, event_type: Optional[str],
    paid_at: Optional[float],
) -> PaidSignal:
    status, _ = first_text(root, [
        ("invoice.status", ("invoice", "status")),
        ("purchase.status", ("purchase", "status")),
        ("order.status", ("order", "status")),
        ("status", ("status",)),
        *_alt(provider, provider.status, "status"),
    ])
    if status is not None:
        return PaidSignal(status.lower() in PAID_STATUSES, "status", status)

    if event_type:
        token = event_type.lower()
        if token in provider.paid_events:
            return PaidSignal(True, "event", event_type)
        if token in provider.unpaid_events:
            return PaidSignal(False, "event", event_type)

    if paid_at is not None:
        return PaidSignal(True, "paid_at")

    # no paid signal at all: tolerated
    return PaidSignal(True, "assumed")


def resolve_sale(payload: Any, provider_name: str) -> ResolvedSale:
    provider = get_provider(provider_name)
    root = payload_root(payload)

    name, name_source = resolve_name(root, provider)
    phone, phone_source = resolve_phone(root, provider)
    paid_at = resolve_paid_at(root, provider)
    event_type = resolve_event_type(payload, provider)

    return ResolvedSale(
        provider=provider.name,
        email=resolve_email(root, provider),
        name=name,
        name_source=name_source,
        phone=phone,
        phone_source=phone_source,
        transaction_id=resolve_transaction_id(root, provider),
        amount_cents=resolve_amount_cents(root, provider),
        paid_at=paid_at,
        created_at=resolve_created_at(root, provider),
        event_type=event_type,
        paid=resolve_paid(root, provider, event_type, paid_at),
        **resolve_offer(root, provider),
    )
