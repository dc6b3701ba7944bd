"""
Per-provider payload shapes.

Hubla v2 payloads are the "generic" shape the resolver reads first
(`user.*`, `invoice.*`, `offer.*`, ...). Everything a provider sends in its
own layout is described here as alternate paths, so the resolver never grows
provider branches. Paths are tuples of dict keys / list indexes, relative to
the resolution root (the `event` object when present, else the payload).
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple, Union

PathKey = Union[str, int]
Path = Tuple[PathKey, ...]


@dataclass(frozen=True)
class ProviderPaths:
    name: str
    # env var holding the shared secret for this provider
    token_env: str
    # provider-specific auth headers (besides "authorization")
    token_headers: Tuple[str, ...] = ()

    email: Tuple[Path, ...] = ()
    buyer_name: Tuple[Path, ...] = ()
    phone: Tuple[Path, ...] = ()
    transaction_id: Tuple[Path, ...] = ()
    # decimal price in major units ("197.00", 197.0)
    price: Tuple[Path, ...] = ()
    paid_at: Tuple[Path, ...] = ()
    created_at: Tuple[Path, ...] = ()
    offer_id: Tuple[Path, ...] = ()
    offer_name: Tuple[Path, ...] = ()
    product_id: Tuple[Path, ...] = ()
    product_name: Tuple[Path, ...] = ()

    # explicit status field, if the provider has one
    status: Tuple[Path, ...] = ()
    # event-type token, read from the top level of the payload
    # (lower-cased before lookup)
    event_type: Tuple[Path, ...] = ()
    paid_events: FrozenSet[str] = field(default_factory=frozenset)
    unpaid_events: FrozenSet[str] = field(default_factory=frozenset)


HUBLA = ProviderPaths(
    name="hubla",
    token_env="HUBLA_WEBHOOK_TOKEN",
    token_headers=("x-hubla-token", "x-hubla-webhook-token"),
    event_type=(("type",),),
    paid_events=frozenset({
        "invoice.payment_succeeded",
        "invoice.paid",
        "customer.member_added",
        "newsale",
        "sale.approved",
    }),
    unpaid_events=frozenset({
        "invoice.payment_failed",
        "invoice.refunded",
        "invoice.expired",
        "invoice.created",
        "subscription.canceled",
        "canceledsale",
        "refundedsale",
        "abandonedcheckout",
    }),
)

LASTLINK = ProviderPaths(
    name="lastlink",
    token_env="LASTLINK_WEBHOOK_TOKEN",
    token_headers=("x-lastlink-token",),
    email=(("Data", "Buyer", "Email"),),
    buyer_name=(("Data", "Buyer", "Name"),),
    phone=(("Data", "Buyer", "PhoneNumber"), ("Data", "Buyer", "Phone")),
    transaction_id=(
        ("Data", "Purchase", "PaymentId"),
        ("Data", "Purchase", "OrderId"),
    ),
    price=(("Data", "Purchase", "Price", "Value"),),
    paid_at=(("Data", "Purchase", "PaymentDate"),),
    created_at=(("CreatedAt",), ("Data", "Purchase", "OrderDate")),
    offer_id=(("Data", "Offer", "Id"),),
    offer_name=(("Data", "Offer", "Name"),),
    product_id=(("Data", "Products", 0, "Id"),),
    product_name=(("Data", "Products", 0, "Name"),),
    # no explicit status field: Lastlink only says what happened
    event_type=(("Event",),),
    paid_events=frozenset({
        "purchase_order_confirmed",
        "product_access_started",
    }),
    unpaid_events=frozenset({
        "purchase_request_canceled",
        "purchase_request_expired",
        "payment_refund",
        "payment_chargeback",
        "abandoned_cart",
        "subscription_canceled",
    }),
)

MONETIZZE = ProviderPaths(
    name="monetizze",
    token_env="MONETIZZE_WEBHOOK_TOKEN",
    token_headers=("x-monetizze-token",),
    email=(("comprador", "email"),),
    buyer_name=(("comprador", "nome"),),
    phone=(("comprador", "telefone"), ("comprador", "celular")),
    transaction_id=(("venda", "codigo"), ("chave_unica",)),
    price=(("venda", "valor"), ("venda", "valorRecebido")),
    paid_at=(("venda", "dataFinalizada"),),
    created_at=(("venda", "dataInicio"),),
    offer_id=(("plano", "codigo"),),
    offer_name=(("plano", "nome"), ("plano", "referencia")),
    product_id=(("produto", "codigo"),),
    product_name=(("produto", "nome"),),
    status=(("venda", "status"),),
    event_type=(("tipoPostback", "descricao"),),
)

PROVIDERS: Dict[str, ProviderPaths] = {
    p.name: p for p in (HUBLA, LASTLINK, MONETIZZE)
}

# generic headers any provider may use for its token
GENERIC_TOKEN_HEADERS = ("authorization", "x-webhook-token")


def get_provider(name: str) -> ProviderPaths:
    # unknown origins resolve with the generic shape only
    return PROVIDERS.get(name) or ProviderPaths(name=name, token_env="")
