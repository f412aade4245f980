"""Validation + coercion schemas for Shopify webhook payloads.

Shopify sends most numbers as strings ("49.99", "2"), ids as ints or
strings, and sometimes `[]` where an address object is expected. These
models coerce all of that into strict Python types before extraction:

    ids        int | str          -> str
    money      str | int | float  -> Decimal   (non-numeric -> Decimal(0))
    quantity   str | int          -> int       (invalid -> 1)
    timestamps ISO-8601 string    -> datetime  (invalid -> None)

Only structural problems (a missing `id`, a refund without `order_id`, a
non-object payload) are rejected. validate_payload() returns a tagged
result instead of raising, so callers branch on the outcome.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError


# ──────────────────────────────────────────────
# Coercions
# ──────────────────────────────────────────────

def _coerce_id(value):
    if isinstance(value, bool):
        return value  # let pydantic reject it
    if isinstance(value, int):
        return str(value)
    return value


def _coerce_optional_id(value):
    if value is None or value == "":
        return None
    return _coerce_id(value)


def _coerce_money(value):
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(0)
    if isinstance(value, float):
        # str() gives the shortest round-tripping repr: 12.5 -> "12.5"
        value = str(value)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal(0)
    return amount if amount.is_finite() else Decimal(0)


def _coerce_quantity(value):
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, TypeError):
        return 1


def _coerce_datetime(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _coerce_optional_str(value):
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


def _empty_list_to_none(value):
    if isinstance(value, list) and not value:
        return None
    return value


def _normalize_properties(value):
    """Orders send [{name, value}], checkouts send {key: value}."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {
            str(k): "" if v is None else str(v) for k, v in value.items()
        }
    if isinstance(value, list):
        props = {}
        for prop in value:
            if isinstance(prop, dict) and "name" in prop:
                v = prop.get("value")
                props[str(prop["name"])] = "" if v is None else str(v)
        return props
    return {}


ShopifyId = Annotated[str, BeforeValidator(_coerce_id)]
OptionalId = Annotated[Optional[str], BeforeValidator(_coerce_optional_id)]
Money = Annotated[Decimal, BeforeValidator(_coerce_money)]
Quantity = Annotated[int, BeforeValidator(_coerce_quantity)]
Timestamp = Annotated[Optional[datetime], BeforeValidator(_coerce_datetime)]
OptionalStr = Annotated[Optional[str], BeforeValidator(_coerce_optional_str)]
Properties = Annotated[dict[str, str], BeforeValidator(_normalize_properties)]


class _Payload(BaseModel):
    # Unknown keys are kept: Shopify adds fields without notice.
    model_config = ConfigDict(extra="allow")


# ──────────────────────────────────────────────
# Nested objects
# ──────────────────────────────────────────────

class Address(_Payload):
    first_name: OptionalStr = None
    last_name: OptionalStr = None
    name: OptionalStr = None
    address1: OptionalStr = None
    address2: OptionalStr = None
    city: OptionalStr = None
    province: OptionalStr = None
    province_code: OptionalStr = None
    country: OptionalStr = None
    country_code: OptionalStr = None
    zip: OptionalStr = None
    phone: OptionalStr = None
    company: OptionalStr = None


MaybeAddress = Annotated[Optional[Address], BeforeValidator(_empty_list_to_none)]


class LineItem(_Payload):
    id: OptionalId = None  # checkouts may only carry `key`
    key: OptionalStr = None
    title: OptionalStr = ""
    variant_title: OptionalStr = None
    sku: OptionalStr = None
    quantity: Quantity = 1
    price: Money = Decimal(0)
    line_price: Optional[Money] = None
    total_discount: Optional[Money] = None
    properties: Properties = Field(default_factory=dict)
    product_id: OptionalId = None
    variant_id: OptionalId = None


class ShippingLine(_Payload):
    title: OptionalStr = None
    price: Optional[Money] = None
    phone: OptionalStr = None


class CustomerPayload(_Payload):
    """customers/create, customers/update (and the nested `customer`)."""

    id: ShopifyId
    email: OptionalStr = None
    first_name: OptionalStr = None
    last_name: OptionalStr = None
    phone: OptionalStr = None
    default_address: MaybeAddress = None
    total_spent: Optional[Money] = None
    orders_count: Optional[Quantity] = None
    tags: OptionalStr = None
    note: OptionalStr = None
    accepts_marketing: Optional[bool] = None


class ShopMoney(_Payload):
    amount: Optional[Money] = None
    currency_code: OptionalStr = None


class ShopMoneySet(_Payload):
    shop_money: Optional[ShopMoney] = None


class RefundTransaction(_Payload):
    amount: Money = Decimal(0)
    currency: OptionalStr = None
    kind: OptionalStr = None
    status: OptionalStr = None


class RefundLineItem(_Payload):
    id: ShopifyId
    line_item_id: OptionalId = None
    quantity: Quantity = 1
    line_item: Optional[LineItem] = None


# ──────────────────────────────────────────────
# Topic payloads
# ──────────────────────────────────────────────

class CheckoutPayload(_Payload):
    """checkouts/create, checkouts/update."""

    id: ShopifyId
    token: OptionalStr = None
    cart_token: OptionalStr = None
    email: OptionalStr = None
    phone: OptionalStr = None
    note: OptionalStr = None

    customer: Optional[CustomerPayload] = None
    shipping_address: MaybeAddress = None
    billing_address: MaybeAddress = None

    subtotal_price: Money = Decimal(0)
    total_tax: Money = Decimal(0)
    total_price: Money = Decimal(0)
    total_shipping_price_set: Optional[ShopMoneySet] = None
    currency: OptionalStr = None

    line_items: list[LineItem] = Field(default_factory=list)
    shipping_lines: list[ShippingLine] = Field(default_factory=list)

    abandoned_checkout_url: OptionalStr = None
    created_at: Timestamp = None
    updated_at: Timestamp = None
    completed_at: Timestamp = None


class OrderPayload(_Payload):
    """orders/create, orders/paid, orders/cancelled."""

    id: ShopifyId
    order_number: OptionalId = None
    name: OptionalStr = None
    email: OptionalStr = None
    phone: OptionalStr = None
    note: OptionalStr = None

    customer: Optional[CustomerPayload] = None
    shipping_address: MaybeAddress = None
    billing_address: MaybeAddress = None

    subtotal_price: Money = Decimal(0)
    total_tax: Money = Decimal(0)
    total_price: Money = Decimal(0)
    total_shipping_price_set: Optional[ShopMoneySet] = None
    currency: OptionalStr = None

    financial_status: OptionalStr = None
    fulfillment_status: OptionalStr = None
    cancelled_at: Timestamp = None
    cancel_reason: OptionalStr = None

    line_items: list[LineItem] = Field(default_factory=list)
    shipping_lines: list[ShippingLine] = Field(default_factory=list)

    created_at: Timestamp = None
    updated_at: Timestamp = None
    closed_at: Timestamp = None


class RefundPayload(_Payload):
    """refunds/create. The payload is the refund object itself."""

    id: ShopifyId
    order_id: ShopifyId
    note: OptionalStr = None
    reason: OptionalStr = None
    created_at: Timestamp = None
    processed_at: Timestamp = None
    refund_line_items: list[RefundLineItem] = Field(default_factory=list)
    transactions: list[RefundTransaction] = Field(default_factory=list)


SCHEMAS_BY_TOPIC = {
    "checkouts/create": CheckoutPayload,
    "checkouts/update": CheckoutPayload,
    "orders/create": OrderPayload,
    "orders/paid": OrderPayload,
    "orders/cancelled": OrderPayload,
    "refunds/create": RefundPayload,
    "customers/create": CustomerPayload,
    "customers/update": CustomerPayload,
}


# ──────────────────────────────────────────────
# Tagged result
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Parsed:
    value: Any
    ok: bool = True


@dataclass(frozen=True)
class Invalid:
    error: str
    ok: bool = False


ParseResult = Union[Parsed, Invalid]


def format_validation_error(exc):
    """"customer.id: Field required; order_id: Field required"."""
    parts = []
    for issue in exc.errors():
        path = ".".join(str(p) for p in issue["loc"]) or "payload"
        parts.append(f"{path}: {issue['msg']}")
    return "Validation failed: " + "; ".join(parts)


def validate_payload(topic, payload):
    """Validate and coerce a decoded payload against its topic schema.

    Returns:
        Parsed(value=<model>) or Invalid(error=<descriptive message>).
    """
    schema = SCHEMAS_BY_TOPIC.get(topic)
    if schema is None:
        return Invalid(f"No schema for topic '{topic}'")
    return parse_as(schema, payload)


def parse_as(schema, payload):
    if not isinstance(payload, dict):
        return Invalid(
            f"Validation failed: payload must be an object, got {type(payload).__name__}"
        )
    try:
        return Parsed(schema.model_validate(payload))
    except ValidationError as e:
        return Invalid(format_validation_error(e))
