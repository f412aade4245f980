"""Payload extractors — pure transforms from validated Shopify payloads
into the flat records the data layer stores.

Nothing here touches the database or raises on missing optional data:
absent nested objects degrade to None / empty. Money leaves this module as
integer minor units (fils / cents), rounded half-up from Decimal.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import bleach

from storehook.services.schemas import CustomerPayload

logger = logging.getLogger(__name__)

VARIANT_SEPARATORS = [" / ", "/", " - ", "-"]

# ISO 3166-1 alpha-2 -> international dial code
COUNTRY_DIAL_CODES = {
    # GCC
    "QA": "+974",
    "SA": "+966",
    "AE": "+971",
    "KW": "+965",
    "BH": "+973",
    "OM": "+968",
    # Other common origins
    "US": "+1",
    "GB": "+44",
    "IN": "+91",
    "PK": "+92",
    "PH": "+63",
    "EG": "+20",
    "JO": "+962",
    "LB": "+961",
    "IQ": "+964",
    "SY": "+963",
    "YE": "+967",
    "PS": "+970",
    "IR": "+98",
    "TR": "+90",
}

# Strings Shopify has been seen putting in phone fields
INVALID_PHONE_KEYWORDS = ["shop", "http", "www", "@", "email", "order", "checkout"]

MEASUREMENT_KEYWORDS = [
    "bust", "chest", "waist", "hip", "hips", "length", "height",
    "shoulder", "arm", "sleeve", "inseam", "neck", "thigh",
    "size", "measurement", "custom", "note", "additional comments", "comments",
]

STANDARD_SIZES = ["xs", "s", "m", "l", "xl", "xxl", "2xl", "3xl", "4xl"]

# Largest amount a BigInteger minor-unit column can hold
MAX_MINOR_AMOUNT = 2**63 - 1

# Property name fragment -> customer profile key. First match wins.
BODY_MEASUREMENT_KEYS = [
    ("bust", "bust_cm"),
    ("waist", "waist_cm"),
    ("hip", "hips_cm"),
    ("shoulder", "shoulder_width_cm"),
    ("arm hole", "arm_hole_cm"),
    ("height", "height_cm"),
]
COMMON_MEASUREMENT_KEYS = [
    ("sleeve", "sleeve_length_cm"),
    ("length", "product_length_cm"),
    ("comments", "additional_comments"),
]

_LEADING_NUMBER = re.compile(r"\s*(-?\d+(?:\.\d+)?)")


# ──────────────────────────────────────────────
# Records
# ──────────────────────────────────────────────

@dataclass
class CustomerInfo:
    external_id: str | None = None
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    notes: str | None = None
    total_spent_minor: int | None = None
    tags: str | None = None
    accepts_marketing: bool = False


@dataclass
class LineItem:
    product_name: str
    variant_title: str | None
    sku: str | None
    size: str | None
    color: str | None
    quantity: int
    unit_price_minor: int
    line_total_minor: int
    shopify_line_item_id: str | None = None
    measurements: dict | None = None
    properties: dict = field(default_factory=dict)

    def as_row(self):
        return {
            "shopify_line_item_id": self.shopify_line_item_id,
            "product_name": self.product_name,
            "variant_title": self.variant_title,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "quantity": self.quantity,
            "unit_price_minor": self.unit_price_minor,
            "line_total_minor": self.line_total_minor,
            "measurements": self.measurements,
            "properties": self.properties or None,
        }


# ──────────────────────────────────────────────
# Money
# ──────────────────────────────────────────────

def price_to_minor(value, fallback=0):
    """Decimal amount -> integer minor units, rounding half up.

    "19.99" -> 1999, "0.125" -> 13. Floats go through str() so 0.1 stays
    0.1 rather than 0.1000000000000000055...
    """
    if value is None or value == "":
        return fallback
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return fallback
    if not amount.is_finite():
        return fallback
    try:
        minor = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        minor = None
    if minor is None or abs(minor) > MAX_MINOR_AMOUNT:
        logger.warning(f"Amount out of range, using {fallback}: {value}")
        return fallback
    return minor


def extract_shipping_total(payload):
    """Prefer total_shipping_price_set; otherwise sum the shipping lines."""
    price_set = payload.total_shipping_price_set
    if price_set and price_set.shop_money and price_set.shop_money.amount is not None:
        return price_to_minor(price_set.shop_money.amount)

    return sum(
        price_to_minor(line.price)
        for line in payload.shipping_lines
        if line.price is not None
    )


def extract_refund_amount(transactions):
    """Exact integer sum of refund transaction amounts."""
    return sum(price_to_minor(tx.amount) for tx in transactions or [])


# ──────────────────────────────────────────────
# Variants & measurements
# ──────────────────────────────────────────────

def parse_variant_title(variant_title):
    """"S / White" -> ("S", "White"); "XL" -> ("XL", None); None -> (None, None)."""
    if not variant_title:
        return None, None

    for sep in VARIANT_SEPARATORS:
        if sep in variant_title:
            parts = [p.strip() for p in variant_title.split(sep) if p.strip()]
            if len(parts) >= 2:
                return parts[0], parts[1]

    return variant_title.strip() or None, None


def extract_measurements(properties):
    """Keep line-item properties that look like customer measurements.

    Properties prefixed with "_" are Shopify-internal cart attributes and are
    dropped unless their name clearly names a measurement.
    """
    if not properties:
        return None

    measurements = {}
    for name, value in properties.items():
        lowered = name.lower()
        is_measurement = any(kw in lowered for kw in MEASUREMENT_KEYWORDS)
        if is_measurement or not name.startswith("_"):
            measurements[name] = value
    return measurements or None


def _leading_number(value):
    match = _LEADING_NUMBER.match(value or "")
    return float(match.group(1)) if match else None


def extract_customer_measurements(items):
    """First measurement profile found across the line items, or None.

    The profile is "custom" when a body measurement (bust, waist...) is
    present and "standard" otherwise, e.g.
    {"measurement_type": "custom", "standard_size": "m", "bust_cm": 92.0}
    """
    for item in items or []:
        size, _ = parse_variant_title(item.variant_title)
        standard_size = size.lower() if size and size.lower() in STANDARD_SIZES else None

        profile = {}
        has_body = False
        for name, value in (extract_measurements(item.properties) or {}).items():
            key = name.lower().strip()

            for fragment, column in BODY_MEASUREMENT_KEYS:
                if fragment in key:
                    number = _leading_number(value)
                    if number is not None:
                        profile[column] = number
                        has_body = True
                    break

            for fragment, column in COMMON_MEASUREMENT_KEYS:
                if fragment in key:
                    if column == "additional_comments":
                        profile[column] = clean_note(value)
                    else:
                        number = _leading_number(value)
                        if number is not None:
                            profile[column] = number
                    break

        if standard_size or profile:
            return {
                "measurement_type": "custom" if has_body else "standard",
                "standard_size": standard_size,
                **profile,
            }
    return None


def extract_line_items(items):
    """Normalize a line item array. Empty or missing -> []."""
    records = []
    for item in items or []:
        size, color = parse_variant_title(item.variant_title)
        unit_price = price_to_minor(item.price)
        if item.line_price is not None:
            line_total = price_to_minor(item.line_price)
        else:
            line_total = unit_price * item.quantity

        records.append(LineItem(
            shopify_line_item_id=item.id or item.key,
            product_name=item.title or "",
            variant_title=item.variant_title or None,
            sku=item.sku or None,
            size=size,
            color=color,
            quantity=item.quantity,
            unit_price_minor=unit_price,
            line_total_minor=line_total,
            measurements=extract_measurements(item.properties),
            properties=dict(item.properties),
        ))
    return records


# ──────────────────────────────────────────────
# Customer
# ──────────────────────────────────────────────

def clean_note(text):
    """Strip all HTML from upstream free text."""
    if not text:
        return None
    return bleach.clean(text, tags=[], strip=True).strip() or None


def is_valid_phone(phone):
    if not phone:
        return False
    cleaned = phone.strip()
    lowered = cleaned.lower()
    if any(kw in lowered for kw in INVALID_PHONE_KEYWORDS):
        return False
    if not 5 <= len(cleaned) <= 25:
        return False
    digits = re.sub(r"\D", "", cleaned)
    if len(digits) < 5:
        return False
    return digits.strip("0") != ""


def normalize_phone(phone, country_code=None, default_dial_code="+974"):
    """Prefix a local number with its country's dial code.

    Numbers already in international form are returned as-is. An unknown
    country code leaves the number untouched; no country at all falls back
    to default_dial_code.
    """
    phone = phone.strip()
    if phone.startswith("+"):
        return phone

    if country_code:
        dial_code = COUNTRY_DIAL_CODES.get(country_code.upper())
        if not dial_code:
            logger.info(f"Unknown country code {country_code}, keeping phone as-is")
            return phone
    else:
        dial_code = default_dial_code
    return f"{dial_code}{phone.lstrip('0')}"


def _name_of(obj):
    if obj is None:
        return None
    name = (getattr(obj, "name", None) or "").strip()
    if name:
        return name
    first = getattr(obj, "first_name", None)
    last = getattr(obj, "last_name", None)
    return " ".join(p for p in (first, last) if p).strip() or None


def extract_customer_info(payload, default_dial_code="+974"):
    """Pull customer identity out of a checkout, order or customer payload.

    Priority:
        email: payload.email > customer.email
        name:  shipping > billing > customer > default address
        phone: shipping line > shipping > billing > payload > customer >
               default address (first valid one wins)
    """
    # A customers/* payload is the customer object itself
    if isinstance(payload, CustomerPayload):
        customer, shipping, billing, shipping_lines = payload, None, None, []
    else:
        customer = payload.customer
        shipping = payload.shipping_address
        billing = payload.billing_address
        shipping_lines = payload.shipping_lines
    default_address = customer.default_address if customer else None

    email = payload.email or (customer.email if customer else None)

    full_name = (
        _name_of(shipping)
        or _name_of(billing)
        or _name_of(customer)
        or _name_of(default_address)
    )

    candidates = [
        shipping_lines[0].phone if shipping_lines else None,
        shipping.phone if shipping else None,
        billing.phone if billing else None,
        payload.phone,
        customer.phone if customer else None,
        default_address.phone if default_address else None,
    ]
    phone = next((p.strip() for p in candidates if is_valid_phone(p)), None)
    if phone:
        country_code = (
            (shipping.country_code if shipping else None)
            or (billing.country_code if billing else None)
            or (default_address.country_code if default_address else None)
        )
        phone = normalize_phone(phone, country_code, default_dial_code)

    total_spent = customer.total_spent if customer else None
    note = payload.note or (customer.note if customer else None)

    return CustomerInfo(
        external_id=customer.id if customer else None,
        email=email,
        full_name=full_name,
        phone=phone,
        notes=clean_note(note),
        total_spent_minor=price_to_minor(total_spent) if total_spent is not None else None,
        tags=customer.tags if customer else None,
        accepts_marketing=bool(customer.accepts_marketing) if customer else False,
    )


def format_address(address):
    """Address model -> plain dict for the JSON column."""
    if address is None:
        return None
    return {
        "name": _name_of(address),
        "address1": address.address1,
        "address2": address.address2,
        "city": address.city,
        "province": address.province,
        "province_code": address.province_code,
        "country": address.country,
        "country_code": address.country_code,
        "zip": address.zip,
        "phone": address.phone,
        "company": address.company,
    }


# ──────────────────────────────────────────────
# Routing
# ──────────────────────────────────────────────

def extract_resource_id(topic, payload):
    """The upstream id a delivery is about, for logging and webhook_events.

    Runs on the raw decoded JSON, before validation.
    """
    if not isinstance(payload, dict):
        return "unknown"
    if topic.startswith("refunds/"):
        value = payload.get("order_id") or payload.get("id")
    else:
        value = payload.get("id")
    if value is None or value == "" or isinstance(value, (dict, list)):
        return "unknown"
    return str(value)
