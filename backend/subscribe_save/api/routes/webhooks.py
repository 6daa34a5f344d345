"""
Commerce Platform Webhook Handler

Receives order, subscription contract and billing attempt events.
Every request is HMAC-verified; idempotency is DB-backed in the services.

Events:
- orders/create: order with "Subscription Enabled" note attribute, or a
  one-off order that booked a pickup
- orders/cancelled: cancel the pickup the order booked
- subscription_contracts/create: authoritative recurring contract
- subscription_contracts/update: mirror upstream status changes
- subscription_billing_attempts/success: reset failures, count a cycle
- subscription_billing_attempts/failure: count a failure (pauses at the limit)
"""

import json
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, HTTPException, Request, status

from subscribe_save.api.dependencies import (
    get_billing_signal_service,
    get_ingestion_service,
    verify_webhook_hmac,
)
from subscribe_save.config.settings import get_settings
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.subscription import (
    CustomerInfo,
    parse_frequency_label,
)
from subscribe_save.infrastructure.services.ingestion_service import (
    CheckoutPickup,
    IngestionResult,
)


logger = logging.getLogger(__name__)

router = APIRouter()


SUBSCRIPTION_ENABLED_ATTR = "Subscription Enabled"
SUBSCRIPTION_FREQUENCY_ATTR = "Subscription Frequency"
SUBSCRIPTION_DAY_ATTR = "Subscription Preferred Day"
SUBSCRIPTION_SLOT_ATTRS = ("Subscription Preferred Time Slot", "Pickup Time Slot")
PICKUP_DATE_ATTR = "Pickup Date"
PICKUP_TIME_ATTR = "Pickup Time Slot"

_ISO_IN_PARENS = re.compile(r"\((\d{4}-\d{2}-\d{2})\)")
_PLAIN_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LEADING_DAY_NAME = re.compile(r"^[A-Za-z]+,\s*")


# =============================================================================
# Payload helpers
# =============================================================================

async def read_verified_payload(request: Request) -> Tuple[str, Dict[str, Any]]:
    """Verify the HMAC header and return (shop, payload)."""
    body = await request.body()
    signature = request.headers.get("X-Shopify-Hmac-Sha256")
    if not verify_webhook_hmac(body, signature, get_settings().shopify_api_secret):
        logger.warning(f"Webhook signature verification failed for {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    shop = request.headers.get("X-Shopify-Shop-Domain")
    if not shop:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing shop domain header",
        )

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body is not valid JSON",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be a JSON object",
        )
    return shop, payload


def note_attributes(payload: Dict[str, Any]) -> Dict[str, str]:
    attributes = {}
    for item in payload.get("note_attributes") or []:
        if isinstance(item, dict) and item.get("name"):
            attributes[item["name"]] = str(item.get("value") or "")
    return attributes


def external_id(payload: Dict[str, Any], gid_key: str, id_key: str) -> Optional[str]:
    """Prefer the GraphQL GID, fall back to the numeric id."""
    value = payload.get(gid_key) or payload.get(id_key)
    return str(value) if value else None


def customer_from(payload: Dict[str, Any]) -> CustomerInfo:
    customer = payload.get("customer")
    if not isinstance(customer, dict):
        customer = {}
    name = " ".join(
        part for part in (customer.get("first_name"), customer.get("last_name")) if part
    )
    return CustomerInfo(
        email=customer.get("email") or payload.get("email"),
        name=name or None,
        phone=customer.get("phone") or payload.get("phone"),
    )


def parse_day(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric preferred day {value!r}")
        return None


def time_slot_from(attributes: Dict[str, str]) -> Optional[str]:
    for name in SUBSCRIPTION_SLOT_ATTRS:
        if attributes.get(name):
            return attributes[name]
    return None


def parse_pickup_date(value: Optional[str], today: date) -> Optional[date]:
    """
    Parse the checkout pickup date attribute.

    Accepts "Friday, January 16 (2026-01-16)", "2026-01-16" and
    "Friday, January 16". The last form has no year: it is taken in the
    current year, or the next one if that lands more than a week ago.
    """
    text = (value or "").strip()
    if not text:
        return None

    in_parens = _ISO_IN_PARENS.search(text)
    iso = in_parens.group(1) if in_parens else (text if _PLAIN_ISO.match(text) else None)
    if iso is not None:
        try:
            return date.fromisoformat(iso)
        except ValueError:
            logger.warning(f"Ignoring invalid pickup date {value!r}")
            return None

    month_day = _LEADING_DAY_NAME.sub("", text)
    for pattern in ("%B %d %Y", "%b %d %Y"):
        try:
            parsed = datetime.strptime(f"{month_day} {today.year}", pattern).date()
            break
        except ValueError:
            continue
    else:
        logger.warning(f"Ignoring unreadable pickup date {value!r}")
        return None

    if parsed < today - timedelta(days=7):
        try:
            parsed = parsed.replace(year=today.year + 1)
        except ValueError:
            logger.warning(f"Ignoring pickup date {value!r} with no valid next-year date")
            return None
    return parsed


def checkout_from(payload: Dict[str, Any], attributes: Dict[str, str]) -> Optional[CheckoutPickup]:
    """The pickup booked at checkout, if the order carries a readable date."""
    today = BusinessClock(get_settings().shop_timezone).today()
    pickup_date = parse_pickup_date(attributes.get(PICKUP_DATE_ATTR), today)
    if pickup_date is None:
        return None
    return CheckoutPickup(
        pickup_date=pickup_date,
        time_slot=attributes.get(PICKUP_TIME_ATTR) or time_slot_from(attributes),
        order_name=payload.get("name"),
    )


def product_label_from(payload: Dict[str, Any]) -> Optional[str]:
    line_items = payload.get("line_items") or []
    first = line_items[0] if isinstance(line_items, list) and line_items else None
    if isinstance(first, dict):
        return first.get("title")
    return None


def ingestion_response(result: IngestionResult) -> Dict[str, Optional[str]]:
    return {
        "status": result.outcome.value,
        "subscription_id": str(result.subscription_id) if result.subscription_id else None,
        "pickup_id": str(result.pickup_id) if result.pickup_id else None,
    }


# =============================================================================
# Webhook Endpoints
# =============================================================================

@router.post("/webhooks/orders/create")
async def order_created_webhook(request: Request):
    """
    Create (or link) a subscription from a subscribe & save order.

    Orders without the subscription attribute only book their checkout
    pickup, and are ignored when they carry no pickup date and slot.
    """
    shop, payload = await read_verified_payload(request)
    attributes = note_attributes(payload)
    order_id = external_id(payload, "admin_graphql_api_id", "id")
    checkout = checkout_from(payload, attributes)

    if attributes.get(SUBSCRIPTION_ENABLED_ATTR, "").strip().lower() != "true":
        if checkout is None or not checkout.time_slot:
            return {"status": "ignored"}
        result = await get_ingestion_service().record_order_pickup(
            shop=shop,
            order_id=order_id,
            customer=customer_from(payload),
            checkout=checkout,
            payload=payload,
        )
        return ingestion_response(result)

    frequency = parse_frequency_label(attributes.get(SUBSCRIPTION_FREQUENCY_ATTR))

    result = await get_ingestion_service().create_subscription_from_order_event(
        shop=shop,
        order_id=order_id,
        customer=customer_from(payload),
        billing_interval_count=frequency.interval_count if frequency else None,
        preferred_day=parse_day(attributes.get(SUBSCRIPTION_DAY_ATTR)),
        preferred_time_slot=time_slot_from(attributes),
        product_label=product_label_from(payload),
        checkout=checkout,
        payload=payload,
    )
    return ingestion_response(result)


@router.post("/webhooks/orders/cancelled")
async def order_cancelled_webhook(request: Request):
    """Cancel the pickup a cancelled order had booked."""
    shop, payload = await read_verified_payload(request)
    result = await get_ingestion_service().cancel_order_pickup(
        shop=shop,
        order_id=external_id(payload, "admin_graphql_api_id", "id"),
        payload=payload,
    )
    return ingestion_response(result)


@router.post("/webhooks/subscription_contracts/create")
async def contract_created_webhook(request: Request):
    """Create a subscription from a contract, or adopt the order-path record."""
    shop, payload = await read_verified_payload(request)
    attributes = note_attributes(payload)
    billing_policy = payload.get("billing_policy") or {}

    result = await get_ingestion_service().create_subscription_from_contract_event(
        shop=shop,
        contract_id=external_id(payload, "admin_graphql_api_id", "id"),
        customer=customer_from(payload),
        billing_interval_count=billing_policy.get("interval_count"),
        preferred_day=parse_day(attributes.get(SUBSCRIPTION_DAY_ATTR)),
        preferred_time_slot=time_slot_from(attributes),
        origin_order_id=external_id(
            payload, "admin_graphql_api_origin_order_id", "origin_order_id"
        ),
        payload=payload,
    )
    return ingestion_response(result)


@router.post("/webhooks/subscription_contracts/update")
async def contract_updated_webhook(request: Request):
    """Pause, resume or cancel the subscription to match the upstream contract."""
    shop, payload = await read_verified_payload(request)
    contract_id = external_id(payload, "admin_graphql_api_id", "id")

    # Each delivery of a status change carries its own id; replays reuse it
    event_id = request.headers.get("X-Shopify-Webhook-Id")
    if not event_id and payload.get("updated_at"):
        event_id = f"{contract_id}@{payload['updated_at']}"

    result = await get_ingestion_service().apply_contract_status(
        shop=shop,
        contract_id=contract_id,
        status=payload.get("status"),
        event_id=event_id,
        payload=payload,
    )
    return ingestion_response(result)


@router.post("/webhooks/subscription_billing_attempts/success")
async def billing_success_webhook(request: Request):
    """Record a successful billing attempt."""
    shop, payload = await read_verified_payload(request)
    result = await get_billing_signal_service().record_success(
        shop=shop,
        attempt_id=external_id(payload, "admin_graphql_api_id", "id"),
        contract_id=external_id(
            payload, "admin_graphql_api_subscription_contract_id", "subscription_contract_id"
        ),
    )
    return {"status": "success" if result.success else "skipped", "message": result.message}


@router.post("/webhooks/subscription_billing_attempts/failure")
async def billing_failure_webhook(request: Request):
    """Record a failed billing attempt."""
    shop, payload = await read_verified_payload(request)
    result = await get_billing_signal_service().record_failure(
        shop=shop,
        attempt_id=external_id(payload, "admin_graphql_api_id", "id"),
        contract_id=external_id(
            payload, "admin_graphql_api_subscription_contract_id", "subscription_contract_id"
        ),
        error_code=payload.get("error_code"),
        error_message=payload.get("error_message"),
    )
    return {"status": "success" if result.success else "skipped", "message": result.message}
