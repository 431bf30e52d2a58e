"""Stripe webhook handling: subscription levels and one-off credit packs."""

from __future__ import annotations

from typing import Any, Dict, Optional

import stripe

from moral_story_maker.backend.services import credits
from moral_story_maker.common.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from moral_story_maker.common.errors import WebhookError
from moral_story_maker.common.logging_config import get_logger

log = get_logger(__name__)


def construct_event(payload: bytes, signature: Optional[str], secret: str = STRIPE_WEBHOOK_SECRET) -> Any:
    if not signature:
        raise WebhookError("No signature")
    if not secret:
        raise WebhookError("STRIPE_WEBHOOK_SECRET is not configured.")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as e:
        raise WebhookError(f"Invalid payload: {e}") from e
    except stripe.SignatureVerificationError as e:
        raise WebhookError(f"Invalid signature: {e}") from e


def retrieve_customer(customer_id: str) -> Any:
    return stripe.Customer.retrieve(customer_id, api_key=STRIPE_SECRET_KEY)


def list_line_items(session_id: str) -> Any:
    return stripe.checkout.Session.list_line_items(session_id, api_key=STRIPE_SECRET_KEY)


def _supabase_uid(customer_id: Optional[str]) -> str:
    if not customer_id:
        raise WebhookError("Event has no customer.")
    customer = retrieve_customer(customer_id)
    uid = (customer.get("metadata") or {}).get("supabaseUid")
    if not uid:
        raise WebhookError(f"Customer {customer_id} has no supabaseUid metadata.")
    return uid


def _first_price_id(items: Any) -> Optional[str]:
    data = (items or {}).get("data") or []
    if not data:
        return None
    price = data[0].get("price") or {}
    return price.get("id")


async def _tier_for_price(db: Any, price_id: Optional[str]) -> Dict[str, Any]:
    if not price_id:
        raise WebhookError("No price ID found in event.")
    tier = await db.find_tier_by_price(price_id)
    if not tier:
        raise WebhookError(f"Subscription tier not found for price {price_id}.")
    return tier


async def handle_event(db: Any, event: Any) -> Dict[str, Any]:
    event_type = event["type"]
    obj = event["data"]["object"]
    log.info("Received Stripe webhook event: {}", event_type)
    try:
        await _dispatch(db, event_type, obj)
    except stripe.StripeError as e:
        raise WebhookError(f"Stripe API error: {e}") from e
    return {"received": True}


async def _dispatch(db: Any, event_type: str, obj: Any) -> None:
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        tier = await _tier_for_price(db, _first_price_id(obj.get("items")))
        user_id = _supabase_uid(obj.get("customer"))
        await db.update_subscription_level(user_id, tier["level"])
        log.info("Subscription for {} set to {}", user_id, tier["level"])

    elif event_type == "customer.subscription.deleted":
        user_id = _supabase_uid(obj.get("customer"))
        await db.update_subscription_level(user_id, "free")
        log.info("Subscription for {} reset to free", user_id)

    elif event_type == "checkout.session.completed":
        if obj.get("mode") == "payment":
            user_id = _supabase_uid(obj.get("customer"))
            tier = await _tier_for_price(db, _first_price_id(list_line_items(obj["id"])))
            amount = int(tier.get("monthly_credits") or 0)
            if amount > 0:
                # purchased credits offset this month's usage
                await credits.increment_credits(db, user_id, -amount)
            log.info("Processed credits purchase of {} for {}", amount, user_id)

    elif event_type == "invoice.payment_succeeded":
        log.info("Payment succeeded for subscription: {}", obj.get("subscription"))

    else:
        log.debug("Ignoring Stripe event {}", event_type)

