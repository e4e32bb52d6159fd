from __future__ import annotations

import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, HTTPException, Request

from study_billing.core.errors import AuthenticationError, BillingError, ConfigurationError
from study_billing.core.settings import S
from study_billing.core.tables import T
from study_billing.metrics import record_webhook_event
from study_billing.services.authenticator import verify_event
from study_billing.services.directory import UserDirectory
from study_billing.services.fingerprints import FingerprintLedger
from study_billing.services.reconciler import Reconciler
from study_billing.services.stripe_gateway import build_stripe_gateway
from study_billing.services.subscriptions import SubscriptionStore

router = APIRouter(tags=["stripe"])
log = logging.getLogger(__name__)


def build_reconciler() -> Reconciler:
    gateway = build_stripe_gateway()
    return Reconciler(
        gateway=gateway,
        directory=UserDirectory(T.users, T.stripe_customers),
        subscriptions=SubscriptionStore(
            T.subscriptions,
            by_stripe_id_index=S.subscriptions_by_stripe_id_index,
            order_guard=S.subscription_order_guard,
        ),
        ledger=FingerprintLedger(T.trial_fingerprints, gateway),
    )


def ack_outcome(ack: Dict[str, Any]) -> str:
    if ack.get("blocked_trial"):
        return "blocked_trial"
    if ack.get("ignored"):
        return "ignored"
    if ack.get("warning"):
        return "unmapped"
    return "ok"


@router.post("/api/stripe/webhook")
async def stripe_webhook(req: Request) -> Dict[str, Any]:
    missing = S.missing_webhook_config()
    if missing:
        log.error("webhook configuration missing", extra={"missing": missing})
        raise HTTPException(ConfigurationError.status_code, f"Missing env vars: {', '.join(missing)}")

    sig = req.headers.get("stripe-signature")
    if not sig:
        record_webhook_event(None, "rejected")
        raise HTTPException(AuthenticationError.status_code, "Missing stripe-signature header")

    payload = await req.body()
    try:
        event = verify_event(payload, sig, S.stripe_webhook_secret)
    except AuthenticationError as exc:
        log.warning("webhook signature verification failed", extra={"error": str(exc)})
        record_webhook_event(None, "rejected")
        raise HTTPException(exc.status_code, f"Webhook error: {exc}") from exc

    try:
        ack = await build_reconciler().handle(event)
    except (BillingError, stripe.StripeError) as exc:
        log.exception("webhook handler failed", extra={"event_id": event.event_id, "event_type": event.event_type})
        record_webhook_event(event.event_type, "failed")
        status = exc.status_code if isinstance(exc, BillingError) else 500
        raise HTTPException(status, f"Webhook handler failed: {exc}") from exc

    record_webhook_event(event.event_type, ack_outcome(ack))
    return ack
