from __future__ import annotations

from typing import Any, Dict, Optional

import stripe

from study_billing.core.errors import ConfigurationError, CorrectiveActionError
from study_billing.core.settings import S
from study_billing.services.events import SubscriptionSnapshot


def _plain(obj: Any) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _ref_id(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if value:
        return value.get("id")
    return None


class StripeGateway:
    """Blocking reads and the one corrective write the reconciler needs from Stripe.

    One instance per request; nothing here touches ``stripe.api_key``.
    """

    def __init__(self, client: "stripe.StripeClient") -> None:
        self.client = client

    def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        sub = self.client.subscriptions.retrieve(subscription_id)
        return SubscriptionSnapshot.from_stripe(_plain(sub))

    def end_trial_now(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            sub = self.client.subscriptions.update(
                subscription_id,
                params={"trial_end": "now", "cancel_at_period_end": False},
            )
        except stripe.StripeError as exc:
            raise CorrectiveActionError(f"Could not end trial for {subscription_id}: {exc}") from exc
        return SubscriptionSnapshot.from_stripe(_plain(sub))

    def subscription_payment_method_id(self, subscription_id: str) -> Optional[str]:
        sub = _plain(self.client.subscriptions.retrieve(
            subscription_id,
            params={"expand": ["default_payment_method"]},
        ))
        return _ref_id(sub.get("default_payment_method"))

    def customer_payment_method_id(self, customer_id: str) -> Optional[str]:
        cust = _plain(self.client.customers.retrieve(customer_id))
        if cust.get("deleted"):
            return None
        settings = cust.get("invoice_settings") or {}
        return _ref_id(settings.get("default_payment_method"))

    def latest_card_payment_method_id(self, customer_id: str) -> Optional[str]:
        pms = _plain(self.client.payment_methods.list(
            params={"customer": customer_id, "type": "card", "limit": 1},
        ))
        data = pms.get("data") or []
        return _ref_id(data[0]) if data else None

    def card_fingerprint(self, payment_method_id: str) -> Optional[str]:
        pm = _plain(self.client.payment_methods.retrieve(payment_method_id))
        card = pm.get("card") or {}
        return card.get("fingerprint") or None


def build_stripe_gateway() -> StripeGateway:
    if not S.stripe_secret_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")
    return StripeGateway(stripe.StripeClient(S.stripe_secret_key, stripe_version=S.stripe_api_version))
