from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from study_billing.core.errors import FingerprintLookupError
from study_billing.core.time import now_iso
from study_billing.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FingerprintCheck:
    reused: bool
    fingerprint: Optional[str] = None


class FingerprintLedger:
    """
    One-trial-per-card ledger.

    Stripe only tracks trials per customer, and the same card can sit behind
    any number of customers. Every card fingerprint seen on a trial-eligible
    subscription is recorded once; a later subscription presenting the same
    fingerprint is reported as reuse.

    Lookup and insert failures fail open (``reused=False``). Stripe read
    failures while resolving the payment method propagate.
    """

    def __init__(self, table: Any, gateway: StripeGateway) -> None:
        self.table = table
        self.gateway = gateway

    def resolve_fingerprint(self, customer_id: str, subscription_id: str) -> Optional[str]:
        pm_id = (
            self.gateway.subscription_payment_method_id(subscription_id)
            or self.gateway.customer_payment_method_id(customer_id)
            or self.gateway.latest_card_payment_method_id(customer_id)
        )
        if not pm_id:
            return None
        return self.gateway.card_fingerprint(pm_id)

    def lookup(self, fingerprint: str) -> Optional[Dict[str, Any]]:
        try:
            return self.table.get_item(Key={"fingerprint": fingerprint}).get("Item")
        except (ClientError, BotoCoreError) as exc:
            raise FingerprintLookupError(str(exc)) from exc

    def record_first_use(self, fingerprint: str, *, user_id: str, customer_id: str, subscription_id: str) -> bool:
        try:
            self.table.put_item(
                Item={
                    "fingerprint": fingerprint,
                    "first_user_id": user_id,
                    "stripe_customer_id": customer_id,
                    "first_subscription_id": subscription_id,
                    "created_at": now_iso(),
                },
                ConditionExpression="attribute_not_exists(fingerprint)",
            )
            return True
        except (ClientError, BotoCoreError) as exc:
            log.warning(
                "fingerprint insert failed",
                extra={"fingerprint": fingerprint, "user_id": user_id, "error": str(exc)},
            )
            return False

    def check_and_record(self, customer_id: str, subscription_id: str, user_id: str) -> FingerprintCheck:
        fingerprint = self.resolve_fingerprint(customer_id, subscription_id)
        if not fingerprint:
            return FingerprintCheck(reused=False, fingerprint=None)

        try:
            existing = self.lookup(fingerprint)
        except FingerprintLookupError as exc:
            log.warning("fingerprint lookup failed; allowing trial", extra={"fingerprint": fingerprint, "error": str(exc)})
            return FingerprintCheck(reused=False, fingerprint=fingerprint)

        if existing:
            return FingerprintCheck(reused=not is_same_trial(existing, subscription_id, user_id), fingerprint=fingerprint)

        self.record_first_use(fingerprint, user_id=user_id, customer_id=customer_id, subscription_id=subscription_id)
        return FingerprintCheck(reused=False, fingerprint=fingerprint)


def is_same_trial(entry: Dict[str, Any], subscription_id: str, user_id: str) -> bool:
    # Redelivered or follow-up events for the subscription that recorded the
    # fingerprint must not count as reuse.
    first_sub = entry.get("first_subscription_id")
    if first_sub:
        return first_sub == subscription_id
    return entry.get("first_user_id") == user_id
