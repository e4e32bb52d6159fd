from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from study_billing.core.errors import StorageError
from study_billing.core.time import now_iso
from study_billing.services.events import SubscriptionSnapshot

log = logging.getLogger(__name__)

ORDER_GUARD = "attribute_not_exists(#uid) OR attribute_not_exists(#src) OR #src <= :src"


def subscription_item(user_id: str, snap: SubscriptionSnapshot, source_ts: int) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "stripe_subscription_id": snap.subscription_id,
        "status": snap.status,
        "price_id": snap.price_id,
        "current_period_end": snap.current_period_end,
        "trial_end": snap.trial_end,
        "cancel_at_period_end": bool(snap.cancel_at_period_end),
        "updated_at": now_iso(),
        "source_ts": int(source_ts),
    }


class SubscriptionStore:
    """One subscription row per user, keyed on ``user_id``.

    Writes are full-state puts. With ``order_guard`` on, a put whose
    ``source_ts`` is older than the stored one is skipped.
    ``source_ts`` mixes Stripe event times with local-clock stamps for live
    reads, so callers stamp live reads slightly behind the local clock.
    """

    def __init__(self, table: Any, *, by_stripe_id_index: str, order_guard: bool = True) -> None:
        self.table = table
        self.by_stripe_id_index = by_stripe_id_index
        self.order_guard = order_guard

    def upsert(self, user_id: str, snap: SubscriptionSnapshot, *, source_ts: int) -> bool:
        kwargs: Dict[str, Any] = {"Item": subscription_item(user_id, snap, source_ts)}
        if self.order_guard:
            kwargs["ConditionExpression"] = ORDER_GUARD
            kwargs["ExpressionAttributeNames"] = {"#uid": "user_id", "#src": "source_ts"}
            kwargs["ExpressionAttributeValues"] = {":src": int(source_ts)}
        try:
            self.table.put_item(**kwargs)
        except ClientError as exc:
            if exc.response["Error"]["Code"] == "ConditionalCheckFailedException":
                log.warning(
                    "skipping stale subscription write",
                    extra={"user_id": user_id, "subscription_id": snap.subscription_id, "source_ts": source_ts},
                )
                return False
            raise StorageError(f"subscription upsert for {user_id} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"subscription upsert for {user_id} failed: {exc}") from exc
        return True

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.table.get_item(Key={"user_id": user_id}).get("Item")
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"read subscription for {user_id} failed: {exc}") from exc

    def user_id_for(self, subscription_id: str) -> Optional[str]:
        try:
            resp = self.table.query(
                IndexName=self.by_stripe_id_index,
                KeyConditionExpression="stripe_subscription_id = :sid",
                ExpressionAttributeValues={":sid": subscription_id},
                Limit=1,
            )
        except (ClientError, BotoCoreError) as exc:
            # unresolvable is answered with a warning, not a retry
            log.warning("subscription lookup failed", extra={"subscription_id": subscription_id, "error": str(exc)})
            return None
        items = resp.get("Items", [])
        return items[0].get("user_id") if items else None
