from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from study_billing.core.time import ts_to_iso

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

USER_ID_METADATA_KEYS = ("supabase_user_id", "user_id")


def _id_of(value: Any) -> Optional[str]:
    # Stripe sends either a bare id or an expanded object for references.
    if isinstance(value, str):
        return value or None
    if value:
        obj_id = value.get("id")
        return obj_id if isinstance(obj_id, str) and obj_id else None
    return None


def _metadata_user_id(obj: Mapping[str, Any]) -> Optional[str]:
    md = obj.get("metadata") or {}
    for key in USER_ID_METADATA_KEYS:
        value = md.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]
    price_id: Optional[str]
    current_period_end: Optional[str]
    trial_end: Optional[str]
    cancel_at_period_end: bool
    user_id: Optional[str] = None

    @classmethod
    def from_stripe(cls, sub: Mapping[str, Any]) -> "SubscriptionSnapshot":
        items = (sub.get("items") or {}).get("data") or []
        price_id = None
        period_end = sub.get("current_period_end")
        if items:
            price_id = _id_of(items[0].get("price"))
            # newer API versions only report the period on the item
            period_end = period_end or items[0].get("current_period_end")
        return cls(
            subscription_id=sub["id"],
            customer_id=_id_of(sub.get("customer")),
            status=sub.get("status"),
            price_id=price_id,
            current_period_end=ts_to_iso(period_end),
            trial_end=ts_to_iso(sub.get("trial_end")),
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
            user_id=_metadata_user_id(sub),
        )

    def canceled(self) -> "SubscriptionSnapshot":
        return SubscriptionSnapshot(
            subscription_id=self.subscription_id,
            customer_id=self.customer_id,
            status="canceled",
            price_id=self.price_id,
            current_period_end=self.current_period_end,
            trial_end=self.trial_end,
            cancel_at_period_end=True,
            user_id=self.user_id,
        )


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    event_type: str
    created: int
    user_id: Optional[str]
    customer_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    created: int
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    event_type: str
    created: int
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str
    created: int


BillingEvent = Union[CheckoutCompleted, SubscriptionChanged, SubscriptionDeleted, IgnoredEvent]


def parse_event(event: Mapping[str, Any]) -> BillingEvent:
    """Turn a verified Stripe event payload into one of the handled variants."""
    event_id = event.get("id") or ""
    event_type = event.get("type") or ""
    created = int(event.get("created") or 0)
    obj: Dict[str, Any] = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        ref = obj.get("client_reference_id")
        user_id = ref if isinstance(ref, str) and ref else _metadata_user_id(obj)
        return CheckoutCompleted(
            event_id=event_id,
            event_type=event_type,
            created=created,
            user_id=user_id,
            customer_id=_id_of(obj.get("customer")),
            subscription_id=_id_of(obj.get("subscription")),
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED) and obj.get("id"):
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            created=created,
            subscription=SubscriptionSnapshot.from_stripe(obj),
        )

    if event_type == SUBSCRIPTION_DELETED and obj.get("id"):
        return SubscriptionDeleted(
            event_id=event_id,
            event_type=event_type,
            created=created,
            subscription=SubscriptionSnapshot.from_stripe(obj),
        )

    return IgnoredEvent(event_id=event_id, event_type=event_type, created=created)
