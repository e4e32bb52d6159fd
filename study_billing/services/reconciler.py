from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Union

import anyio

from study_billing.core.time import now_ts
from study_billing.metrics import record_trial_blocked
from study_billing.services.directory import UserDirectory
from study_billing.services.events import (
    BillingEvent,
    CheckoutCompleted,
    IgnoredEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    SubscriptionSnapshot,
)
from study_billing.services.fingerprints import FingerprintCheck, FingerprintLedger
from study_billing.services.stripe_gateway import StripeGateway
from study_billing.services.subscriptions import SubscriptionStore

log = logging.getLogger(__name__)

TRIAL_CONSUMING_STATUSES = ("trialing", "active")

# Live reads are stamped this far behind the local clock so a Stripe event
# created just after the read still wins the order guard.
LIVE_STATE_SKEW_SECONDS = 5

UNMAPPED_WARNING = (
    "No user id found. Ensure checkout sets client_reference_id and "
    "subscription_data.metadata.supabase_user_id."
)


# ---- effects ----

@dataclass(frozen=True)
class EnsureUser:
    user_id: str


@dataclass(frozen=True)
class LinkCustomer:
    user_id: str
    customer_id: str


@dataclass(frozen=True)
class MarkTrialUsed:
    user_id: str


@dataclass(frozen=True)
class WriteSubscription:
    user_id: str
    snapshot: SubscriptionSnapshot
    source_ts: int


@dataclass(frozen=True)
class ForceEndTrial:
    """End the trial at Stripe now, then persist whatever state Stripe reports."""

    user_id: str
    subscription_id: str
    fingerprint: Optional[str] = None


Effect = Union[EnsureUser, LinkCustomer, MarkTrialUsed, WriteSubscription, ForceEndTrial]


@dataclass(frozen=True)
class Facts:
    user_id: Optional[str] = None
    snapshot: Optional[SubscriptionSnapshot] = None
    check: Optional[FingerprintCheck] = None
    now: int = 0


@dataclass
class Decision:
    effects: List[Effect] = field(default_factory=list)
    ack: Dict[str, Any] = field(default_factory=dict)


# ---- pure transitions ----

def preflight(event: BillingEvent, user_id: Optional[str]) -> List[Effect]:
    """Writes that must land before anything else references the user row."""
    if user_id is None or isinstance(event, IgnoredEvent):
        return []
    effects: List[Effect] = [EnsureUser(user_id)]
    if isinstance(event, CheckoutCompleted) and event.customer_id:
        effects.append(LinkCustomer(user_id, event.customer_id))
    return effects


def needs_fingerprint_check(event: BillingEvent, snapshot: Optional[SubscriptionSnapshot]) -> bool:
    if snapshot is None or not snapshot.customer_id:
        return False
    if isinstance(event, (CheckoutCompleted, SubscriptionChanged)):
        return snapshot.status == "trialing"
    return False


def is_stale(event: BillingEvent, stored: Optional[Dict[str, Any]]) -> bool:
    """True when the stored row for this subscription was written from newer state than the event."""
    if not isinstance(event, SubscriptionChanged) or not stored:
        return False
    if stored.get("stripe_subscription_id") != event.subscription.subscription_id:
        return False
    stored_ts = stored.get("source_ts")
    return stored_ts is not None and int(stored_ts) > event.created


def decide(event: BillingEvent, facts: Facts) -> Decision:
    ack: Dict[str, Any] = {"ok": True, "handled": event.event_type}

    if isinstance(event, IgnoredEvent):
        ack["ignored"] = True
        return Decision(ack=ack)

    user_id = facts.user_id
    if user_id is None:
        ack["warning"] = UNMAPPED_WARNING
        return Decision(ack=ack)

    snap = facts.snapshot
    if isinstance(event, SubscriptionDeleted):
        return Decision(
            effects=[WriteSubscription(user_id, event.subscription.canceled(), event.created)],
            ack=ack,
        )

    if snap is None:
        # checkout without a subscription: the user row is all there is to write
        return Decision(ack=ack)

    if facts.check is not None and facts.check.reused:
        ack["blocked_trial"] = True
        return Decision(
            effects=[
                ForceEndTrial(user_id, snap.subscription_id, facts.check.fingerprint),
                MarkTrialUsed(user_id),
            ],
            ack=ack,
        )

    effects: List[Effect] = []
    if snap.status in TRIAL_CONSUMING_STATUSES:
        effects.append(MarkTrialUsed(user_id))
    source_ts = facts.now if isinstance(event, CheckoutCompleted) else event.created
    effects.append(WriteSubscription(user_id, snap, source_ts))
    return Decision(effects=effects, ack=ack)


# ---- executor ----

class Reconciler:
    """Runs one verified event through the transitions above against real collaborators."""

    def __init__(
        self,
        *,
        gateway: StripeGateway,
        directory: UserDirectory,
        subscriptions: SubscriptionStore,
        ledger: FingerprintLedger,
        clock: Callable[[], int] = now_ts,
        skew: int = LIVE_STATE_SKEW_SECONDS,
    ) -> None:
        self.gateway = gateway
        self.directory = directory
        self.subscriptions = subscriptions
        self.ledger = ledger
        self.clock = clock
        self.skew = skew

    def live_ts(self) -> int:
        return self.clock() - self.skew

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await anyio.to_thread.run_sync(functools.partial(fn, *args, **kwargs))

    async def resolve_user_id(self, event: BillingEvent) -> Optional[str]:
        if isinstance(event, IgnoredEvent):
            return None
        if isinstance(event, CheckoutCompleted):
            if event.user_id:
                return event.user_id
            sub_id = event.subscription_id
        else:
            if event.subscription.user_id:
                return event.subscription.user_id
            sub_id = event.subscription.subscription_id
        if not sub_id:
            return None
        return await self._run(self.subscriptions.user_id_for, sub_id)

    async def load_snapshot(self, event: BillingEvent) -> Optional[SubscriptionSnapshot]:
        if isinstance(event, CheckoutCompleted):
            if not event.subscription_id:
                return None
            live = await self._run(self.gateway.get_subscription, event.subscription_id)
            if not live.customer_id and event.customer_id:
                live = replace(live, customer_id=event.customer_id)
            return live
        if isinstance(event, (SubscriptionChanged, SubscriptionDeleted)):
            return event.subscription
        return None

    async def superseded(self, event: BillingEvent, user_id: str) -> bool:
        # A late trialing redelivery must not end the same trial at Stripe twice.
        if not self.subscriptions.order_guard or not isinstance(event, SubscriptionChanged):
            return False
        stored = await self._run(self.subscriptions.get, user_id)
        if is_stale(event, stored):
            log.info(
                "skipping abuse check for superseded event",
                extra={"event_id": event.event_id, "subscription_id": event.subscription.subscription_id},
            )
            return True
        return False

    async def handle(self, event: BillingEvent) -> Dict[str, Any]:
        user_id = await self.resolve_user_id(event)
        if user_id is None and not isinstance(event, IgnoredEvent):
            log.warning("unmappable billing event", extra={"event_id": event.event_id, "event_type": event.event_type})
            return decide(event, Facts()).ack

        for effect in preflight(event, user_id):
            await self.apply(effect, {})

        snapshot = None
        check = None
        if user_id is not None:
            snapshot = await self.load_snapshot(event)
            if needs_fingerprint_check(event, snapshot) and not await self.superseded(event, user_id):
                check = await self._run(
                    self.ledger.check_and_record,
                    snapshot.customer_id,
                    snapshot.subscription_id,
                    user_id,
                )

        decision = decide(event, Facts(user_id=user_id, snapshot=snapshot, check=check, now=self.live_ts()))
        ack = dict(decision.ack)
        for effect in decision.effects:
            await self.apply(effect, ack)
        return ack

    async def apply(self, effect: Effect, ack: Dict[str, Any]) -> None:
        if isinstance(effect, EnsureUser):
            await self._run(self.directory.ensure, effect.user_id)
        elif isinstance(effect, LinkCustomer):
            await self._run(self.directory.link_customer, effect.user_id, effect.customer_id)
        elif isinstance(effect, MarkTrialUsed):
            await self._run(self.directory.mark_trial_used, effect.user_id)
        elif isinstance(effect, WriteSubscription):
            await self._run(self.subscriptions.upsert, effect.user_id, effect.snapshot, source_ts=effect.source_ts)
        elif isinstance(effect, ForceEndTrial):
            log.warning(
                "reused card fingerprint; ending trial now",
                extra={"user_id": effect.user_id, "subscription_id": effect.subscription_id, "fingerprint": effect.fingerprint},
            )
            updated = await self._run(self.gateway.end_trial_now, effect.subscription_id)
            record_trial_blocked()
            await self._run(self.subscriptions.upsert, effect.user_id, updated, source_ts=self.live_ts())
            ack["status"] = updated.status
        else:  # pragma: no cover
            raise TypeError(f"unknown effect {effect!r}")
