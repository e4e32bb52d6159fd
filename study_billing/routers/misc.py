from __future__ import annotations

import hmac
from typing import Optional

import anyio
from fastapi import APIRouter, Header, HTTPException

from study_billing.core.settings import S
from study_billing.core.tables import T
from study_billing.models import SubscriptionStatusResp
from study_billing.services.directory import UserDirectory
from study_billing.services.subscriptions import SubscriptionStore

router = APIRouter(tags=["misc"])

ENTITLED_STATUSES = {"active", "past_due", "trialing"}


def require_internal_secret(x_internal_secret: Optional[str]) -> None:
    if not S.internal_api_secret:
        raise HTTPException(501, "Internal API is not configured")
    if not x_internal_secret or not hmac.compare_digest(x_internal_secret, S.internal_api_secret):
        raise HTTPException(401, "Unauthorized")


def load_subscription_status(user_id: str) -> SubscriptionStatusResp:
    store = SubscriptionStore(T.subscriptions, by_stripe_id_index=S.subscriptions_by_stripe_id_index)
    sub = store.get(user_id) or {}
    user = UserDirectory(T.users, T.stripe_customers).get(user_id) or {}
    status = (sub.get("status") or "").lower() or None
    return SubscriptionStatusResp(
        user_id=user_id,
        status=status,
        entitled=status in ENTITLED_STATUSES,
        trial_used=bool(user.get("trial_used", False)),
        cancel_at_period_end=bool(sub.get("cancel_at_period_end", False)),
        current_period_end=sub.get("current_period_end"),
        trial_end=sub.get("trial_end"),
        stripe_subscription_id=sub.get("stripe_subscription_id"),
    )


@router.get("/api/ping")
async def ping():
    return {"ok": True}


@router.get("/api/billing/subscription-status/{user_id}", response_model=SubscriptionStatusResp)
async def subscription_status(user_id: str, x_internal_secret: Optional[str] = Header(default=None)):
    require_internal_secret(x_internal_secret)
    return await anyio.to_thread.run_sync(load_subscription_status, user_id)
