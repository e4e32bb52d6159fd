from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

class SubscriptionStatusResp(BaseModel):
    user_id: str
    status: Optional[str] = None
    entitled: bool = False
    trial_used: bool = False
    cancel_at_period_end: bool = False
    current_period_end: Optional[str] = None
    trial_end: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
