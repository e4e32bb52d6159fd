from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S

@dataclass(frozen=True)
class Tables:
    users: Any
    subscriptions: Any
    stripe_customers: Any
    trial_fingerprints: Any

T = Tables(
    users=ddb.Table(S.users_table_name),
    subscriptions=ddb.Table(S.subscriptions_table_name),
    stripe_customers=ddb.Table(S.stripe_customers_table_name),
    trial_fingerprints=ddb.Table(S.trial_fingerprints_table_name),
)
