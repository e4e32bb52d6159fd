from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB tables
    users_table_name: str = os.environ.get("USERS_TABLE_NAME", "users")
    subscriptions_table_name: str = os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "subscriptions")
    subscriptions_by_stripe_id_index: str = os.environ.get(
        "SUBSCRIPTIONS_BY_STRIPE_ID_INDEX",
        "stripe_subscription_id-index",
    )
    stripe_customers_table_name: str = os.environ.get("STRIPE_CUSTOMERS_TABLE_NAME", "stripe_customers")
    trial_fingerprints_table_name: str = os.environ.get(
        "TRIAL_FINGERPRINTS_TABLE_NAME",
        "trial_payment_fingerprints",
    )

    # Stripe
    stripe_secret_key: str = os.environ.get("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    stripe_api_version: str = os.environ.get("STRIPE_API_VERSION", "2023-10-16")

    # Reconciliation
    subscription_order_guard: bool = os.environ.get("SUBSCRIPTION_ORDER_GUARD", "1") not in ("0", "false", "False")

    # Internal read API
    internal_api_secret: str = os.environ.get("INTERNAL_API_SECRET", "")

    # Logging / metrics
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format: str = os.environ.get("LOG_FORMAT", "json").lower()
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")

    def missing_webhook_config(self) -> List[str]:
        required = {
            "STRIPE_WEBHOOK_SECRET": self.stripe_webhook_secret,
            "STRIPE_SECRET_KEY": self.stripe_secret_key,
            "USERS_TABLE_NAME": self.users_table_name,
            "SUBSCRIPTIONS_TABLE_NAME": self.subscriptions_table_name,
            "STRIPE_CUSTOMERS_TABLE_NAME": self.stripe_customers_table_name,
            "TRIAL_FINGERPRINTS_TABLE_NAME": self.trial_fingerprints_table_name,
        }
        return [name for name, value in required.items() if not value]


S = Settings()
