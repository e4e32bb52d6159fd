from __future__ import annotations

from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from study_billing.core.errors import StorageError
from study_billing.core.time import now_iso


class UserDirectory:
    """Stub user rows plus the user -> Stripe customer mapping."""

    def __init__(self, users: Any, customers: Any) -> None:
        self.users = users
        self.customers = customers

    def ensure(self, user_id: str) -> None:
        try:
            self.users.update_item(
                Key={"id": user_id},
                UpdateExpression="SET #tu = if_not_exists(#tu, :f), #ca = if_not_exists(#ca, :now)",
                ExpressionAttributeNames={"#tu": "trial_used", "#ca": "created_at"},
                ExpressionAttributeValues={":f": False, ":now": now_iso()},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"ensure user {user_id} failed: {exc}") from exc

    def mark_trial_used(self, user_id: str) -> None:
        # set-true only; trial_used_at keeps the first time it was set
        try:
            self.users.update_item(
                Key={"id": user_id},
                UpdateExpression="SET #tu = :t, #tua = if_not_exists(#tua, :now)",
                ExpressionAttributeNames={"#tu": "trial_used", "#tua": "trial_used_at"},
                ExpressionAttributeValues={":t": True, ":now": now_iso()},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"mark trial used for {user_id} failed: {exc}") from exc

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.users.get_item(Key={"id": user_id}).get("Item")
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"read user {user_id} failed: {exc}") from exc

    def link_customer(self, user_id: str, customer_id: str) -> None:
        ts = now_iso()
        try:
            self.customers.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET #cid = :cid, #ca = if_not_exists(#ca, :now), #ua = :now",
                ExpressionAttributeNames={"#cid": "stripe_customer_id", "#ca": "created_at", "#ua": "updated_at"},
                ExpressionAttributeValues={":cid": customer_id, ":now": ts},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"link customer for {user_id} failed: {exc}") from exc
