from __future__ import annotations

import json
from typing import Optional

import stripe

from study_billing.core.errors import AuthenticationError
from study_billing.services.events import BillingEvent, parse_event


def verify_event(payload: bytes, sig_header: Optional[str], secret: str) -> BillingEvent:
    """
    Verify a webhook body against its ``stripe-signature`` header.

    ``payload`` must be the exact bytes received; re-serialized JSON will not
    match the signature. Raises AuthenticationError for a missing header, a
    bad or expired signature, or a body that is not JSON.
    """
    if not sig_header:
        raise AuthenticationError("Missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
    except stripe.SignatureVerificationError as exc:
        raise AuthenticationError(f"Signature verification failed: {exc}") from exc
    except ValueError as exc:
        raise AuthenticationError(f"Invalid payload: {exc}") from exc

    body = json.loads(payload)
    if not isinstance(body, dict) or not body.get("type"):
        raise AuthenticationError("Invalid payload: not an event object")
    return parse_event(body)
