from __future__ import annotations


class BillingError(Exception):
    """Base for failures raised while handling a payment-provider event."""

    status_code = 500


class AuthenticationError(BillingError):
    status_code = 400


class ConfigurationError(BillingError):
    status_code = 500


class StorageError(BillingError):
    status_code = 500


class CorrectiveActionError(BillingError):
    status_code = 500


class FingerprintLookupError(BillingError):
    # Never leaves the fingerprint ledger; the abuse check fails open on it.
    status_code = 500
