"""Error taxonomy shared by the ledger, the sync protocol and the API.

Every error carries a stable ``code`` and the HTTP ``status_code`` the API
layer maps it to.  ``SyncDeliveryFailure`` never reaches an external caller;
it is raised and handled inside a sync cycle.
"""

from __future__ import annotations


class KReleaseError(Exception):
    """Base class for all krelease errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(KReleaseError):
    """A required field is missing or malformed."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(KReleaseError):
    """The credential is absent or does not match any configured key."""

    code = "UNAUTHORIZED"
    status_code = 401


class AccessDenied(KReleaseError):
    """The credential is valid but scoped to a different tenant."""

    code = "ACCESS_DENIED"
    status_code = 403

    def __init__(self, client_name: str) -> None:
        super().__init__(f"API key is not authorized for client '{client_name}'")
        self.client_name = client_name


class NotFound(KReleaseError):
    """No fact matches the lookup."""

    code = "NOT_FOUND"
    status_code = 404


class AmbiguousMatch(KReleaseError):
    """A name lookup matched current releases in more than one namespace."""

    code = "AMBIGUOUS_MATCH"
    status_code = 409

    def __init__(self, lookup: str, namespaces: list[str]) -> None:
        super().__init__(f"multiple releases found for {lookup} in namespaces: {', '.join(namespaces)}")
        self.namespaces = namespaces


class TransientStoreError(KReleaseError):
    """The store is unreachable; safe to retry."""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class SyncDeliveryFailure(KReleaseError):
    """A single outbox entry could not be delivered to the aggregator."""

    code = "SYNC_DELIVERY_FAILED"
    status_code = 502

    def __init__(self, entry_id: int, reason: str) -> None:
        super().__init__(f"outbox entry {entry_id} not delivered: {reason}")
        self.entry_id = entry_id
        self.reason = reason
