"""Access key classification.

A credential is classified exactly once, at the request boundary, into one
of two variants:

* ``TenantKey`` when splitting on ``KEY_SEPARATOR`` yields exactly two
  non-empty segments (``<client>-<secret>``);
* ``AdminKey`` for every other shape (no separator, several separators, or
  an empty segment).

The reconstructed full key is then compared in constant time against the
configured keys.  A client name that itself contains the separator cannot
be expressed as a tenant key and is validated as an admin key instead.
"""

from __future__ import annotations

import hmac

import structlog

from krelease.errors import AuthError
from krelease.models.access import KEY_SEPARATOR, AccessKey, AdminKey, Principal, TenantKey
from krelease.observability.logging import key_preview

_log = structlog.get_logger(component="auth.classifier")


def parse_access_key(raw: str) -> AccessKey:
    """Classify *raw* into an AdminKey or TenantKey without validating it."""
    parts = raw.split(KEY_SEPARATOR)
    if len(parts) == 2 and parts[0] and parts[1]:
        return TenantKey(client_name=parts[0], secret=parts[1])
    return AdminKey(secret=raw)


class AccessKeyClassifier:
    """Validates credentials against the configured API keys.

    Args:
        api_keys: Configured keys.  Tenant keys are stored in their full
                  ``<client>-<secret>`` form.  An empty list disables
                  authentication: every caller is treated as an admin.
    """

    def __init__(self, api_keys: list[str]) -> None:
        self._keys = [key.encode() for key in api_keys]

    @property
    def enabled(self) -> bool:
        return bool(self._keys)

    def classify(self, raw: str | None) -> Principal:
        """Return the Principal for *raw*.

        Raises:
            AuthError: the credential is missing or matches no configured key.
        """
        if not self.enabled:
            return Principal.admin()
        if not raw:
            raise AuthError("Missing API key")

        key = parse_access_key(raw)
        if not self._matches(key.full_key):
            _log.warning("authentication_failed", key_preview=key_preview(raw))
            raise AuthError("Invalid API key")

        if isinstance(key, TenantKey):
            return Principal.for_client(key.client_name)
        return Principal.admin()

    def _matches(self, candidate: str) -> bool:
        encoded = candidate.encode()
        matched = False
        # Compare against every key so timing does not reveal the match position.
        for valid in self._keys:
            if hmac.compare_digest(encoded, valid):
                matched = True
        return matched
