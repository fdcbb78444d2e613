"""Credential extraction from HTTP requests."""

from __future__ import annotations

from collections.abc import Mapping

_BEARER_PREFIX = "Bearer "


def extract_credential(headers: Mapping[str, str], query: Mapping[str, str]) -> str | None:
    """Return the raw credential, checked in order: bearer, X-API-Key, ``apikey``.

    All three carriers yield the same string, so classification does not
    depend on how the credential arrived.
    """
    auth = headers.get("authorization", "")
    if auth.startswith(_BEARER_PREFIX):
        token = auth[len(_BEARER_PREFIX) :].strip()
        if token:
            return token

    header_key = headers.get("x-api-key", "").strip()
    if header_key:
        return header_key

    query_key = query.get("apikey", "").strip()
    return query_key or None
