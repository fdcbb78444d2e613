"""Access control for krelease.

Exposes:
    AccessKeyClassifier -- validates a raw credential into a Principal.
    parse_access_key    -- splits a raw credential into AdminKey | TenantKey.
    extract_credential  -- pulls the raw credential from bearer header,
                           X-API-Key header or ``apikey`` query parameter.
"""

from krelease.auth.classifier import AccessKeyClassifier, parse_access_key
from krelease.auth.credentials import extract_credential

__all__ = ["AccessKeyClassifier", "extract_credential", "parse_access_key"]
