"""Request-scoped dependencies."""

from __future__ import annotations

from fastapi import Request

from krelease.auth.credentials import extract_credential
from krelease.models.access import Principal


def require_principal(request: Request) -> Principal:
    """Classify the request credential; AuthError propagates to the 401 handler."""
    credential = extract_credential(request.headers, request.query_params)
    return request.app.state.classifier.classify(credential)
