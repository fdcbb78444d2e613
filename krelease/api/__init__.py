"""REST API layer for krelease.

Exposes:
    create_app -- FastAPI application factory.
"""

from krelease.api.app import create_app

__all__ = ["create_app"]
