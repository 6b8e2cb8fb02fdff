"""REST API layer for apitracker.

Exposes:
    create_app -- FastAPI application factory.
"""

from apitracker.api.app import create_app

__all__ = ["create_app"]
