"""REST API (FastAPI)."""

from k6fleet.api.app import API_PREFIX, create_app

__all__ = ["API_PREFIX", "create_app"]
