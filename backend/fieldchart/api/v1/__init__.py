"""API v1."""

from fieldchart.api.v1.api import api_router

__all__ = ["api_router"]
