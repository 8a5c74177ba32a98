"""API dependencies."""

from fieldchart.api.dependencies.auth import (
    Actor,
    RequestMeta,
    get_current_active_user,
    get_current_user,
    get_request_meta,
)

__all__ = [
    "Actor",
    "RequestMeta",
    "get_current_user",
    "get_current_active_user",
    "get_request_meta",
]
