"""Log correlation for generation attempts."""

from .correlation import (
    bind_attempt_id,
    ensure_request_id,
    get_attempt_id,
    get_request_id,
    new_attempt_id,
)

__all__ = [
    "bind_attempt_id",
    "ensure_request_id",
    "get_attempt_id",
    "get_request_id",
    "new_attempt_id",
]
