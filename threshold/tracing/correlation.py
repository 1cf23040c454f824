"""Correlation helpers for attempt and request IDs."""

from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


_attempt_id: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_attempt_id() -> Optional[str]:
    """Return the generation attempt bound to the current context, if any."""
    return _attempt_id.get()


def new_attempt_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def bind_attempt_id(attempt_id: str) -> Iterator[str]:
    """Bind ``attempt_id`` for log correlation within the block."""
    token = _attempt_id.set(attempt_id)
    try:
        yield attempt_id
    finally:
        _attempt_id.reset(token)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def ensure_request_id() -> str:
    """Ensure a request ID is set in context, generating one if needed."""
    current = _request_id.get()
    if current:
        return current

    env_request_id = os.getenv("REQUEST_ID")
    if env_request_id:
        _request_id.set(env_request_id)
        return env_request_id

    generated = str(uuid.uuid4())
    _request_id.set(generated)
    return generated
