"""
Exception hierarchy for the world acquisition pipeline.

Every failure in the pipeline is attempt-scoped: it ends (or degrades) the
current generation attempt and is recoverable by starting a new one. Each
error carries a sanitized ``user_message`` that is safe to show on screen and
a structured ``to_dict()`` form for logs.
"""

from __future__ import annotations

import json
import os
import re
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


GENERIC_SERVICE_MESSAGE = "The world service is unavailable right now."
RESTART_ACTION = "restart"

_MARKUP_PATTERN = re.compile(r"^\s*(<!doctype|<html|<\?xml|<head|<body)", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def _debug_enabled() -> bool:
    return os.getenv("THRESHOLD_DEBUG", "0").strip().lower() in {"1", "true", "yes", "y", "on"}


def looks_like_markup(text: Optional[str]) -> bool:
    """Return True when a body looks like an HTML/XML page rather than data."""
    if not text:
        return False
    if _MARKUP_PATTERN.match(text):
        return True
    return "</html>" in text.lower()


def sanitize_error_body(text: Optional[str], limit: int = 200) -> Optional[str]:
    """Collapse a service error body into a short single-line message.

    Markup pages become the generic service message; anything else is
    stripped of tags, whitespace-collapsed and truncated to ``limit``.
    """
    if text is None:
        return None
    if looks_like_markup(text):
        return GENERIC_SERVICE_MESSAGE
    cleaned = _WHITESPACE_PATTERN.sub(" ", _TAG_PATTERN.sub(" ", text)).strip()
    if len(cleaned) > limit:
        cleaned = cleaned[: limit - 3].rstrip() + "..."
    return cleaned


class ErrorSeverity(str, Enum):
    """Severity levels for pipeline errors."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Categories of pipeline errors."""
    NETWORK = "network"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    TIMEOUT = "timeout"
    DATA = "data"
    CONFIGURATION = "configuration"
    CONCURRENCY = "concurrency"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    attempt_id: Optional[str] = None
    operation_id: Optional[str] = None
    step: Optional[str] = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )
    additional: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "operation_id": self.operation_id,
            "step": self.step,
            "timestamp": self.timestamp,
            "additional": self.additional,
        }


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    ``message`` is the diagnostic text for logs; ``user_message`` is the
    short, markup-free text shown to the player next to the restart action.
    """

    default_user_message = "Something went wrong while building the world."

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        retryable: bool = True,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause
        self._user_message = user_message
        self._path_redaction_regex = re.compile(r"(?:[A-Za-z]:\\\\|/)[^\s]+")
        self.traceback_str = traceback.format_exc() if cause and _debug_enabled() else None

    @property
    def user_message(self) -> str:
        return sanitize_error_body(self._user_message or self.default_user_message) or self.default_user_message

    @property
    def recovery_action(self) -> str:
        return RESTART_ACTION

    def _sanitize_message(self, message: str) -> str:
        if not message or _debug_enabled():
            return message
        return self._path_redaction_regex.sub("<redacted-path>", message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self._sanitize_message(self.message),
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": self._sanitize_message(str(self.cause)) if self.cause else None,
            "traceback": self.traceback_str if _debug_enabled() else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class NetworkFailure(PipelineError):
    """Every network path was tried and none produced an accepted response."""

    default_user_message = "Connection to the world service was lost."

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        last_status: Optional[int] = None,
        last_error: Optional[str] = None,
        last_response: Any = None,
        attempted_paths: Optional[List[str]] = None,
        rejections: Optional[List[str]] = None,
        path_statuses: Optional[Dict[str, int]] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or ErrorContext()
        context.additional["url"] = url
        context.additional["last_status"] = last_status
        context.additional["last_error"] = last_error
        context.additional["attempted_paths"] = list(attempted_paths or [])
        context.additional["rejections"] = list(rejections or [])
        context.additional["path_statuses"] = dict(path_statuses or {})
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        super().__init__(message, context=context, **kwargs)
        self.url = url
        self.last_status = last_status
        self.last_error = last_error
        self.last_response = last_response
        self.attempted_paths = list(attempted_paths or [])
        self.rejections = list(rejections or [])
        self.path_statuses = dict(path_statuses or {})


class AssetValidationFailure(PipelineError):
    """A fetched payload failed the content sanity check on every path."""

    default_user_message = "The world data arrived damaged."

    def __init__(self, message: str, *, url: str, reasons: Optional[List[str]] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.additional["url"] = url
        context.additional["reasons"] = list(reasons or [])
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            retryable=False,
            context=context,
            **kwargs,
        )
        self.url = url
        self.reasons = list(reasons or [])


class StartFailure(PipelineError):
    """The generation service rejected (or never received) a start request."""

    default_user_message = "The world service refused the request."

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_body: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or ErrorContext()
        context.step = context.step or "start_generation"
        context.additional["status_code"] = status_code
        context.additional["error_body"] = error_body
        kwargs.setdefault("user_message", error_body)
        super().__init__(
            message,
            category=ErrorCategory.EXTERNAL_SERVICE,
            context=context,
            **kwargs,
        )
        self.status_code = status_code
        self.error_body = error_body


class PollFailure(PipelineError):
    """The operation finished with an error, or returned unparseable data."""

    default_user_message = "World construction failed."

    def __init__(self, message: str, *, operation_id: str, detail: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.operation_id = operation_id
        context.step = context.step or "poll_operation"
        context.additional["detail"] = detail
        kwargs.setdefault("retryable", False)
        if detail:
            kwargs.setdefault("user_message", f"World construction failed: {detail}")
        super().__init__(
            message,
            category=ErrorCategory.EXTERNAL_SERVICE,
            context=context,
            **kwargs,
        )
        self.operation_id = operation_id
        self.detail = detail


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{int(seconds)} seconds"
    minutes = int(seconds // 60)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


class GenerationTimeout(PipelineError):
    """The operation did not finish before the polling deadline."""

    default_user_message = "World construction timed out."

    def __init__(self, message: str, *, operation_id: str, elapsed: float, deadline: float, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.operation_id = operation_id
        context.step = context.step or "poll_operation"
        context.additional["elapsed_seconds"] = round(elapsed, 1)
        context.additional["deadline_seconds"] = deadline
        kwargs.setdefault("user_message", f"World construction timed out after {_format_duration(deadline)}.")
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            context=context,
            **kwargs,
        )
        self.operation_id = operation_id
        self.elapsed = elapsed
        self.deadline = deadline


class ResolutionEmpty(PipelineError):
    """A successful operation produced no usable asset reference."""

    default_user_message = "The generated world came back empty."

    def __init__(self, message: str, *, operation_id: str, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.operation_id = operation_id
        context.step = context.step or "resolve_assets"
        super().__init__(
            message,
            category=ErrorCategory.DATA,
            retryable=False,
            context=context,
            **kwargs,
        )
        self.operation_id = operation_id


class ConfigurationError(PipelineError):
    """Invalid or missing configuration."""

    default_user_message = "The experience is misconfigured."

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.additional["config_key"] = config_key
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            context=context,
            **kwargs,
        )
        self.config_key = config_key


class AttemptInProgress(PipelineError):
    """A second generation trigger arrived while an attempt is still active."""

    def __init__(self, active_attempt_id: str, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.attempt_id = active_attempt_id
        super().__init__(
            f"Generation attempt {active_attempt_id} is still in progress",
            category=ErrorCategory.CONCURRENCY,
            severity=ErrorSeverity.INFO,
            retryable=False,
            context=context,
            **kwargs,
        )
        self.active_attempt_id = active_attempt_id


class AttemptCancelled(PipelineError):
    """The attempt was aborted; whatever it produced is discarded."""

    def __init__(self, attempt_id: str, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.attempt_id = attempt_id
        super().__init__(
            f"Generation attempt {attempt_id} was cancelled",
            category=ErrorCategory.CONCURRENCY,
            severity=ErrorSeverity.INFO,
            retryable=False,
            context=context,
            **kwargs,
        )
        self.attempt_id = attempt_id


class GenerationFailed(PipelineError):
    """Terminal failure of one attempt after the fallback policy ran out."""

    def __init__(self, cause: PipelineError, *, attempt_id: Optional[str] = None, fallback_used: bool = False):
        context = ErrorContext(
            attempt_id=attempt_id,
            operation_id=cause.context.operation_id,
            step=cause.context.step,
            additional={"fallback_used": fallback_used},
        )
        super().__init__(
            f"Generation attempt failed: {cause.message}",
            category=cause.category,
            severity=cause.severity,
            retryable=True,
            context=context,
            cause=cause,
            user_message=cause.user_message,
        )
        self.final_error = cause
        self.fallback_used = fallback_used


class ConceptImageUnavailable(PipelineError):
    """The image-generation collaborator returned no usable image."""

    default_user_message = "The concept image could not be generated."

    def __init__(self, message: str, *, model: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or ErrorContext()
        context.step = context.step or "concept_image"
        context.additional["model"] = model
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, context=context, **kwargs)
        self.model = model
