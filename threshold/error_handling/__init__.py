"""
Error handling for the world acquisition pipeline.

Usage:
    from threshold.error_handling import (
        NetworkFailure,
        PollFailure,
        GenerationFailed,
        log_pipeline_error,
    )

    try:
        world = await orchestrator.generate()
    except GenerationFailed as exc:
        log_pipeline_error(exc, "world generation failed")
        show(exc.user_message, exc.recovery_action)
"""

from .errors import (
    GENERIC_SERVICE_MESSAGE,
    AssetValidationFailure,
    AttemptCancelled,
    AttemptInProgress,
    ConceptImageUnavailable,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    GenerationFailed,
    GenerationTimeout,
    NetworkFailure,
    PipelineError,
    PollFailure,
    ResolutionEmpty,
    StartFailure,
    looks_like_markup,
    sanitize_error_body,
)

from .logging import log_pipeline_error

__all__ = [
    "GENERIC_SERVICE_MESSAGE",
    # Base
    "PipelineError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    # Taxonomy
    "NetworkFailure",
    "AssetValidationFailure",
    "StartFailure",
    "PollFailure",
    "GenerationTimeout",
    "ResolutionEmpty",
    "ConfigurationError",
    "AttemptInProgress",
    "AttemptCancelled",
    "GenerationFailed",
    "ConceptImageUnavailable",
    # Helpers
    "looks_like_markup",
    "sanitize_error_body",
    "log_pipeline_error",
]
