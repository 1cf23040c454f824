from __future__ import annotations

import logging
import os
import sys
from typing import Iterable, Mapping, Optional

from pydantic import ValidationError

from threshold.validation.config_schemas import JobEnvironmentConfig, load_and_validate_env_config

logger = logging.getLogger(__name__)


def _format_validation_errors(errors: Iterable[dict]) -> list[str]:
    formatted = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", []))
        msg = err.get("msg", "Invalid value")
        formatted.append(f"{loc}: {msg}" if loc else msg)
    return formatted


def _report(label: str, header: str, messages: Iterable[str]) -> None:
    messages = list(messages)
    logger.error("%s %s", label, header)
    print(f"{label} {header}", file=sys.stderr)
    for message in messages:
        logger.error("%s   - %s", label, message)
        print(f"{label}   - {message}", file=sys.stderr)


def validate_required_env_vars(
    required_vars: Mapping[str, str],
    label: str,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    """Exit with status 1 when any required variable is unset or blank."""
    source = os.environ if env is None else env
    missing = [name for name in required_vars if not str(source.get(name, "")).strip()]
    if missing:
        hints = [
            f"{name}: {required_vars[name]}" if required_vars.get(name) else name
            for name in missing
        ]
        _report(label, "ERROR: missing required environment variables:", hints)
        sys.exit(1)


def validate_job_environment(label: str, env: Optional[Mapping[str, str]] = None) -> JobEnvironmentConfig:
    """Validate the job environment, exiting with status 1 when it is invalid."""
    try:
        return load_and_validate_env_config(env)
    except ValidationError as exc:
        _report(label, "ERROR: invalid environment configuration:", _format_validation_errors(exc.errors()))
        sys.exit(1)
