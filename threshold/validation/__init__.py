"""Entrypoint validation for jobs."""

from .config_schemas import JobEnvironmentConfig, load_and_validate_env_config
from .entrypoint_checks import validate_job_environment, validate_required_env_vars

__all__ = [
    "JobEnvironmentConfig",
    "load_and_validate_env_config",
    "validate_job_environment",
    "validate_required_env_vars",
]
