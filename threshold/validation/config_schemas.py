"""Pydantic schemas for job environment configuration."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from threshold.config.env import parse_bool


class JobEnvironmentConfig(BaseModel):
    """Environment configuration for the world generation job."""

    model_config = ConfigDict(extra="forbid")

    world_labs_api_key: str = Field(..., min_length=1)
    gemini_api_key: Optional[str] = None
    theme: Optional[str] = Field(default=None, max_length=200)
    output_path: Optional[str] = None
    concept_image: bool = Field(default=True)

    @field_validator("world_labs_api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        if any(ch.isspace() for ch in v):
            raise ValueError("must not contain whitespace")
        return v

    @field_validator("gemini_api_key", "theme", "output_path")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


def load_and_validate_env_config(env: Optional[Mapping[str, str]] = None) -> JobEnvironmentConfig:
    """
    Load and validate job configuration from environment variables.

    Raises:
        ValidationError: If configuration is invalid
    """
    source = os.environ if env is None else env
    return JobEnvironmentConfig(
        world_labs_api_key=source.get("WORLD_LABS_API_KEY", ""),
        gemini_api_key=source.get("GEMINI_API_KEY"),
        theme=source.get("THEME"),
        output_path=source.get("OUTPUT_PATH"),
        concept_image=parse_bool(source.get("CONCEPT_IMAGE"), default=True),
    )
