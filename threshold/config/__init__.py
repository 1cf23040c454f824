"""Pipeline Configuration Module.

Centralized configuration for the world acquisition pipeline. Defaults live in
``pipeline_config.json`` next to this module; they can be overridden by
environment variables (prefixed with ``THRESHOLD_``) or programmatically.

The differing constants that a world pipeline tends to accumulate (relay
endpoints, poll interval, deadline, asset category priority) are all
configuration here rather than separate code paths.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from threshold.error_handling.errors import ConfigurationError

logger = logging.getLogger(__name__)


CONFIG_DIR = Path(__file__).parent
PIPELINE_CONFIG_PATH = CONFIG_DIR / "pipeline_config.json"
ENV_PREFIX = "THRESHOLD_"

CATEGORY_NAMES = ("splat", "mesh", "panorama", "preview_image")


@dataclass
class ServiceConfig:
    """Generation service endpoint settings."""
    base_url: str = "https://api.worldlabs.ai/marble/v1"
    api_key_header: str = "WLT-Api-Key"
    display_name_limit: int = 50
    request_timeout_seconds: float = 60.0
    text_prompt_template: str = "A high quality 3D explorable world of {theme}, immersive, cinematic."


@dataclass
class RelayConfig:
    """A pass-through relay; the target URL is percent-encoded after ``prefix``."""
    name: str
    prefix: str


@dataclass
class PollingConfig:
    """Operation polling cadence and deadline."""
    interval_seconds: float = 10.0
    deadline_seconds: float = 900.0
    transient_status_codes: List[int] = field(
        default_factory=lambda: [404, 408, 429, 500, 502, 503, 504, 522]
    )
    terminal_status_codes: List[int] = field(default_factory=lambda: [401, 403])


@dataclass
class FetchConfig:
    """Binary asset sanity thresholds."""
    min_bytes: int = 2000
    rejected_content_types: List[str] = field(
        default_factory=lambda: ["text/html", "application/xhtml+xml"]
    )
    request_timeout_seconds: float = 120.0


@dataclass
class ResolutionConfig:
    """Where to look for asset references in a completion payload."""
    category_priority: List[str] = field(default_factory=lambda: list(CATEGORY_NAMES))
    known_paths: Dict[str, List[str]] = field(default_factory=dict)
    signatures: Dict[str, List[str]] = field(default_factory=dict)
    external_viewer_paths: List[str] = field(default_factory=list)


@dataclass
class FallbackConfig:
    """Degradation policy after a failed or empty poll."""
    text_prompt_retry: bool = True
    retry_on_timeout: bool = True
    max_depth: int = 1


@dataclass
class ConceptImageConfig:
    """Concept image generation used to condition the world request."""
    enabled: bool = True
    model: str = "gemini-3-pro-image-preview"
    prompt_template: str = "A first-person view of {theme}, immersive, cinematic lighting, 8k."
    aspect_ratio: str = "1:1"
    image_size: str = "1K"


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    relays: List[RelayConfig] = field(default_factory=list)
    polling: PollingConfig = field(default_factory=PollingConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    concept_image: ConceptImageConfig = field(default_factory=ConceptImageConfig)
    themes: List[str] = field(default_factory=list)


_SECTIONS = ("service", "polling", "fetch", "resolution", "fallback", "concept_image")
_TOP_LEVEL_KEYS = ("relays", "themes")


class ConfigLoader:
    """Configuration loader with environment variable override support.

    Loads configuration from a JSON file and supports overrides via:
    1. Environment variables (prefixed with THRESHOLD_)
    2. Custom config file paths
    3. Programmatic overrides

    Example:
        # Load default config
        config = ConfigLoader.load_pipeline_config()

        # Override via environment
        # THRESHOLD_POLLING_INTERVAL_SECONDS=5

        # Override programmatically
        config = ConfigLoader.load_pipeline_config(
            overrides={"polling": {"deadline_seconds": 1200}}
        )
    """

    _pipeline_config_cache: Optional[PipelineConfig] = None

    @classmethod
    def _load_json(cls, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", config_key=str(path))
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}", config_key=str(path)) from e

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        try:
            return json.loads(value)
        except (ValueError, TypeError):
            return value

    @classmethod
    def _apply_env_overrides(
        cls,
        config: Dict[str, Any],
        env: Optional[Dict[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> Dict[str, Any]:
        """Apply environment variable overrides.

        Environment variables are parsed as:
        THRESHOLD_<SECTION>_<KEY>=value -> config[section][key] = value
        THRESHOLD_RELAYS / THRESHOLD_THEMES take a JSON list.

        Example:
            THRESHOLD_POLLING_DEADLINE_SECONDS=1200
            -> config["polling"]["deadline_seconds"] = 1200
        """
        source = os.environ if env is None else env
        sections = sorted(_SECTIONS, key=len, reverse=True)
        for key, raw in source.items():
            if not key.startswith(prefix):
                continue
            name = key[len(prefix):].lower()
            if name in _TOP_LEVEL_KEYS:
                config[name] = cls._parse_env_value(raw)
                continue
            for section in sections:
                if name.startswith(section + "_"):
                    option = name[len(section) + 1:]
                    config.setdefault(section, {})[option] = cls._parse_env_value(raw)
                    logger.debug("Config override from %s", key)
                    break
        return config

    @classmethod
    def _deep_merge(cls, base: Dict, override: Dict) -> Dict:
        """Deep merge override into base dict."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def validate_config(cls, config: Dict[str, Any]) -> Dict[str, str]:
        """Return a mapping of config key -> problem; empty when valid."""
        errors: Dict[str, str] = {}

        polling = config.get("polling", {})
        if float(polling.get("interval_seconds", 1.0)) <= 0:
            errors["polling.interval_seconds"] = "must be > 0"
        if float(polling.get("deadline_seconds", 1.0)) <= 0:
            errors["polling.deadline_seconds"] = "must be > 0"

        service = config.get("service", {})
        if not str(service.get("base_url", "")).startswith(("http://", "https://")):
            errors["service.base_url"] = "must be an http(s) URL"
        if int(service.get("display_name_limit", 1)) < 1:
            errors["service.display_name_limit"] = "must be >= 1"

        fetch = config.get("fetch", {})
        if int(fetch.get("min_bytes", 0)) < 0:
            errors["fetch.min_bytes"] = "must be >= 0"

        for index, relay in enumerate(config.get("relays", [])):
            if not isinstance(relay, dict) or not relay.get("name") or not relay.get("prefix"):
                errors[f"relays[{index}]"] = "needs a name and a prefix"

        resolution = config.get("resolution", {})
        priority = resolution.get("category_priority", list(CATEGORY_NAMES))
        unknown = [name for name in priority if name not in CATEGORY_NAMES]
        if unknown:
            errors["resolution.category_priority"] = f"unknown categories: {unknown}"
        if len(set(priority)) != len(priority):
            errors["resolution.category_priority"] = "categories must not repeat"

        fallback = config.get("fallback", {})
        if int(fallback.get("max_depth", 1)) not in (0, 1):
            errors["fallback.max_depth"] = "must be 0 or 1"

        themes = config.get("themes", [])
        if not themes or not all(isinstance(theme, str) and theme.strip() for theme in themes):
            errors["themes"] = "must be a non-empty list of strings"

        return errors

    @classmethod
    def load_pipeline_config(
        cls,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        use_cache: bool = True,
        validate: bool = True,
        env: Optional[Dict[str, str]] = None,
    ) -> PipelineConfig:
        """Load pipeline configuration.

        Args:
            config_path: Optional custom config file path
            overrides: Optional dict of overrides to apply
            use_cache: Whether to use cached config
            validate: Whether to validate the configuration
            env: Environment mapping (defaults to ``os.environ``)

        Raises:
            ConfigurationError: If validation is enabled and config is invalid
        """
        cacheable = use_cache and config_path is None and not overrides and env is None
        if cacheable and cls._pipeline_config_cache is not None:
            return cls._pipeline_config_cache

        config = cls._load_json(config_path or PIPELINE_CONFIG_PATH)
        config = cls._apply_env_overrides(config, env)
        if overrides:
            config = cls._deep_merge(config, overrides)

        if validate:
            errors = cls.validate_config(config)
            if errors:
                error_msg = "\n".join(f"  {key}: {msg}" for key, msg in errors.items())
                raise ConfigurationError(
                    f"Configuration validation failed:\n{error_msg}",
                    config_key=next(iter(errors)),
                )

        try:
            pipeline_config = cls._build(config)
        except (TypeError, KeyError) as e:
            raise ConfigurationError(f"Unsupported configuration entry: {e}") from e
        if cacheable:
            cls._pipeline_config_cache = pipeline_config
        return pipeline_config

    @classmethod
    def _build(cls, config: Dict[str, Any]) -> PipelineConfig:
        polling = dict(config.get("polling", {}))
        for key in ("transient_status_codes", "terminal_status_codes"):
            if key in polling:
                polling[key] = [int(code) for code in polling[key]]
        resolution = config.get("resolution", {})
        return PipelineConfig(
            service=ServiceConfig(**config.get("service", {})),
            relays=[RelayConfig(name=r["name"], prefix=r["prefix"]) for r in config.get("relays", [])],
            polling=PollingConfig(**polling),
            fetch=FetchConfig(**config.get("fetch", {})),
            resolution=ResolutionConfig(
                category_priority=list(resolution.get("category_priority", CATEGORY_NAMES)),
                known_paths={k: list(v) for k, v in resolution.get("known_paths", {}).items()},
                signatures={k: list(v) for k, v in resolution.get("signatures", {}).items()},
                external_viewer_paths=list(resolution.get("external_viewer_paths", [])),
            ),
            fallback=FallbackConfig(**config.get("fallback", {})),
            concept_image=ConceptImageConfig(**config.get("concept_image", {})),
            themes=list(config.get("themes", [])),
        )

    @classmethod
    def clear_cache(cls) -> None:
        cls._pipeline_config_cache = None


def load_pipeline_config(**kwargs) -> PipelineConfig:
    """Load pipeline configuration."""
    return ConfigLoader.load_pipeline_config(**kwargs)


__all__ = [
    "CATEGORY_NAMES",
    "ConceptImageConfig",
    "ConfigLoader",
    "FallbackConfig",
    "FetchConfig",
    "PipelineConfig",
    "PollingConfig",
    "RelayConfig",
    "ResolutionConfig",
    "ServiceConfig",
    "load_pipeline_config",
]
