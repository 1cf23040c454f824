#!/usr/bin/env python3
"""
World Generation Job.

Runs one world acquisition attempt end to end: optional concept image,
start, poll, asset resolution and presentation selection. Writes the
normalized world and the chosen presentation as JSON.

Environment Variables:
    WORLD_LABS_API_KEY: API key for the world generation service (required)
    GEMINI_API_KEY: API key for concept images (optional; text prompt without it)
    THEME: Theme to generate (default: random pick from the catalog)
    OUTPUT_PATH: Where to write the result JSON (default: stdout)
    CONCEPT_IMAGE: Generate a concept image first - default: true
    LOG_LEVEL / LOG_JSON: Logging configuration
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from threshold.asset_fetch import BinaryAssetFetcher  # noqa: E402
from threshold.concept_image import GeminiConceptImageSource  # noqa: E402
from threshold.config import PipelineConfig, load_pipeline_config  # noqa: E402
from threshold.error_handling import PipelineError  # noqa: E402
from threshold.external_services import (  # noqa: E402
    AiohttpTransport,
    NetworkPathResolver,
    build_network_paths,
)
from threshold.presentation import PresentationSelector  # noqa: E402
from threshold.session import ExperienceSession, SessionPhase, SessionStore  # noqa: E402
from threshold.tracing import ensure_request_id  # noqa: E402
from threshold.validation import (  # noqa: E402
    JobEnvironmentConfig,
    validate_job_environment,
    validate_required_env_vars,
)
from threshold.world_generation import (  # noqa: E402
    AssetResolver,
    GenerationOrchestrator,
    WorldGenerationClient,
)

JOB_NAME = "world-generation-job"
LABEL = "[WORLD-GEN]"
logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate one explorable world and pick its presentation.")
    parser.add_argument("--theme", default=None, help="Theme to generate (default: $THEME or random)")
    parser.add_argument(
        "--no-concept-image",
        action="store_true",
        help="Skip the concept image and send a text prompt",
    )
    parser.add_argument("--output", default=None, help="Result JSON path (default: $OUTPUT_PATH or stdout)")
    parser.add_argument("--config", default=None, help="Alternate pipeline_config.json")
    return parser.parse_args(argv)


def build_session(
    config: PipelineConfig,
    env_config: JobEnvironmentConfig,
    use_concept_image: bool,
    transport: Optional[AiohttpTransport] = None,
) -> Tuple[ExperienceSession, AiohttpTransport]:
    """Wire the pipeline together around one shared transport."""
    transport = transport or AiohttpTransport(default_timeout=config.service.request_timeout_seconds)
    resolver = NetworkPathResolver(transport, build_network_paths(config.relays))
    client = WorldGenerationClient(
        resolver,
        env_config.world_labs_api_key,
        service=config.service,
        polling=config.polling,
    )

    concept_source = None
    if use_concept_image and config.concept_image.enabled:
        if env_config.gemini_api_key:
            concept_source = GeminiConceptImageSource(env_config.gemini_api_key, config.concept_image)
        else:
            logger.info("GEMINI_API_KEY not set; using text prompts")

    orchestrator = GenerationOrchestrator(
        client,
        AssetResolver(config.resolution),
        config,
        concept_source=concept_source,
    )
    fetcher = BinaryAssetFetcher(
        resolver,
        min_bytes=config.fetch.min_bytes,
        rejected_content_types=config.fetch.rejected_content_types,
        request_timeout=config.fetch.request_timeout_seconds,
    )
    selector = PresentationSelector(fetcher, config.resolution.category_priority)
    return ExperienceSession(SessionStore(), orchestrator, selector), transport


def _write_result(payload: dict, output: Optional[str]) -> None:
    text = json.dumps(payload, indent=2)
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n")
        logger.info(f"{LABEL} Result written to {path}")
    else:
        print(text)


async def run(
    config: PipelineConfig,
    env_config: JobEnvironmentConfig,
    theme: Optional[str],
    use_concept_image: bool,
    output: Optional[str],
    transport: Optional[AiohttpTransport] = None,
) -> int:
    session, transport = build_session(config, env_config, use_concept_image, transport)
    try:
        presentation = await session.enter_portal(theme)
    finally:
        await transport.close()

    store = session.store
    if presentation is None or store.phase is not SessionPhase.EXPLORING:
        message = store.error_message or "World generation did not finish."
        print(f"{LABEL} ERROR: {message} (action: {store.recovery_action or 'restart'})", file=sys.stderr)
        return 1

    payload = {
        "job": JOB_NAME,
        "theme": session.last_theme,
        "world": store.current_world.to_dict(),
        "presentation": presentation.to_dict(),
    }
    _write_result(payload, output)
    presentation.release()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    validate_required_env_vars(
        {"WORLD_LABS_API_KEY": "API key for the world generation service"},
        label=LABEL,
    )
    env_config = validate_job_environment(LABEL)
    ensure_request_id()

    try:
        config = load_pipeline_config(config_path=Path(args.config) if args.config else None)
    except PipelineError as exc:
        print(f"{LABEL} ERROR: {exc.message}", file=sys.stderr)
        return 1

    theme = args.theme or env_config.theme
    use_concept_image = env_config.concept_image and not args.no_concept_image
    output = args.output or env_config.output_path

    logger.info(f"{LABEL} Configuration:")
    logger.info(f"{LABEL}   Theme: {theme or '(random)'}")
    logger.info(f"{LABEL}   Concept image: {use_concept_image}")
    logger.info(f"{LABEL}   Relays: {[relay.name for relay in config.relays]}")
    logger.info(f"{LABEL}   Poll interval/deadline: {config.polling.interval_seconds}s/{config.polling.deadline_seconds}s")

    return asyncio.run(run(config, env_config, theme, use_concept_image, output))


if __name__ == "__main__":
    from threshold.logging_config import init_logging

    init_logging()
    sys.exit(main(sys.argv[1:]))
