"""
World generation: start, poll, resolve and orchestrate.

Usage:
    from threshold.world_generation import (
        AssetResolver,
        GenerationOrchestrator,
        WorldGenerationClient,
    )

    client = WorldGenerationClient(resolver, api_key, config.service, config.polling)
    orchestrator = GenerationOrchestrator(client, AssetResolver(config.resolution), config)
    world = await orchestrator.generate("Solarpunk Greenhouse City")
"""

from .asset_resolver import AssetResolver, looks_like_reference
from .client import WorldGenerationClient, describe_service_error, extract_operation_id
from .models import (
    AssetCategory,
    GenerationRequest,
    NormalizedWorldAsset,
    Operation,
    OperationState,
    PreparedImage,
    ProgressUpdate,
)
from .orchestrator import ConceptImageSource, GenerationOrchestrator
from .state import (
    AttemptStateMachine,
    GenerationState,
    InvalidTransition,
    StateTransition,
)

__all__ = [
    "AssetCategory",
    "AssetResolver",
    "AttemptStateMachine",
    "ConceptImageSource",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationState",
    "InvalidTransition",
    "NormalizedWorldAsset",
    "Operation",
    "OperationState",
    "PreparedImage",
    "ProgressUpdate",
    "StateTransition",
    "WorldGenerationClient",
    "describe_service_error",
    "extract_operation_id",
    "looks_like_reference",
]
