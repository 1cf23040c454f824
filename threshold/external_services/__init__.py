"""External service access with relay fallback."""

from .relay_resolver import (
    AiohttpTransport,
    HttpRequest,
    HttpResponse,
    NetworkPath,
    NetworkPathResolver,
    Transport,
    accept_any,
    build_network_paths,
    direct_path,
    relay_path,
    require_success,
)

__all__ = [
    "AiohttpTransport",
    "HttpRequest",
    "HttpResponse",
    "NetworkPath",
    "NetworkPathResolver",
    "Transport",
    "accept_any",
    "build_network_paths",
    "direct_path",
    "relay_path",
    "require_success",
]
