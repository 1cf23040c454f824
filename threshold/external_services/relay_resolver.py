"""
Network path resolution with relay fallback.

A logical request is tried against an ordered list of physical network
paths: the direct URL first, then each configured relay with the target URL
percent-encoded into the relay's query string. The first path whose response
passes the caller's check wins; there is no merging and no caching. When
every path is exhausted a ``NetworkFailure`` is raised carrying the last
status/error seen.

Example:
    async with AiohttpTransport() as transport:
        resolver = NetworkPathResolver(transport, build_network_paths(config.relays))
        response = await resolver.resolve(
            HttpRequest("GET", "https://example.com/world.spz"),
            check=require_success,
        )
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import aiohttp

from threshold.config import RelayConfig
from threshold.error_handling.errors import NetworkFailure, looks_like_markup
from threshold.error_handling.logging import log_pipeline_error

logger = logging.getLogger(__name__)

MARKUP_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)
DIRECT_PATH_NAME = "direct"


@dataclass(frozen=True)
class HttpRequest:
    """Logical HTTP request, independent of the path it travels."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = None

    def with_url(self, url: str) -> "HttpRequest":
        return dataclasses.replace(self, url=url)


@dataclass
class HttpResponse:
    """Fully-read HTTP response plus the path that produced it."""

    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    path_name: str = DIRECT_PATH_NAME

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.split(";", 1)[0].strip().lower()
        return ""

    @property
    def is_markup(self) -> bool:
        """True for HTML interstitials/error pages, judged by header or body.

        JSON responses are never sniffed.
        """
        content_type = self.content_type
        if content_type in MARKUP_CONTENT_TYPES:
            return True
        if content_type.endswith("json"):
            return False
        return looks_like_markup(self.body[:512].decode("utf-8", errors="replace"))

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


Transport = Callable[[HttpRequest], Awaitable[HttpResponse]]

# Returns None when the response is acceptable, otherwise the rejection reason.
ResponseCheck = Callable[[HttpResponse], Optional[str]]


def accept_any(response: HttpResponse) -> Optional[str]:
    return None


def require_success(response: HttpResponse) -> Optional[str]:
    if response.ok:
        return None
    return f"HTTP {response.status}"


@dataclass(frozen=True)
class NetworkPath:
    """One physical route for a logical request."""

    name: str
    transform: Callable[[HttpRequest], HttpRequest]

    def apply(self, request: HttpRequest) -> HttpRequest:
        return self.transform(request)


def direct_path() -> NetworkPath:
    return NetworkPath(DIRECT_PATH_NAME, lambda request: request)


def relay_path(name: str, prefix: str) -> NetworkPath:
    """Relay that receives the target URL percent-encoded after ``prefix``."""

    def _transform(request: HttpRequest) -> HttpRequest:
        return request.with_url(f"{prefix}{quote(request.url, safe='')}")

    return NetworkPath(name, _transform)


def build_network_paths(relays: Sequence[RelayConfig]) -> List[NetworkPath]:
    """Direct first, then relays in configured order."""
    return [direct_path()] + [relay_path(relay.name, relay.prefix) for relay in relays]


class AiohttpTransport:
    """Physical transport backed by a lazily created ``aiohttp.ClientSession``."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        default_timeout: float = 60.0,
        user_agent: str = "InfiniteThreshold/1.0",
    ):
        self._session = session
        self._owns_session = session is None
        self.default_timeout = default_timeout
        self.user_agent = user_agent

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the asynchronous session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
            self._owns_session = True
        return self._session

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=request.timeout or self.default_timeout)
        async with session.request(
            request.method,
            request.url,
            headers=dict(request.headers),
            data=request.body,
            timeout=timeout,
        ) as response:
            body = await response.read()
            return HttpResponse(
                status=response.status,
                body=body,
                headers={key: value for key, value in response.headers.items()},
                url=str(response.url),
            )

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class NetworkPathResolver:
    """
    Tries each network path in declared order until one is accepted.

    The resolver never coerces an error status into success: a response that
    fails ``check`` is remembered for diagnostics and the next path is tried.
    Transport exceptions are treated the same way.
    """

    def __init__(
        self,
        transport: Transport,
        paths: Sequence[NetworkPath],
        service_name: str = "world_service",
    ):
        if not paths:
            raise ValueError("NetworkPathResolver needs at least one path")
        self._transport = transport
        self.paths = list(paths)
        self.service_name = service_name

    async def resolve(
        self,
        request: HttpRequest,
        check: ResponseCheck = accept_any,
    ) -> HttpResponse:
        """
        Return the first response accepted by ``check``.

        Raises:
            NetworkFailure: every path raised or was rejected. ``last_response``
                holds the final rejected response (if any path answered) and
                ``rejections``/``path_statuses`` the per-path reasons and statuses.
        """
        attempted: List[str] = []
        rejections: List[str] = []
        path_statuses: Dict[str, int] = {}
        last_status: Optional[int] = None
        last_error: Optional[str] = None
        last_response: Optional[HttpResponse] = None

        for path in self.paths:
            attempted.append(path.name)
            physical = path.apply(request)
            try:
                response = await self._transport(physical)
            except TRANSPORT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"{request.method} {request.url} via {path.name} failed: {last_error}",
                    extra={"service": self.service_name, "path": path.name, "url": request.url},
                )
                continue

            response.path_name = path.name
            reason = check(response)
            if reason is None:
                logger.debug(
                    f"{request.method} {request.url} accepted via {path.name} ({response.status})",
                    extra={"service": self.service_name, "path": path.name, "status": response.status},
                )
                return response

            last_status = response.status
            last_response = response
            last_error = reason
            rejections.append(f"{path.name}: {reason}")
            path_statuses[path.name] = response.status
            logger.warning(
                f"{request.method} {request.url} via {path.name} rejected: {reason}",
                extra={
                    "service": self.service_name,
                    "path": path.name,
                    "url": request.url,
                    "status": response.status,
                },
            )

        failure = NetworkFailure(
            f"All {len(attempted)} network paths failed for {request.method} {request.url}",
            url=request.url,
            last_status=last_status,
            last_error=last_error,
            last_response=last_response,
            attempted_paths=attempted,
            rejections=rejections,
            path_statuses=path_statuses,
        )
        log_pipeline_error(failure, "Network paths exhausted", logger=logger, level=logging.WARNING)
        raise failure
