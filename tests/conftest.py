"""
Shared pytest fixtures for Infinite Threshold tests.

No test touches the network: every HTTP call goes through ``FakeTransport``,
which answers from scripted routes, and the poll loop runs on ``FakeClock``
so multi-minute deadlines elapse instantly.
"""

from __future__ import annotations

import dataclasses
import importlib.util
import json
import sys
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import aiohttp
import pytest


# ============================================================================
# PATH AND MODULE FIXTURES
# ============================================================================

@pytest.fixture(scope="session")
def repo_root() -> Path:
    """Return the repository root directory."""
    return Path(__file__).resolve().parents[1]


@pytest.fixture(scope="session")
def add_repo_to_path(repo_root: Path) -> None:
    """Add repository root to sys.path for imports."""
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


def _load_module_from_path(module_name: str, file_path: Path):
    """Load a Python module from a file path."""
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Unable to load module {module_name} from {file_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def load_job_module(repo_root: Path, add_repo_to_path):
    """Factory fixture for loading job scripts (their directories are not packages)."""
    def _loader(job_dir: str, module_file: str):
        module_path = repo_root / job_dir / module_file
        name = f"{job_dir.replace('-', '_')}.{module_file.replace('.py', '')}"
        return _load_module_from_path(name, module_path)

    return _loader


# ============================================================================
# FAKE NETWORK AND CLOCK
# ============================================================================

Result = Union[Any, BaseException]


class FakeTransport:
    """
    Scripted async transport.

    Routes are matched in registration order by URL prefix (or predicate).
    Each route answers with its results in turn; the last one repeats.
    Results are ``HttpResponse`` objects or exceptions to raise. Requests
    that match no route fail with a connection error.
    """

    def __init__(self):
        self.calls: List[Any] = []
        self.closed = False
        self._routes: List[Tuple[Callable[[Any], bool], Deque[Result]]] = []

    def add(self, match: Union[str, Callable[[Any], bool]], *results: Result) -> "FakeTransport":
        if not results:
            raise ValueError("add() needs at least one result")
        if isinstance(match, str):
            prefix = match
            predicate = lambda request: request.url.startswith(prefix)  # noqa: E731
        else:
            predicate = match
        self._routes.append((predicate, deque(results)))
        return self

    async def __call__(self, request):
        self.calls.append(request)
        for predicate, queue in self._routes:
            if predicate(request):
                result = queue[0] if len(queue) == 1 else queue.popleft()
                if isinstance(result, BaseException):
                    raise result
                return dataclasses.replace(result, headers=dict(result.headers))
        raise aiohttp.ClientConnectionError(f"no route for {request.method} {request.url}")

    async def close(self) -> None:
        self.closed = True

    @property
    def urls(self) -> List[str]:
        return [request.url for request in self.calls]

    def calls_to(self, prefix: str) -> List[Any]:
        return [request for request in self.calls if request.url.startswith(prefix)]


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_response(add_repo_to_path):
    """Factory for ``HttpResponse`` objects."""
    from threshold.external_services.relay_resolver import HttpResponse

    def _make(
        status: int = 200,
        body: Union[bytes, str] = b"",
        content_type: Optional[str] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        all_headers = dict(headers or {})
        if json_body is not None:
            body = json.dumps(json_body)
            content_type = content_type or "application/json"
        if isinstance(body, str):
            body = body.encode("utf-8")
        if content_type:
            all_headers["Content-Type"] = content_type
        return HttpResponse(status=status, body=body, headers=all_headers)

    return _make


@pytest.fixture
def pipeline_config(add_repo_to_path):
    """Default pipeline configuration, isolated from the process environment."""
    from threshold.config import ConfigLoader

    return ConfigLoader.load_pipeline_config(use_cache=False, env={})


@pytest.fixture
def resolver(add_repo_to_path, fake_transport, pipeline_config):
    from threshold.external_services.relay_resolver import NetworkPathResolver, build_network_paths

    return NetworkPathResolver(fake_transport, build_network_paths(pipeline_config.relays))


@pytest.fixture(autouse=True)
def _clear_config_cache(add_repo_to_path):
    yield
    from threshold.config import ConfigLoader

    ConfigLoader.clear_cache()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "e2e: marks tests as end-to-end tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
