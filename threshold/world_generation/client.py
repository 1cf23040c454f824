"""
Client for the remote world generation service.

Two calls make up the contract:

* ``start_generation`` submits a themed prompt (image-conditioned when a
  prepared image is supplied, text-only otherwise) and returns an
  ``Operation`` handle.
* ``poll_operation`` queries that operation until it reports completion or
  the deadline passes. A single bad poll never ends the loop; only a
  structurally confirmed failure or deadline exhaustion does.

Both calls travel through the ``NetworkPathResolver`` so the relay chain is
applied uniformly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

from threshold.config import PollingConfig, ServiceConfig
from threshold.error_handling.errors import (
    AttemptCancelled,
    GENERIC_SERVICE_MESSAGE,
    GenerationTimeout,
    NetworkFailure,
    PollFailure,
    StartFailure,
    sanitize_error_body,
)
from threshold.external_services.relay_resolver import (
    HttpRequest,
    HttpResponse,
    NetworkPathResolver,
    require_success,
)
from threshold.tracing.correlation import get_attempt_id
from threshold.world_generation.models import (
    GenerationRequest,
    Operation,
    ProgressUpdate,
)
from threshold.world_generation.payload import JsonValue

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressUpdate], None]

UNREACHABLE_MESSAGE = "The world service could not be reached."


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def extract_operation_id(data: Any) -> Optional[str]:
    """``operation_id`` when present, else the last segment of ``name``."""
    if not isinstance(data, dict):
        return None
    operation_id = data.get("operation_id")
    if isinstance(operation_id, str) and operation_id.strip():
        return operation_id.strip()
    name = data.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip().rstrip("/").rsplit("/", 1)[-1] or None
    return None


def describe_service_error(error: Any) -> str:
    """Readable detail for an ``error`` object returned by the service."""
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return json.dumps(error, separators=(",", ":"), sort_keys=True)
    return str(error)


def _error_body(response: HttpResponse) -> str:
    """Best-effort error text for a rejected start request."""
    text = response.text()
    if response.is_markup:
        return GENERIC_SERVICE_MESSAGE
    try:
        data = json.loads(text)
    except ValueError:
        return sanitize_error_body(text) or GENERIC_SERVICE_MESSAGE
    if isinstance(data, dict):
        for key in ("error", "detail", "message"):
            if key in data and data[key]:
                return sanitize_error_body(describe_service_error(data[key])) or GENERIC_SERVICE_MESSAGE
    return sanitize_error_body(text) or GENERIC_SERVICE_MESSAGE


class WorldGenerationClient:
    """
    Start and poll world generation operations.

    Example:
        client = WorldGenerationClient(resolver, api_key, config.service, config.polling)
        operation = await client.start_generation(GenerationRequest("Mars Red Desert Outpost"))
        payload = await client.poll_operation(operation, on_progress=print)
    """

    def __init__(
        self,
        resolver: NetworkPathResolver,
        api_key: str,
        service: Optional[ServiceConfig] = None,
        polling: Optional[PollingConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        wall_clock_ms: Callable[[], int] = _wall_clock_ms,
    ):
        self.resolver = resolver
        self.api_key = api_key
        self.service = service or ServiceConfig()
        self.polling = polling or PollingConfig()
        self._clock = clock
        self._sleep = sleep
        self._wall_clock_ms = wall_clock_ms

    @property
    def base_url(self) -> str:
        return self.service.base_url.rstrip("/")

    def _headers(self, *, json_body: bool = False) -> Dict[str, str]:
        headers = {self.service.api_key_header: self.api_key, "Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def build_start_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        """JSON body for ``worlds:generate``."""
        display_name = request.theme.strip()[: self.service.display_name_limit]
        if request.prepared_image is not None:
            world_prompt: Dict[str, Any] = {
                "type": "image",
                "image_prompt": {
                    "image": {
                        "image_bytes": request.prepared_image.data_b64,
                        "mime_type": request.prepared_image.mime_type,
                    }
                },
            }
        else:
            world_prompt = {
                "type": "text",
                "text_prompt": self.service.text_prompt_template.format(theme=request.theme.strip()),
            }
        return {"display_name": display_name, "world_prompt": world_prompt}

    async def start_generation(self, request: GenerationRequest) -> Operation:
        """
        Submit a generation request.

        Raises:
            StartFailure: every path was rejected, or the accepted response
                carried no operation id.
        """
        body = json.dumps(self.build_start_payload(request)).encode("utf-8")
        http_request = HttpRequest(
            "POST",
            f"{self.base_url}/worlds:generate",
            headers=self._headers(json_body=True),
            body=body,
            timeout=self.service.request_timeout_seconds,
        )
        mode = "image" if request.is_image_conditioned else "text"
        logger.info(f"Submitting {mode} world request for theme '{request.theme}'")

        try:
            response = await self.resolver.resolve(http_request, check=require_success)
        except NetworkFailure as failure:
            rejected = failure.last_response
            if rejected is not None:
                raise StartFailure(
                    f"Start generation rejected with HTTP {rejected.status}",
                    status_code=rejected.status,
                    error_body=_error_body(rejected),
                    cause=failure,
                ) from failure
            raise StartFailure(
                "Start generation failed: service unreachable",
                error_body=failure.last_error,
                user_message=UNREACHABLE_MESSAGE,
                cause=failure,
            ) from failure

        try:
            data = response.json()
        except ValueError as e:
            raise StartFailure(
                "Start generation returned a non-JSON body",
                status_code=response.status,
                error_body=GENERIC_SERVICE_MESSAGE,
                cause=e,
            ) from e

        operation_id = extract_operation_id(data)
        if not operation_id:
            raise StartFailure(
                "Start generation response carried no operation id",
                status_code=response.status,
                error_body=GENERIC_SERVICE_MESSAGE,
            )

        operation = Operation(
            operation_id,
            deadline_seconds=self.polling.deadline_seconds,
            created_at=self._clock(),
        )
        logger.info(
            f"Operation {operation_id} started via {response.path_name}",
            extra={"operation_id": operation_id, "path": response.path_name},
        )
        return operation

    @staticmethod
    def _poll_check(response: HttpResponse) -> Optional[str]:
        if not response.ok:
            return f"HTTP {response.status}"
        if response.is_markup:
            return "markup interstitial"
        return None

    def _poll_url(self, operation: Operation) -> str:
        return f"{self.base_url}/operations/{quote(operation.id, safe='')}?t={self._wall_clock_ms()}"

    @staticmethod
    def _emit(on_progress: Optional[ProgressSink], update: ProgressUpdate) -> None:
        if on_progress is None:
            return
        try:
            on_progress(update)
        except Exception:
            logger.warning("Progress sink raised; update dropped", exc_info=True)

    async def poll_operation(
        self,
        operation: Operation,
        on_progress: Optional[ProgressSink] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> JsonValue:
        """
        Poll until the operation is done and return its ``response`` payload.

        Raises:
            PollFailure: the service reported an error, rejected the
                credentials, or returned unparseable data.
            GenerationTimeout: the deadline passed without completion.
            AttemptCancelled: ``is_cancelled`` returned True between polls.
        """
        interval = self.polling.interval_seconds
        terminal = set(self.polling.terminal_status_codes)
        transient = set(self.polling.transient_status_codes)
        poll_count = 0

        while True:
            self._raise_if_cancelled(operation, is_cancelled)
            elapsed = self._clock() - operation.created_at
            if elapsed >= operation.deadline_seconds:
                break

            poll_count += 1
            update = ProgressUpdate(
                f"Materializing world... ({int(elapsed)}s)",
                elapsed_seconds=elapsed,
                operation_id=operation.id,
                poll_count=poll_count,
            )
            logger.info(update.message, extra={"operation_id": operation.id, "elapsed": round(elapsed, 1)})
            self._emit(on_progress, update)

            request = HttpRequest(
                "GET",
                self._poll_url(operation),
                headers=self._headers(),
                timeout=self.service.request_timeout_seconds,
            )
            try:
                response = await self.resolver.resolve(request, check=self._poll_check)
            except NetworkFailure as failure:
                denied = [code for code in failure.path_statuses.values() if code in terminal]
                status = denied[0] if denied else failure.last_status
                if denied:
                    operation.mark_failed()
                    raise PollFailure(
                        f"Operation {operation.id} poll rejected with HTTP {status}",
                        operation_id=operation.id,
                        detail=f"access denied (HTTP {status})",
                        cause=failure,
                    ) from failure
                answered_ok = failure.last_response is not None and failure.last_response.ok
                if status is None or status in transient or answered_ok:
                    logger.info(
                        f"Operation {operation.id} not ready ({failure.last_error})",
                        extra={"operation_id": operation.id, "status": status},
                    )
                else:
                    logger.warning(
                        f"Operation {operation.id} poll returned unexpected HTTP {status}; retrying",
                        extra={"operation_id": operation.id, "status": status},
                    )
                await self._sleep(interval)
                continue

            self._raise_if_cancelled(operation, is_cancelled)
            try:
                data = response.json()
            except ValueError as e:
                operation.mark_failed()
                raise PollFailure(
                    f"Operation {operation.id} returned unparseable data",
                    operation_id=operation.id,
                    cause=e,
                ) from e
            if not isinstance(data, dict):
                operation.mark_failed()
                raise PollFailure(
                    f"Operation {operation.id} returned {type(data).__name__} instead of an object",
                    operation_id=operation.id,
                )

            if not data.get("done"):
                await self._sleep(interval)
                continue

            error = data.get("error")
            if error:
                operation.mark_failed()
                detail = sanitize_error_body(describe_service_error(error))
                raise PollFailure(
                    f"Operation {operation.id} failed: {detail}",
                    operation_id=operation.id,
                    detail=detail,
                )

            result = data.get("response")
            if result is None:
                operation.mark_failed()
                raise PollFailure(
                    f"Operation {operation.id} finished without a response",
                    operation_id=operation.id,
                )

            operation.mark_succeeded()
            logger.info(
                f"Operation {operation.id} completed after {poll_count} polls",
                extra={"operation_id": operation.id, "elapsed": round(elapsed, 1)},
            )
            return result

        elapsed = self._clock() - operation.created_at
        raise GenerationTimeout(
            f"Operation {operation.id} not done after {elapsed:.0f}s",
            operation_id=operation.id,
            elapsed=elapsed,
            deadline=operation.deadline_seconds,
        )

    @staticmethod
    def _raise_if_cancelled(operation: Operation, is_cancelled: Optional[Callable[[], bool]]) -> None:
        if is_cancelled is not None and is_cancelled():
            raise AttemptCancelled(get_attempt_id() or operation.id)
