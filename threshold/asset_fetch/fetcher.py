"""
Binary asset download with per-path content sanity checks.

A relay that fails upstream usually still answers ``200`` with an HTML
error page, so status alone is not enough: every path's response must also
be large enough and must not declare a markup content type. A path whose
payload fails the check is skipped exactly like a transport error.

``data:`` URIs (the concept image, for example) never touch the network.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import unquote_to_bytes

from threshold.error_handling.errors import AssetValidationFailure, NetworkFailure
from threshold.external_services.relay_resolver import (
    HttpRequest,
    HttpResponse,
    NetworkPathResolver,
)

logger = logging.getLogger(__name__)

INLINE_PATH_NAME = "inline"


@dataclass
class FetchedAsset:
    """Bytes of one asset plus where they came from."""

    data: bytes
    content_type: str
    source_url: str
    path_name: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_inline(self) -> bool:
        return self.path_name == INLINE_PATH_NAME


def is_data_uri(url: Optional[str]) -> bool:
    return bool(url) and url.lstrip().lower().startswith("data:")


def decode_data_uri(uri: str) -> FetchedAsset:
    """Decode an RFC 2397 ``data:`` URI locally.

    Raises:
        AssetValidationFailure: the URI is malformed or its payload is empty.
    """
    header, sep, payload = uri.strip().partition(",")
    if not sep:
        raise AssetValidationFailure("Malformed data URI: missing ','", url=uri[:64], reasons=["malformed"])
    params = header[len("data:"):].split(";")
    content_type = params[0].strip().lower() or "text/plain"
    try:
        if "base64" in (p.strip().lower() for p in params[1:]):
            data = base64.b64decode(payload, validate=False)
        else:
            data = unquote_to_bytes(payload)
    except (binascii.Error, ValueError) as e:
        raise AssetValidationFailure(
            f"Undecodable data URI: {e}", url=uri[:64], reasons=["undecodable"], cause=e
        ) from e
    if not data:
        raise AssetValidationFailure("Data URI has an empty payload", url=uri[:64], reasons=["empty"])
    return FetchedAsset(data=data, content_type=content_type, source_url=uri, path_name=INLINE_PATH_NAME)


class BinaryAssetFetcher:
    """
    Fetches asset bytes through the resolver, validating every path.

    Example:
        fetcher = BinaryAssetFetcher(resolver, min_bytes=2000)
        asset = await fetcher.fetch_asset("https://cdn.example.com/world.spz")
    """

    def __init__(
        self,
        resolver: NetworkPathResolver,
        min_bytes: int = 2000,
        rejected_content_types: Sequence[str] = ("text/html", "application/xhtml+xml"),
        request_timeout: Optional[float] = None,
    ):
        self.resolver = resolver
        self.min_bytes = min_bytes
        self.rejected_content_types = tuple(ct.lower() for ct in rejected_content_types)
        self.request_timeout = request_timeout

    def sanity_check(self, response: HttpResponse) -> Optional[str]:
        """Rejection reason for a response, or None when it looks like real data."""
        if not response.ok:
            return f"HTTP {response.status}"
        content_type = response.content_type
        if any(content_type.startswith(rejected) for rejected in self.rejected_content_types):
            return f"markup content type {content_type}"
        if len(response.body) <= self.min_bytes:
            return f"payload too small ({len(response.body)} <= {self.min_bytes} bytes)"
        return None

    async def fetch_asset(self, url: str) -> FetchedAsset:
        """
        Return validated bytes for ``url``.

        Raises:
            AssetValidationFailure: at least one path answered but every
                answer failed the sanity check.
            NetworkFailure: no path produced a response at all.
        """
        if is_data_uri(url):
            return decode_data_uri(url)

        request = HttpRequest("GET", url, timeout=self.request_timeout)
        try:
            response = await self.resolver.resolve(request, check=self.sanity_check)
        except NetworkFailure as failure:
            if failure.rejections:
                raise AssetValidationFailure(
                    f"No path returned a usable payload for {url}",
                    url=url,
                    reasons=failure.rejections,
                    cause=failure,
                ) from failure
            raise

        logger.info(
            f"Fetched {len(response.body)} bytes via {response.path_name}",
            extra={"path": response.path_name, "url": url},
        )
        return FetchedAsset(
            data=response.body,
            content_type=response.content_type or "application/octet-stream",
            source_url=url,
            path_name=response.path_name,
        )
