"""Validated binary asset downloads."""

from .fetcher import (
    BinaryAssetFetcher,
    FetchedAsset,
    decode_data_uri,
    is_data_uri,
)

__all__ = [
    "BinaryAssetFetcher",
    "FetchedAsset",
    "decode_data_uri",
    "is_data_uri",
]
