"""Array geometry, writer configuration and multiscale downsampling."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

from .blosc import BloscCompressionParams
from .errors import expect


class ZarrVersion(enum.IntEnum):
    """Supported Zarr format versions."""

    V2 = 2
    V3 = 3


class DimensionType(enum.Enum):
    """Kind of an array dimension."""

    SPACE = "space"
    CHANNEL = "channel"
    TIME = "time"
    OTHER = "other"


@dataclass(frozen=True)
class Dimension:
    """One axis of an array: its extent, chunk size and shard size.

    An ``array_size_px`` of 0 marks the unbounded append dimension.
    """

    name: str
    type: DimensionType
    array_size_px: int
    chunk_size_px: int
    shard_size_chunks: int = 0


def chunks_along_dimension(dimension: Dimension) -> int:
    """Number of chunks needed to cover ``dimension``."""
    expect(dimension.chunk_size_px > 0, "Invalid chunk size.")
    return -(-dimension.array_size_px // dimension.chunk_size_px)


def shards_along_dimension(dimension: Dimension) -> int:
    """Number of shards needed to cover ``dimension``; 0 if unsharded."""
    shard_size = dimension.shard_size_chunks
    if shard_size == 0:
        return 0
    return -(-chunks_along_dimension(dimension) // shard_size)


@dataclass(frozen=True)
class ArrayWriterConfig:
    """Everything an array writer needs to know about its array."""

    dimensions: Sequence[Dimension]
    dtype: Any
    level_of_detail: int = 0
    bucket_name: Optional[str] = None
    store_path: str = ""
    compression_params: Optional[BloscCompressionParams] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "dimensions", tuple(self.dimensions))


def _downsample_dimension(dim: Dimension) -> Dimension:
    if dim.type is DimensionType.CHANNEL:
        return dim

    array_size = (dim.array_size_px + dim.array_size_px % 2) // 2
    if dim.array_size_px == 0:
        chunk_size = dim.chunk_size_px
    else:
        chunk_size = min(dim.chunk_size_px, array_size)
    expect(chunk_size, "Expression evaluated as false:\n\t", "chunk_size_px")

    n_chunks = -(-array_size // chunk_size)
    shard_size = 1 if dim.array_size_px == 0 else min(n_chunks, dim.shard_size_chunks)
    return Dimension(dim.name, dim.type, array_size, chunk_size, shard_size)


def downsample(config: ArrayWriterConfig) -> tuple[ArrayWriterConfig, bool]:
    """Halve every non-channel dimension of ``config``.

    Returns the next level's configuration and whether it can itself be
    downsampled again, which is false as soon as downsampling shrank the
    chunk size along any dimension.
    """
    dims = tuple(_downsample_dimension(dim) for dim in config.dimensions)
    downsampled = replace(
        config,
        dimensions=dims,
        level_of_detail=config.level_of_detail + 1,
    )
    can_continue = all(
        original.chunk_size_px <= smaller.chunk_size_px
        for original, smaller in zip(config.dimensions, dims)
    )
    return downsampled, can_continue