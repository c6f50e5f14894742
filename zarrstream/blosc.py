"""Blosc compression parameters."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class CompressionCodec(enum.Enum):
    """Compression codecs understood by the stream."""

    NONE = 0
    BLOSC_LZ4 = 1
    BLOSC_ZSTD = 2


def blosc_codec_to_string(codec: object) -> str:
    """Return the Blosc codec name for ``codec``."""
    if codec is CompressionCodec.BLOSC_ZSTD:
        return "zstd"
    if codec is CompressionCodec.BLOSC_LZ4:
        return "lz4"
    return "unrecognized codec"


@dataclass
class BloscCompressionParams:
    """Settings passed to the Blosc compressor for every chunk."""

    codec_id: str = ""
    clevel: int = 1
    shuffle: int = 1