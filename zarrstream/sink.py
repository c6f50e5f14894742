"""Byte sinks: destinations that data is written to at given offsets."""

from __future__ import annotations

import abc
import logging
import os
from typing import Optional, Union

logger = logging.getLogger("zarrstream")

Buffer = Union[bytes, bytearray, memoryview]


class Sink(abc.ABC):
    """A destination for bytes written at explicit offsets."""

    @abc.abstractmethod
    def write(self, offset: int, data: Buffer) -> bool:
        """Write ``data`` at ``offset``; return True on success."""

    @abc.abstractmethod
    def flush(self) -> bool:
        """Push buffered data to its destination; return True on success."""

    def _close(self) -> None:
        """Release any resources held by the sink."""


class FileSink(Sink):
    """A sink backed by a local file, truncated when the sink is created."""

    def __init__(self, filename: Union[str, os.PathLike]) -> None:
        self._file = open(filename, "wb")

    def write(self, offset: int, data: Buffer) -> bool:
        if data is None or len(data) == 0:
            return True
        self._file.seek(offset)
        self._file.write(data)
        return True

    def flush(self) -> bool:
        self._file.flush()
        return True

    def _close(self) -> None:
        if not self._file.closed:
            self._file.close()


def finalize_sink(sink: Optional[Sink]) -> bool:
    """Flush and close ``sink``; a missing sink counts as finalized."""
    if sink is None:
        logger.info("Sink is null. Nothing to finalize.")
        return True

    if not sink.flush():
        return False

    sink._close()
    return True