"""Error type and assertion helper used throughout the streaming code."""

from __future__ import annotations

import logging

logger = logging.getLogger("zarrstream")


class StreamError(RuntimeError):
    """Raised when a streaming invariant does not hold."""


def expect(condition: object, *args: object) -> None:
    """Raise StreamError built from ``args`` if ``condition`` is false.

    The message is the string form of every argument, concatenated. It is
    logged at error level before the exception is raised.
    """
    if condition:
        return
    message = "".join(str(arg) for arg in args)
    logger.error(message)
    raise StreamError(message)