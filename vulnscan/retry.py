"""Retrying of remote calls with exponential backoff."""

from __future__ import annotations

import enum
import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 10

_INITIAL_INTERVAL = 0.5
_RANDOMIZATION_FACTOR = 0.5
_MULTIPLIER = 1.5
_MAX_INTERVAL = 60.0
_MAX_ELAPSED = 15 * 60.0


class ErrorCode(str, enum.Enum):
    """Error codes of the RPC protocol."""

    CANCELED = "canceled"
    UNKNOWN = "unknown"
    INVALID_ARGUMENT = "invalid_argument"
    MALFORMED = "malformed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_FOUND = "not_found"
    BAD_ROUTE = "bad_route"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHENTICATED = "unauthenticated"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    FAILED_PRECONDITION = "failed_precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out_of_range"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"
    DATA_LOSS = "data_loss"


class RpcError(Exception):
    """An error reported by the remote side, carrying a protocol error code."""

    def __init__(self, code: ErrorCode | str, msg: str = "") -> None:
        self.code = ErrorCode(code)
        self.msg = msg
        super().__init__(f"twirp error {self.code.value}: {msg}")


def _randomize(interval: float) -> float:
    delta = _RANDOMIZATION_FACTOR * interval
    return random.uniform(interval - delta, interval + delta)


def retry(
    f: Callable[[], T],
    *,
    max_retries: int = MAX_RETRIES,
    sleep: Callable[[float], object] = time.sleep,
) -> T:
    """Call ``f`` and return its result, retrying while the server is unavailable.

    Only an :class:`RpcError` with code ``UNAVAILABLE`` is retried, up to
    ``max_retries`` times with exponential backoff; any other error is raised
    at once, and the last error is raised once the retries run out.
    """
    interval = _INITIAL_INTERVAL
    start = time.monotonic()
    attempts = 0
    while True:
        try:
            return f()
        except RpcError as err:
            if err.code is not ErrorCode.UNAVAILABLE or attempts >= max_retries:
                raise
            if time.monotonic() - start > _MAX_ELAPSED:
                raise
            delay = _randomize(interval)
            logger.warning("%s", err)
            logger.info("Retrying HTTP request...")
            sleep(delay)
            attempts += 1
            interval = min(interval * _MULTIPLIER, _MAX_INTERVAL)