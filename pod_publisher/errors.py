"""Error taxonomy for the job lifecycle."""

from __future__ import annotations

import httpx

INSUFFICIENT_FUNDS_MARKER = "Insufficient REPPO"

_RETRYABLE_MARKERS = (
    "fetch failed",
    "network",
    "429",
    "rate limit",
    "502",
    "503",
    "504",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
)

_TWITTER_RETRYABLE_MARKERS = _RETRYABLE_MARKERS + (
    "too many requests",
    "500",
    "security token",
    "expired",
)

_NON_RETRYABLE_MARKERS = ("not found", "malformed", "invalid")


class PodPublisherError(Exception):
    """Base class for errors raised by the service."""


class InvalidRequestError(PodPublisherError):
    """The job payload is missing fields or carries a malformed value."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InsufficientFundsError(PodPublisherError):
    """The service wallet cannot pay the publishing fee. Terminal."""


class ContentNotFoundError(PodPublisherError):
    """The source post does not exist or is not accessible."""


class PersistenceError(PodPublisherError):
    """A durable write could not acquire its lock."""


def _message(error: BaseException) -> str:
    return str(error).lower()


def is_insufficient_funds(error: BaseException) -> bool:
    if isinstance(error, InsufficientFundsError):
        return True
    return INSUFFICIENT_FUNDS_MARKER.lower() in _message(error)


def is_retryable_error(error: BaseException) -> bool:
    """Network, rate-limit, 5xx and timeout failures are worth another attempt."""
    if isinstance(error, (InvalidRequestError, InsufficientFundsError, ContentNotFoundError)):
        return False
    message = _message(error)
    if any(marker in message for marker in _NON_RETRYABLE_MARKERS):
        return False
    if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def is_retryable_twitter_error(error: BaseException) -> bool:
    if isinstance(error, (InvalidRequestError, ContentNotFoundError)):
        return False
    message = _message(error)
    if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    return any(marker in message for marker in _TWITTER_RETRYABLE_MARKERS)
