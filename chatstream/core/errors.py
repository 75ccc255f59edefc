"""Provider error taxonomy and classification."""

from __future__ import annotations

from enum import Enum
from typing import Collection, Optional

OVERLOAD_MARKERS = ("overloaded", "unavailable", "resource_exhausted_temporarily")
PERMISSION_MARKERS = ("permission_denied", "does not have permission")


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT_OVERLOAD = "transient_overload"
    CANCELLED = "cancelled"
    INPUT_TOO_LARGE = "input_too_large"
    UNCLASSIFIED = "unclassified"


class ProviderError(Exception):
    """Raised by provider adapters. status is the HTTP-like status code, if any."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.status}: {base}" if self.status is not None else base


class TurnCancelled(Exception):
    """Raised inside a turn when its cancellation signal is set."""


class NoCredentialsError(ValueError):
    """Failover pool was built without credentials or models."""


class ActionDispatchError(Exception):
    """The action sink raised while performing an action. Never retried."""


class InputTooLargeError(Exception):
    """Prompt and media exceed the input token limit; the provider is never called."""

    def __init__(self, tokens: int, limit: int) -> None:
        super().__init__(f"input is {tokens} tokens, limit is {limit}")
        self.tokens = tokens
        self.limit = limit


def error_status(exc: BaseException) -> Optional[int]:
    """Status-like code from common attributes (status, status_code, code)."""
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def classify_error(
    exc: BaseException,
    overload_status_codes: Optional[Collection[int]] = None,
) -> ErrorKind:
    """Map an exception to ErrorKind.

    429 -> rate limited; 403 or a permission marker -> permission denied;
    5xx (or only overload_status_codes, when given) or an overload marker ->
    transient overload. Anything else is unclassified.
    """
    if isinstance(exc, TurnCancelled):
        return ErrorKind.CANCELLED
    if isinstance(exc, InputTooLargeError):
        return ErrorKind.INPUT_TOO_LARGE
    if isinstance(exc, ActionDispatchError):
        return ErrorKind.UNCLASSIFIED
    status = error_status(exc)
    message = str(exc).lower()
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 403 or any(m in message for m in PERMISSION_MARKERS):
        return ErrorKind.PERMISSION_DENIED
    if status is not None:
        if overload_status_codes is None:
            if 500 <= status < 600:
                return ErrorKind.TRANSIENT_OVERLOAD
        elif status in overload_status_codes:
            return ErrorKind.TRANSIENT_OVERLOAD
    if (status is None or status >= 500) and any(m in message for m in OVERLOAD_MARKERS):
        return ErrorKind.TRANSIENT_OVERLOAD
    return ErrorKind.UNCLASSIFIED
