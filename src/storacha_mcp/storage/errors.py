"""Error taxonomy for the storage pipelines.

Every error raised on purpose by this package is a `StorageError`. Anything
else that escapes a pipeline boundary is wrapped into `UnknownError` by
`normalize_errors`, so callers only ever need to handle one hierarchy.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class StorageError(Exception):
    """Base class for storage pipeline errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PathParseError(StorageError):
    """Raised when a resource locator cannot be parsed."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class DelegationError(StorageError):
    """Missing or malformed delegation proof."""
    pass


class ConfigError(StorageError):
    """Missing identity/delegation or invalid settings."""
    pass


class HttpError(StorageError):
    """Non-2xx response from the gateway or the upload service."""

    def __init__(self, status: int, status_text: str, prefix: str = "Error fetching file"):
        super().__init__(f"{prefix}: {status} {status_text}")
        self.status = status
        self.status_text = status_text


class AbortError(StorageError):
    """The caller cancelled the operation."""
    pass


class FormatError(StorageError):
    """Invalid base64 input."""
    pass


class BlockError(StorageError):
    """Malformed block container, missing block or unreadable DAG."""
    pass


class FileSizeError(StorageError):
    """Upload payload above the configured maximum."""
    pass


class UnknownError(StorageError):
    """Wraps any non-structured failure."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Unknown error")


def normalize_errors(func: F) -> F:
    """Re-raise anything that is not a `StorageError` as `UnknownError`.

    The original message is kept when there is one; the original exception
    stays reachable through `__cause__`.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except StorageError:
            raise
        except Exception as e:
            raise UnknownError(str(e)) from e

    return wrapper  # type: ignore[return-value]
