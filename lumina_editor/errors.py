"""Exception taxonomy shared by the compositing and history engine."""

from __future__ import annotations


class EditorError(RuntimeError):
    """Base class for recoverable editor failures."""


class DecodeError(EditorError):
    """Raised when a single asset reference cannot be turned into pixels."""


class RenderSurfaceError(EditorError):
    """Raised when the output raster for a compose call cannot be allocated."""


class ServiceError(EditorError):
    """Raised when the external image service fails.

    ``message`` is safe to show to the user as-is.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


__all__ = [
    "DecodeError",
    "EditorError",
    "RenderSurfaceError",
    "ServiceError",
]
