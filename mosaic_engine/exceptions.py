"""
Exception hierarchy for the mosaic engine package.

Classes:
    MosaicError: Base class for all errors raised by the package
    InvalidArgumentError: A function received an out-of-range argument
    ValidationError: A mosaic request was rejected before an operation existed
    ResourceError: An image or file could not be read or written
    EmptyCatalogError: A seed directory yielded no usable images
    InternalError: Unexpected failure while rendering a tile
    OperationCancelledError: A build stopped because cancellation was requested
    NotFoundError / NotReadyError / PreviewNotAvailableError: Tracker query errors
"""

from typing import List, Optional


class MosaicError(Exception):
    """Base exception for all mosaic-related errors."""


class InvalidArgumentError(MosaicError, ValueError):
    """Raised when a function argument is out of its valid range."""


class ValidationError(InvalidArgumentError):
    """
    Raised when a mosaic request is malformed.

    Attributes:
        errors: Individual validation messages
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {'; '.join(self.errors)}")


class ResourceError(MosaicError):
    """
    Raised when an image or output file cannot be read or written.

    Attributes:
        path: Offending file or directory, if known
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ImageNotFoundError(ResourceError, FileNotFoundError):
    """Raised when an image path does not exist."""


class UnsupportedFormatError(ResourceError):
    """Raised when an image cannot be decoded or its format is not supported."""


class EmptyCatalogError(ResourceError):
    """Raised when a seed catalog contains no usable images."""


class InternalError(MosaicError):
    """Raised when a tile fails for an unexpected reason."""


class OperationCancelledError(MosaicError):
    """Raised by the builder when cancellation is observed between tiles."""


class NotFoundError(MosaicError, KeyError):
    """Raised when an operation id is unknown or already evicted."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class NotReadyError(MosaicError):
    """Raised when a result is requested before the operation completed."""


class PreviewNotAvailableError(MosaicError):
    """Raised when no preview can be produced for an operation yet."""
