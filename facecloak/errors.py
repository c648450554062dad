"""
Custom exceptions for facecloak.

Provides one exception class per failure kind of the concealment pipeline
so callers can tell fatal failures, recoverable detector failures and
caller-initiated cancellation apart.
"""


class FaceCloakError(Exception):
    """Base exception for the facecloak pipeline."""
    pass


class SourceError(FaceCloakError):
    """Raised when the input media has no video track or cannot be decoded."""
    pass


class DetectorError(FaceCloakError):
    """Raised when face detection fails on a single frame."""
    pass


class RenderError(FaceCloakError):
    """Raised when a concealment effect cannot be composited."""
    pass


class SinkError(FaceCloakError):
    """Raised when writing or finalizing the output container fails."""

    def __init__(self, message="Failed to write the processed video.", reason=None):
        super().__init__(message)
        self.reason = reason

    def __str__(self):
        if self.reason:
            return f"{super().__str__()} Reason: {self.reason}"
        return super().__str__()


class CancellationError(FaceCloakError):
    """Raised when processing is cancelled by the caller."""
    pass


_DESCRIPTIONS = [
    (CancellationError, "Processing was cancelled."),
    (SourceError, "Failed to load the video."),
    (RenderError, "Failed to render the processed video."),
    (SinkError, "Failed to write the processed video."),
    (DetectorError, "Face detection failed."),
]


def describe_error(error: BaseException) -> str:
    """Short user-facing description of a pipeline failure."""
    for error_type, description in _DESCRIPTIONS:
        if isinstance(error, error_type):
            detail = str(error)
            if detail and detail != description:
                return f"{description} {detail}"
            return description
    return f"Unexpected error: {error}"
