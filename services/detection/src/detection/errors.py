"""Error taxonomy relayed on the detection service error channel.

Errors compare equal by kind and message, so an identical failure repeated
every cycle is only surfaced once by a de-duplicating publisher.
"""
from __future__ import annotations


class DetectionError(Exception):
    """Base class for every error the detection service publishes."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DetectionError):
            return NotImplemented
        return type(self) is type(other) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self), self.message))

    def __repr__(self) -> str:
        return f"{self.kind}({self.message!r})"


class DeviceUnavailable(DetectionError):
    """The frame source cannot deliver frames (camera gone, stream unreachable)."""


class PermissionDenied(DetectionError):
    """Access to the camera was refused."""


class ConfigurationInvalid(DetectionError):
    """Configuration values or incoming frame data are unusable."""


class ModelLoadFailure(DetectionError):
    """The model artifact could not be loaded; no detection will succeed."""


class InferenceFailure(DetectionError):
    """One inference call failed. Later cycles may still succeed."""


class UnknownInternal(DetectionError):
    """Anything else raised inside a detection cycle."""
