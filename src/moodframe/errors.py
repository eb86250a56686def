"""Error types raised across the check-in pipeline."""

from __future__ import annotations

from typing import Optional


class MoodFrameError(Exception):
    """Base class for every error the package raises on purpose."""


class ConfigError(MoodFrameError):
    """Configuration is missing or invalid."""


class DeviceError(MoodFrameError):
    """The capture device could not be acquired or failed while recording."""


class InvalidStateError(MoodFrameError):
    """A recording session was driven through an illegal transition."""


class NoTranscriptError(MoodFrameError):
    """Every transcription source came back empty."""

    def __init__(self, message: str = "No transcript could be produced from the recording.") -> None:
        super().__init__(message)


class ProviderError(MoodFrameError):
    """A single remote call failed after all of its attempts."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        kind: str = "http",
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.kind = kind
        self.provider = provider


class AnalysisError(MoodFrameError):
    """The mandatory state reflection failed, so the run was abandoned."""


class PersistError(MoodFrameError):
    """A store write failed."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
