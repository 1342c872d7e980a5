from __future__ import annotations

from typing import Literal

Stage = Literal["synthesis", "encoding"]


class DopplerBeatError(Exception):
    """Base error for the dopplerbeat library."""

    stage: Stage = "synthesis"

    def __init__(self, message: str, *, stage: Stage | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class InvalidConfigError(DopplerBeatError):
    """Raised when a config or analysis payload cannot be parsed or validated."""


class EnvironmentUnsupportedError(DopplerBeatError):
    """Raised when no audio context can be acquired."""


class SynthesisIntegrityError(DopplerBeatError):
    """Raised when a rendered buffer falls below the audibility floor."""


class EncodingError(DopplerBeatError):
    """Raised when samples cannot be serialized into the PCM container."""

    stage: Stage = "encoding"


class PlaybackError(DopplerBeatError):
    """Raised when no playback backend is available."""
