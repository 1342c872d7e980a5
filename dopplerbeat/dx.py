from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
from numpy.typing import DTypeLike, NDArray
from pydantic import BaseModel, ConfigDict, Field

from .audio import EncodedAudio, FloatArray
from .config import AnalysisInput, SynthesisConfig, SynthesisProfile, coerce_analysis
from .context import AudioContext
from .errors import DopplerBeatError
from .main import RenderHooks, RenderResult, _emit_render, _log_exception, render_raw

_LOGGER = logging.getLogger("dopplerbeat.dx")


class AudioMetadata(BaseModel):
    """Summary of a rendered clip; serializes with camelCase keys.

    ``beatCount`` and ``secondaryCount`` always describe the requested
    schedule. When ``fallbackUsed`` is true that schedule was not rendered and
    ``fallbackBurstCount`` gives the number of tone bursts actually audible.
    """

    duration_sec: float = Field(alias="durationSec")
    bpm: float
    byte_length: int = Field(alias="byteLength")
    has_double_pulse: bool = Field(alias="hasDoublePulse")
    beat_count: int = Field(alias="beatCount")
    sample_rate_hz: int = Field(alias="sampleRateHz")
    profile: SynthesisProfile
    fallback_used: bool = Field(alias="fallbackUsed")
    peak: float
    rms: float
    background_level_db: float = Field(alias="backgroundLevelDb")
    secondary_count: int = Field(alias="secondaryCount")
    fallback_burst_count: int = Field(default=0, alias="fallbackBurstCount")
    confidence: float | None = None

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @classmethod
    def from_result(
        cls, result: RenderResult, *, confidence: float | None = None
    ) -> "AudioMetadata":
        config = result.config
        return cls(
            duration_sec=result.encoded.num_samples / config.sample_rate_hz,
            bpm=config.bpm,
            byte_length=result.encoded.byte_length,
            has_double_pulse=config.has_double_pulse,
            beat_count=result.beat_count,
            sample_rate_hz=config.sample_rate_hz,
            profile="reliable" if result.fallback_used else config.profile,
            fallback_used=result.fallback_used,
            peak=result.levels.peak,
            rms=result.levels.rms,
            background_level_db=config.background_level_db,
            secondary_count=result.secondary_count,
            fallback_burst_count=result.fallback_burst_count,
            confidence=confidence,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SynthesizedAudio:
    """Caller-owned handle to one encoded clip.

    The handle keeps the WAV bytes and the limited samples alive until
    ``release()``; after that only ``metadata`` remains readable.
    """

    def __init__(
        self,
        encoded: EncodedAudio,
        samples: FloatArray,
        metadata: AudioMetadata,
    ) -> None:
        self._encoded: EncodedAudio | None = encoded
        self._samples: FloatArray | None = samples
        self.metadata = metadata

    @classmethod
    def from_result(
        cls, result: RenderResult, *, confidence: float | None = None
    ) -> "SynthesizedAudio":
        return cls(
            result.encoded,
            result.samples,
            AudioMetadata.from_result(result, confidence=confidence),
        )

    def _live(self) -> tuple[EncodedAudio, FloatArray]:
        if self._encoded is None or self._samples is None:
            raise DopplerBeatError("audio handle has been released", stage="encoding")
        return self._encoded, self._samples

    @property
    def released(self) -> bool:
        return self._encoded is None

    @property
    def sample_rate(self) -> int:
        return self.metadata.sample_rate_hz

    @property
    def samples(self) -> FloatArray:
        return self._live()[1]

    @property
    def byte_length(self) -> int:
        return self.metadata.byte_length

    def to_bytes(self) -> bytes:
        return self._live()[0].to_bytes()

    def to_numpy(self) -> FloatArray:
        return self.samples

    def __array__(self, dtype: DTypeLike | None = None) -> NDArray[np.generic]:
        return np.asarray(self.samples, dtype=dtype)

    def save(self, path: str | Path) -> Path:
        return self._live()[0].save(path)

    def play(self) -> None:
        from .playback import play_audio

        play_audio(self.samples, sample_rate=self.sample_rate)

    def release(self) -> None:
        self._encoded = None
        self._samples = None

    def __enter__(self) -> "SynthesizedAudio":
        return self

    def __exit__(self, *_: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.byte_length} bytes"
        meta = self.metadata
        return f"SynthesizedAudio({meta.duration_sec:.2f}s @ {meta.bpm:g} bpm, {state})"


def render_config(
    config: SynthesisConfig,
    *,
    beat_times: Sequence[float] | None = None,
    amplitudes: Sequence[float] | None = None,
    double_pulse_offsets_ms: Sequence[float | None] | None = None,
    confidence: float | None = None,
    context: AudioContext | None = None,
    rng: np.random.Generator | None = None,
    hooks: RenderHooks | None = None,
    log_dir: str | Path | None = None,
) -> SynthesizedAudio:
    result = render_raw(
        config,
        beat_times=beat_times,
        amplitudes=amplitudes,
        double_pulse_offsets_ms=double_pulse_offsets_ms,
        context=context,
        rng=rng,
        hooks=hooks,
        log_dir=log_dir,
    )
    handle = SynthesizedAudio.from_result(result, confidence=confidence)
    _LOGGER.debug("Rendered %r", handle)
    return handle


def render(
    analysis: AnalysisInput,
    *,
    context: AudioContext | None = None,
    rng: np.random.Generator | None = None,
    hooks: RenderHooks | None = None,
    log_dir: str | Path | None = None,
    **overrides: Any,
) -> SynthesizedAudio:
    """Synthesize a Doppler heartbeat clip from an analysis result.

    ``overrides`` are applied on top of the config derived from the analysis,
    e.g. ``render(analysis, duration_sec=4.0, profile="tonal")``.
    """

    try:
        parsed = coerce_analysis(analysis)
        config = parsed.to_config(**overrides)
    except DopplerBeatError as exc:
        _emit_render(hooks, kind="error", error=exc)
        _log_exception("render", exc, log_dir)
        raise

    return render_config(
        config,
        beat_times=parsed.beat_times_sec or None,
        amplitudes=parsed.amplitude_scalars or None,
        double_pulse_offsets_ms=parsed.double_pulse_offsets_ms or None,
        confidence=parsed.confidence,
        context=context,
        rng=rng,
        hooks=hooks,
        log_dir=log_dir,
    )
