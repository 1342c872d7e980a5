from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("dopplerbeat.config")

SAMPLE_RATE = 44_100

SynthesisProfile = Literal["tonal", "filtered_noise", "reliable"]
LimiterMode = Literal["soft_ceiling", "hard_renormalize"]
BackgroundLabel = Literal["low", "medium", "high"]

PLAUSIBLE_BPM_RANGE = (40.0, 220.0)
DEFAULT_DOUBLE_PULSE_OFFSET_MS = 55.0
DEFAULT_AMPLITUDE_SCALAR = 0.8

_BACKGROUND_LEVEL_MAP: Mapping[BackgroundLabel, float] = MappingProxyType(
    {
        "low": -42.0,
        "medium": -39.0,
        "high": -36.0,
    }
)


def background_to_db(value: BackgroundLabel) -> float:
    try:
        return _BACKGROUND_LEVEL_MAP[value]
    except KeyError as exc:
        raise InvalidConfigError(f"Unknown background noise label: {value!r}") from exc


class EnvelopeShape(BaseModel):
    """Linear attack followed by an exponential decay, both in milliseconds."""

    attack_ms: float
    decay_ms: float

    model_config = ConfigDict(frozen=True, extra="forbid")


class PulseTuning(BaseModel):
    """Per-profile constants for pulse rendering."""

    primary: EnvelopeShape = EnvelopeShape(attack_ms=8.0, decay_ms=80.0)
    secondary: EnvelopeShape = EnvelopeShape(attack_ms=6.0, decay_ms=60.0)
    decay_floor_db: float = -60.0
    base_gain: float = 0.35
    secondary_ratio: float = 0.6

    # Tonal profile
    fundamental_hz: float = 200.0
    harmonic_count: int = 3

    # Filtered-noise profile: (low_hz, high_hz, weight) per oscillator
    bands: tuple[tuple[float, float, float], ...] = (
        (150.0, 300.0, 0.8),
        (300.0, 600.0, 0.5),
        (600.0, 1200.0, 0.3),
    )
    noise_weight: float = 0.4
    output_scale: float = 0.6
    texture_variation: float = 0.1

    # Reliable profile
    tone_hz: float = 400.0

    model_config = ConfigDict(frozen=True, extra="forbid")


class PostFilterConfig(BaseModel):
    enabled: bool = True
    low_hz: float = 200.0
    high_hz: float = 1200.0
    q: float = 1.5

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def center_hz(self) -> float:
        return math.sqrt(self.low_hz * self.high_hz)


class FallbackConfig(BaseModel):
    peak_floor: float = 0.01
    rms_floor: float = 0.001
    tone_amplitude: float = 0.5
    noise_level_db: float = -48.0

    model_config = ConfigDict(frozen=True, extra="forbid")


class SynthesisConfig(BaseModel):
    """Immutable per-call synthesis settings."""

    bpm: float = 140.0
    duration_sec: float = 8.0
    sample_rate_hz: int = SAMPLE_RATE
    has_double_pulse: bool = True
    double_pulse_offset_ms: float = DEFAULT_DOUBLE_PULSE_OFFSET_MS
    timing_variability_ms: float = 15.0
    amplitude_variation: float = 0.1
    background_level_db: float = -42.0

    profile: SynthesisProfile = "filtered_noise"
    limiter: LimiterMode = "soft_ceiling"
    base_amplitude: float = 0.9
    modulate_background: bool = True
    watermark: bool = False
    seed: int | None = None

    tuning: PulseTuning = PulseTuning()
    post_filter: PostFilterConfig = PostFilterConfig()
    fallback: FallbackConfig = FallbackConfig()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def num_samples(self) -> int:
        return int(round(self.duration_sec * self.sample_rate_hz))

    @property
    def beat_interval_sec(self) -> float:
        return 60.0 / self.bpm if self.bpm > 0 else 0.0


def _is_offset(value: float) -> bool:
    return math.isfinite(value) and value >= 0


class AnalysisResult(BaseModel):
    """Beat estimate produced by the upstream image analysis."""

    bpm: float
    confidence: float = 0.5
    beat_times_sec: tuple[float, ...] = Field(default=(), alias="beatTimesSec")
    double_pulse_offset_ms: float | None = Field(default=None, alias="doublePulseOffsetMs")
    amplitude_scalars: tuple[float, ...] = Field(default=(), alias="amplitudeScalars")
    double_pulse_offsets_ms: tuple[float | None, ...] = Field(
        default=(), alias="doublePulseOffsetsMs"
    )
    background_noise: BackgroundLabel | None = Field(default=None, alias="backgroundNoise")

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)

    @model_validator(mode="after")
    def _check_alignment(self) -> "AnalysisResult":
        times = self.beat_times_sec
        if not all(math.isfinite(value) for value in times):
            raise ValueError("beatTimesSec must be finite")
        if not all(math.isfinite(value) for value in self.amplitude_scalars):
            raise ValueError("amplitudeScalars must be finite")
        offset = self.double_pulse_offset_ms
        if offset is not None and not _is_offset(offset):
            raise ValueError(f"doublePulseOffsetMs must be finite and >= 0, got {offset}")
        for value in self.double_pulse_offsets_ms:
            if value is not None and not _is_offset(value):
                raise ValueError(
                    f"doublePulseOffsetsMs entries must be finite and >= 0, got {value}"
                )
        if any(later < earlier for earlier, later in zip(times, times[1:])):
            raise ValueError("beatTimesSec must be in ascending order")
        if self.amplitude_scalars and len(self.amplitude_scalars) != len(times):
            raise ValueError(
                f"amplitudeScalars has {len(self.amplitude_scalars)} entries "
                f"but beatTimesSec has {len(times)}"
            )
        if self.double_pulse_offsets_ms and len(self.double_pulse_offsets_ms) != len(times):
            raise ValueError(
                f"doublePulseOffsetsMs has {len(self.double_pulse_offsets_ms)} entries "
                f"but beatTimesSec has {len(times)}"
            )
        return self

    def to_config(self, **overrides: Any) -> SynthesisConfig:
        """Build a synthesis config from this analysis, applying overrides last."""

        fields: dict[str, Any] = {
            "bpm": self.bpm,
            "has_double_pulse": True,
            "double_pulse_offset_ms": (
                DEFAULT_DOUBLE_PULSE_OFFSET_MS
                if self.double_pulse_offset_ms is None
                else self.double_pulse_offset_ms
            ),
        }
        if self.background_noise is not None:
            fields["background_level_db"] = background_to_db(self.background_noise)
        fields.update(overrides)
        try:
            return SynthesisConfig.model_validate(fields)
        except ValidationError as exc:
            _LOGGER.warning("Failed to build synthesis config: %s", exc, exc_info=True)
            raise InvalidConfigError(str(exc)) from exc


def validate_config(config: SynthesisConfig) -> SynthesisConfig:
    """Reject configs the engine cannot render, raising InvalidConfigError."""

    if not math.isfinite(config.bpm) or config.bpm <= 0:
        raise InvalidConfigError(f"bpm must be a positive number, got {config.bpm!r}")
    if not math.isfinite(config.duration_sec) or config.duration_sec <= 0:
        raise InvalidConfigError(
            f"duration_sec must be a positive number, got {config.duration_sec!r}"
        )
    if config.sample_rate_hz <= 0:
        raise InvalidConfigError(
            f"sample_rate_hz must be positive, got {config.sample_rate_hz!r}"
        )
    if config.num_samples < 1:
        raise InvalidConfigError(
            f"duration_sec={config.duration_sec} at {config.sample_rate_hz} Hz "
            "yields an empty buffer"
        )
    if not _is_offset(config.double_pulse_offset_ms):
        raise InvalidConfigError(
            "double_pulse_offset_ms must be finite and not negative, "
            f"got {config.double_pulse_offset_ms!r}"
        )
    if not _is_offset(config.timing_variability_ms):
        raise InvalidConfigError(
            "timing_variability_ms must be finite and not negative, "
            f"got {config.timing_variability_ms!r}"
        )
    # NaN fails the range comparison.
    if not 0.0 <= config.amplitude_variation <= 2.0:
        raise InvalidConfigError("amplitude_variation must be within [0, 2]")
    if not math.isfinite(config.base_amplitude):
        raise InvalidConfigError(
            f"base_amplitude must be finite, got {config.base_amplitude!r}"
        )
    if not math.isfinite(config.background_level_db):
        raise InvalidConfigError(
            f"background_level_db must be finite, got {config.background_level_db!r}"
        )

    post = config.post_filter
    if post.enabled:
        if post.q <= 0:
            raise InvalidConfigError("post_filter.q must be positive")
        if not 0 < post.low_hz < post.high_hz:
            raise InvalidConfigError("post_filter requires 0 < low_hz < high_hz")
        if post.center_hz >= config.sample_rate_hz / 2:
            raise InvalidConfigError(
                f"post_filter centre {post.center_hz:.1f} Hz is above Nyquist "
                f"for {config.sample_rate_hz} Hz"
            )

    low, high = PLAUSIBLE_BPM_RANGE
    if not low <= config.bpm <= high:
        _LOGGER.warning(
            "bpm %.1f is outside the plausible fetal range %.0f-%.0f; rendering anyway",
            config.bpm,
            low,
            high,
        )
    return config


def parse_config(payload: Mapping[str, Any]) -> SynthesisConfig:
    """Parse a config payload, raising InvalidConfigError on failure."""

    try:
        return SynthesisConfig.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse synthesis config: %s", exc, exc_info=True)
        raise InvalidConfigError(str(exc)) from exc


def parse_analysis(payload: Mapping[str, Any]) -> AnalysisResult:
    """Parse an analysis payload (camelCase or snake_case keys)."""

    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse analysis payload: %s", exc, exc_info=True)
        raise InvalidConfigError(str(exc)) from exc


AnalysisInput = AnalysisResult | Mapping[str, Any]


def coerce_analysis(analysis: AnalysisInput) -> AnalysisResult:
    match analysis:
        case AnalysisResult():
            return analysis
        case Mapping():
            return parse_analysis(analysis)
        case _:
            raise InvalidConfigError(f"Unsupported analysis type: {type(analysis).__name__}")
