"""
Architecture:

1. Primitives: envelopes and pulse mixing
2. Profiles: interchangeable pulse timbres sharing one ``render`` contract
3. Renders: the primary (schedule-driven) render and the reliable fallback
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from .audio import measure_levels, verify_levels
from .config import EnvelopeShape, PulseTuning, SynthesisConfig, SynthesisProfile
from .errors import InvalidConfigError
from .noise import add_noise_floor, pink_noise
from .schedule import FIRST_BEAT_SEC, BeatSchedule

_LOGGER = logging.getLogger("dopplerbeat.synth")

FloatArray = NDArray[np.float64]

# =============================================================================
# PART 1: PRIMITIVES
# =============================================================================


def pulse_envelope(shape: EnvelopeShape, sr: int, floor_db: float = -60.0) -> FloatArray:
    """Linear attack to 1.0, then exponential decay reaching ``floor_db`` at the
    end of the decay window."""
    attack = max(1, int(round(shape.attack_ms / 1000.0 * sr)))
    decay = max(1, int(round(shape.decay_ms / 1000.0 * sr)))
    decay_sec = decay / sr
    rate = math.log(10.0 ** (-floor_db / 20.0)) / decay_sec

    # First sample is non-zero so a pulse at t=0 is audible immediately.
    rise = np.arange(1, attack + 1, dtype=np.float64) / attack
    fall = np.exp(-rate * np.arange(1, decay + 1, dtype=np.float64) / sr)
    return np.concatenate((rise, fall))


def add_pulse(buffer: FloatArray, pulse: FloatArray, start_index: int) -> None:
    """Sum a pulse into the buffer, truncating it at the end of the buffer."""
    if start_index >= buffer.size or start_index < 0:
        return
    end_index = min(start_index + pulse.size, buffer.size)
    buffer[start_index:end_index] += pulse[: end_index - start_index]


def _carrier_time(num_samples: int, sr: int) -> FloatArray:
    return np.arange(num_samples, dtype=np.float64) / sr


# =============================================================================
# PART 2: PROFILES
# =============================================================================


class PulseProfile(Protocol):
    def render(
        self,
        buffer: FloatArray,
        time: float,
        amplitude: float,
        is_primary: bool,
    ) -> None: ...


class _EnvelopedProfile:
    """Shared envelope handling; subclasses supply the carrier."""

    def __init__(self, config: SynthesisConfig, rng: np.random.Generator) -> None:
        self.sr = config.sample_rate_hz
        self.tuning: PulseTuning = config.tuning
        self.rng = rng
        self._envelopes = {
            True: pulse_envelope(self.tuning.primary, self.sr, self.tuning.decay_floor_db),
            False: pulse_envelope(self.tuning.secondary, self.sr, self.tuning.decay_floor_db),
        }

    def carrier(self, num_samples: int) -> FloatArray:
        raise NotImplementedError

    def render(
        self,
        buffer: FloatArray,
        time: float,
        amplitude: float,
        is_primary: bool,
    ) -> None:
        if amplitude <= 0.0:
            return
        start = int(round(time * self.sr))
        if start >= buffer.size:
            return
        envelope = self._envelopes[is_primary]
        pulse = self.carrier(envelope.size) * envelope
        pulse *= amplitude * self.tuning.base_gain
        add_pulse(buffer, pulse, start)


class TonalProfile(_EnvelopedProfile):
    """Fundamental plus integer harmonics, partial ``k`` weighted ``1/k``."""

    def __init__(self, config: SynthesisConfig, rng: np.random.Generator) -> None:
        super().__init__(config, rng)
        partials = np.arange(1, self.tuning.harmonic_count + 2, dtype=np.float64)
        weights = 1.0 / partials
        self._partials = partials
        self._weights = weights / weights.sum()

    def carrier(self, num_samples: int) -> FloatArray:
        t = _carrier_time(num_samples, self.sr)
        phases = 2.0 * np.pi * self.tuning.fundamental_hz * np.outer(self._partials, t)
        return self._weights @ np.sin(phases)


class FilteredNoiseProfile(_EnvelopedProfile):
    """Band-limited oscillators with per-pulse random pitch and phase plus
    broadband noise, approximating the whoosh of blood flow."""

    def carrier(self, num_samples: int) -> FloatArray:
        t = _carrier_time(num_samples, self.sr)
        signal = np.zeros(num_samples, dtype=np.float64)
        for low_hz, high_hz, weight in self.tuning.bands:
            freq = self.rng.uniform(low_hz, high_hz)
            phase = self.rng.uniform(0.0, 2.0 * np.pi)
            signal += weight * np.sin(2.0 * np.pi * freq * t + phase)
        signal += (self.rng.random(num_samples) - 0.5) * self.tuning.noise_weight
        variation = self.tuning.texture_variation
        texture = 1.0 + self.rng.uniform(-variation / 2.0, variation / 2.0) if variation else 1.0
        return signal * self.tuning.output_scale * texture


class ReliableProfile(_EnvelopedProfile):
    """Fixed-frequency cosine burst with a fixed envelope; no randomness."""

    def __init__(self, config: SynthesisConfig, rng: np.random.Generator) -> None:
        super().__init__(config, rng)
        primary = self._envelopes[True]
        self._envelopes[False] = primary

    def carrier(self, num_samples: int) -> FloatArray:
        t = _carrier_time(num_samples, self.sr)
        return np.cos(2.0 * np.pi * self.tuning.tone_hz * t)


PROFILES: Mapping[SynthesisProfile, type[_EnvelopedProfile]] = MappingProxyType(
    {
        "tonal": TonalProfile,
        "filtered_noise": FilteredNoiseProfile,
        "reliable": ReliableProfile,
    }
)


def build_profile(config: SynthesisConfig, rng: np.random.Generator) -> PulseProfile:
    try:
        profile_cls = PROFILES[config.profile]
    except KeyError as exc:
        raise InvalidConfigError(f"Unknown synthesis profile: {config.profile!r}") from exc
    return profile_cls(config, rng)


# =============================================================================
# PART 3: RENDERS
# =============================================================================


def render_pulses(
    config: SynthesisConfig,
    schedule: BeatSchedule,
    buffer: FloatArray,
    rng: np.random.Generator,
) -> FloatArray:
    profile = build_profile(config, rng)
    for entry in schedule:
        profile.render(buffer, entry.time, entry.amplitude_scalar, entry.is_primary)
    return buffer


def render_primary(
    config: SynthesisConfig,
    schedule: BeatSchedule,
    buffer: FloatArray,
    rng: np.random.Generator,
) -> FloatArray:
    """Render pulses and the noise floor into ``buffer``.

    The pulse layer's peak is checked before the noise is mixed in, so a
    silent schedule cannot pass on the strength of the background alone.
    RMS is left to the check on the full mix; a sparse schedule of short
    pulses has a low pulse-layer RMS and is still valid.
    Raises SynthesisIntegrityError when the pulses are inaudible.
    """
    render_pulses(config, schedule, buffer, rng)
    verify_levels(
        measure_levels(buffer),
        peak_floor=config.fallback.peak_floor,
        rms_floor=None,
    )
    add_noise_floor(buffer, config, schedule, rng)
    return buffer


def fallback_burst_times(config: SynthesisConfig) -> list[float]:
    interval = config.beat_interval_sec
    start = FIRST_BEAT_SEC if config.duration_sec > FIRST_BEAT_SEC else 0.0
    if interval <= 0:
        return [start]
    count = int(math.ceil((config.duration_sec - start) / interval))
    return [start + index * interval for index in range(max(count, 1))]


def render_fallback(
    config: SynthesisConfig,
    buffer: FloatArray,
    rng: np.random.Generator,
) -> FloatArray:
    """Overwrite ``buffer`` with quiet pink noise plus fixed tone bursts at the
    beat interval. Never raises for a validated config."""
    buffer[:] = pink_noise(buffer.size, config.fallback.noise_level_db, rng)
    profile = ReliableProfile(config, rng)
    times = fallback_burst_times(config)
    for burst_time in times:
        if burst_time >= config.duration_sec:
            break
        profile.render(buffer, burst_time, config.fallback.tone_amplitude, True)
    _LOGGER.debug("Fallback rendered %d tone bursts", len(times))
    return buffer
