"""Background noise floor.

Pink noise from a six-pole leaky-integrator bank (Paul Kellett's economy
filter, a Voss-McCartney approximation), optionally swelling with each beat.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter  # type: ignore[import]

from .config import SynthesisConfig
from .schedule import BeatSchedule, primary_entries

FloatArray = NDArray[np.float64]

# (decay, weight) per accumulator: b[n] = decay * b[n-1] + weight * white[n]
PINK_POLES: tuple[tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)

MODULATION_DEPTH = 0.3
MODULATION_RISE_FRACTION = 0.2


def db_to_gain(level_db: float) -> float:
    return float(10.0 ** (level_db / 20.0))


def pink_noise(num_samples: int, level_db: float, rng: np.random.Generator) -> FloatArray:
    """Pink noise scaled by ``10 ** (level_db / 20)``."""
    if num_samples <= 0:
        return np.zeros(0, dtype=np.float64)
    white = rng.uniform(-1.0, 1.0, num_samples)
    total = np.zeros(num_samples, dtype=np.float64)
    for decay, weight in PINK_POLES:
        total += np.asarray(lfilter([weight], [1.0, -decay], white), dtype=np.float64)
    return total * db_to_gain(level_db)


def beat_modulation(
    num_samples: int,
    beat_times: Sequence[float],
    interval_sec: float,
    sample_rate: int,
    *,
    depth: float = MODULATION_DEPTH,
    rise_fraction: float = MODULATION_RISE_FRACTION,
) -> FloatArray:
    """Gain curve that swells 1.0 -> 1.0 + depth over the first part of each
    beat interval and relaxes back to 1.0 over the rest."""
    gain = np.ones(num_samples, dtype=np.float64)
    interval_samples = int(round(interval_sec * sample_rate))
    if interval_samples <= 0 or num_samples == 0:
        return gain

    progress = np.arange(interval_samples, dtype=np.float64) / interval_samples
    rising = progress < rise_fraction
    shape = np.where(
        rising,
        1.0 + depth * progress / rise_fraction,
        1.0 + depth * (1.0 - (progress - rise_fraction) / (1.0 - rise_fraction)),
    )

    for beat_time in beat_times:
        start = int(beat_time * sample_rate)
        if start >= num_samples:
            continue
        end = min(start + interval_samples, num_samples)
        # Overlapping intervals (jittered beats) keep the larger swell.
        np.maximum(gain[start:end], shape[: end - start], out=gain[start:end])
    return gain


def add_noise_floor(
    buffer: FloatArray,
    config: SynthesisConfig,
    schedule: BeatSchedule,
    rng: np.random.Generator,
    *,
    level_db: float | None = None,
) -> FloatArray:
    """Mix the (optionally beat-modulated) noise floor into ``buffer`` in place."""
    level = config.background_level_db if level_db is None else level_db
    noise = pink_noise(buffer.size, level, rng)
    if config.modulate_background and schedule:
        times = [entry.time for entry in primary_entries(schedule)]
        noise *= beat_modulation(
            buffer.size, times, config.beat_interval_sec, config.sample_rate_hz
        )
    buffer += noise
    return buffer
