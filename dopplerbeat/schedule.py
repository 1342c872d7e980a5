from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .config import DEFAULT_AMPLITUDE_SCALAR, SynthesisConfig
from .errors import InvalidConfigError

_LOGGER = logging.getLogger("dopplerbeat.schedule")

FIRST_BEAT_SEC = 0.2


@dataclass(frozen=True)
class BeatScheduleEntry:
    """One pulse to render.

    ``time`` is in seconds from the start of the buffer. Secondary entries
    are the softer second half of a double pulse.
    """

    time: float
    amplitude_scalar: float
    is_primary: bool = True

    def __post_init__(self) -> None:
        if self.time < 0:
            raise ValueError(f"Beat time must not be negative, got {self.time}")
        if not 0.0 <= self.amplitude_scalar <= 1.0:
            raise ValueError(f"Amplitude scalar must be within [0, 1], got {self.amplitude_scalar}")


BeatSchedule = tuple[BeatScheduleEntry, ...]


def beat_interval_sec(bpm: float) -> float:
    return 60.0 / bpm if bpm > 0 else 0.0


def _clamp_amplitude(value: float) -> float:
    return float(min(max(value, 0.0), 1.0))


def generate_beat_grid(
    config: SynthesisConfig,
    rng: np.random.Generator,
) -> tuple[list[float], list[float]]:
    """Periodic beats from the BPM with per-beat timing and amplitude jitter.

    Jitter is applied around a fixed grid, so it never accumulates.
    """
    interval = beat_interval_sec(config.bpm)
    if interval <= 0:
        return [], []
    half_jitter = config.timing_variability_ms / 1000.0 / 2.0
    half_variation = config.amplitude_variation / 2.0

    times: list[float] = []
    amplitudes: list[float] = []
    grid_time = FIRST_BEAT_SEC
    while grid_time < config.duration_sec:
        jitter = rng.uniform(-half_jitter, half_jitter) if half_jitter > 0 else 0.0
        variation = rng.uniform(-half_variation, half_variation) if half_variation > 0 else 0.0
        beat_time = max(0.0, grid_time + jitter)
        if beat_time < config.duration_sec:
            times.append(beat_time)
            amplitudes.append(_clamp_amplitude(config.base_amplitude * (1.0 + variation)))
        grid_time += interval
    return times, amplitudes


def resolve_schedule(
    config: SynthesisConfig,
    *,
    beat_times: Sequence[float] | None = None,
    amplitudes: Sequence[float] | None = None,
    double_pulse_offsets_ms: Sequence[float | None] | None = None,
    rng: np.random.Generator | None = None,
) -> BeatSchedule:
    """Resolve the pulses to render, sorted by time.

    Supplied beats are used as-is (clipped to the buffer); otherwise a grid is
    generated from the BPM. With double pulse enabled every primary gets a
    secondary ``offset`` later at 0.6x amplitude, unless it would fall past
    the end of the buffer. Non-finite amplitudes and negative or non-finite
    per-beat offsets raise InvalidConfigError.
    """
    if config.bpm <= 0 or config.duration_sec <= 0:
        return ()

    local_rng = rng or np.random.default_rng(config.seed)
    duration = config.duration_sec
    supplied_times = tuple(beat_times) if beat_times is not None else ()
    supplied_amps = tuple(amplitudes) if amplitudes is not None else ()
    supplied_offsets = tuple(double_pulse_offsets_ms) if double_pulse_offsets_ms is not None else ()
    offsets: list[float | None] | None = None

    if supplied_times:
        times: list[float] = []
        amps: list[float] = []
        kept_offsets: list[float | None] = []
        for index, beat_time in enumerate(supplied_times):
            if not 0.0 <= beat_time < duration:
                _LOGGER.debug("Dropping beat at %.3fs outside [0, %.3f)", beat_time, duration)
                continue
            times.append(float(beat_time))
            amp = supplied_amps[index] if index < len(supplied_amps) else DEFAULT_AMPLITUDE_SCALAR
            if not math.isfinite(amp):
                raise InvalidConfigError(f"Amplitude for beat {index} must be finite, got {amp}")
            amps.append(_clamp_amplitude(amp))
            if index < len(supplied_offsets):
                offset = supplied_offsets[index]
                if offset is not None and not (math.isfinite(offset) and offset >= 0):
                    raise InvalidConfigError(
                        f"Double-pulse offset for beat {index} must be finite and >= 0, "
                        f"got {offset}"
                    )
                kept_offsets.append(offset)
            else:
                kept_offsets.append(config.double_pulse_offset_ms)
        if supplied_offsets:
            offsets = kept_offsets
    else:
        times, amps = generate_beat_grid(config, local_rng)

    entries: list[BeatScheduleEntry] = []
    ratio = config.tuning.secondary_ratio
    for index, (beat_time, amp) in enumerate(zip(times, amps)):
        entries.append(BeatScheduleEntry(time=beat_time, amplitude_scalar=amp, is_primary=True))
        if not config.has_double_pulse:
            continue
        offset_ms = config.double_pulse_offset_ms if offsets is None else offsets[index]
        if offset_ms is None:
            continue
        secondary_time = beat_time + offset_ms / 1000.0
        if secondary_time >= duration:
            continue
        entries.append(
            BeatScheduleEntry(
                time=secondary_time,
                amplitude_scalar=_clamp_amplitude(amp * ratio),
                is_primary=False,
            )
        )

    entries.sort(key=lambda entry: entry.time)
    return tuple(entries)


def primary_entries(schedule: BeatSchedule) -> BeatSchedule:
    return tuple(entry for entry in schedule if entry.is_primary)


def secondary_entries(schedule: BeatSchedule) -> BeatSchedule:
    return tuple(entry for entry in schedule if not entry.is_primary)
