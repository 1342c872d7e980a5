from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Callable, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, SkipValidation

from .audio import (
    EncodedAudio,
    FloatArray,
    LevelReport,
    add_watermark,
    apply_limiter,
    apply_post_filter,
    encode_wav,
    measure_levels,
    verify_levels,
)
from .config import SynthesisConfig, validate_config
from .context import AudioContext, get_shared_context
from .errors import DopplerBeatError, InvalidConfigError, SynthesisIntegrityError
from .logging_utils import log_exception
from .schedule import BeatSchedule, primary_entries, resolve_schedule
from .synth import fallback_burst_times, render_fallback, render_primary

_LOGGER = logging.getLogger("dopplerbeat.main")

__all__ = [
    "LevelReport",
    "RenderHooks",
    "RenderResult",
    "measure_levels",
    "render_raw",
    "synthesize",
    "verify_levels",
]


class RenderHooks(BaseModel):
    on_start: Callable[[], None] | None = None
    on_schedule: Callable[[int], None] | None = None
    on_synth_start: Callable[[], None] | None = None
    on_synth_end: Callable[[], None] | None = None
    on_fallback: Callable[[str], None] | None = None
    on_encode_end: Callable[[int], None] | None = None
    on_end: Callable[[], None] | None = None
    on_error: Callable[[Exception], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class SynthesisOutcome(BaseModel):
    samples: FloatArray
    schedule: SkipValidation[BeatSchedule]
    levels: LevelReport
    fallback_used: bool
    fallback_reason: str | None = None
    fallback_burst_count: int = 0

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class RenderResult(BaseModel):
    """One rendered clip. ``beat_count`` and ``secondary_count`` describe the
    resolved schedule; when the fallback rendered the clip the audible bursts
    are counted by ``fallback_burst_count`` instead."""

    config: SynthesisConfig
    samples: FloatArray
    encoded: EncodedAudio
    schedule: SkipValidation[BeatSchedule]
    levels: LevelReport
    fallback_used: bool
    fallback_reason: str | None = None
    fallback_burst_count: int = 0

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @property
    def beat_count(self) -> int:
        return len(primary_entries(self.schedule))

    @property
    def secondary_count(self) -> int:
        return len(self.schedule) - self.beat_count


def _emit_render(
    hooks: RenderHooks | None,
    *,
    kind: Literal[
        "start",
        "schedule",
        "synth_start",
        "synth_end",
        "fallback",
        "encode_end",
        "end",
        "error",
    ],
    count: int | None = None,
    reason: str | None = None,
    error: Exception | None = None,
) -> None:
    if hooks is None:
        return
    try:
        match kind:
            case "start":
                if hooks.on_start is not None:
                    hooks.on_start()
            case "schedule":
                if hooks.on_schedule is not None and count is not None:
                    hooks.on_schedule(count)
            case "synth_start":
                if hooks.on_synth_start is not None:
                    hooks.on_synth_start()
            case "synth_end":
                if hooks.on_synth_end is not None:
                    hooks.on_synth_end()
            case "fallback":
                if hooks.on_fallback is not None and reason is not None:
                    hooks.on_fallback(reason)
            case "encode_end":
                if hooks.on_encode_end is not None and count is not None:
                    hooks.on_encode_end(count)
            case "end":
                if hooks.on_end is not None:
                    hooks.on_end()
            case "error":
                if hooks.on_error is not None and error is not None:
                    hooks.on_error(error)
            case _:
                raise InvalidConfigError(f"Unknown render hook kind: {kind}")
    except Exception as exc:
        _LOGGER.warning("Render hook failed: %s", exc, exc_info=True)


def _log_exception(context: str, exc: Exception, log_dir: str | Path | None) -> None:
    stage = getattr(exc, "stage", "unknown")
    _LOGGER.warning("%s failed at stage %s: %s", context, stage, exc)
    if log_dir is not None:
        log_exception(context, exc, log_dir)


def synthesize(
    config: SynthesisConfig,
    schedule: BeatSchedule,
    *,
    context: AudioContext,
    rng: np.random.Generator,
    hooks: RenderHooks | None = None,
) -> SynthesisOutcome:
    """Primary render with a reliable fallback, then post-filter and limiter.

    Each attempt gets its own buffer from ``context``; a rejected primary
    buffer is discarded, never patched.
    """

    num_samples = config.num_samples
    floors = config.fallback
    fallback_reason: str | None = None
    burst_count = 0
    try:
        if not schedule:
            raise SynthesisIntegrityError("schedule has no beats")
        buffer = context.allocate(num_samples)
        render_primary(config, schedule, buffer, rng)
        verify_levels(
            measure_levels(buffer),
            peak_floor=floors.peak_floor,
            rms_floor=floors.rms_floor,
        )
    except SynthesisIntegrityError as exc:
        fallback_reason = str(exc)
        _LOGGER.warning("Primary synthesis rejected (%s); rendering fallback", exc)
        _emit_render(hooks, kind="fallback", reason=fallback_reason)
        buffer = context.allocate(num_samples)
        render_fallback(config, buffer, rng)
        burst_count = len(fallback_burst_times(config))

    apply_post_filter(buffer, config.sample_rate_hz, config.post_filter)
    if config.watermark:
        add_watermark(buffer, config.sample_rate_hz)
    apply_limiter(buffer, config.limiter)

    return SynthesisOutcome(
        samples=buffer,
        schedule=schedule,
        levels=measure_levels(buffer),
        fallback_used=fallback_reason is not None,
        fallback_reason=fallback_reason,
        fallback_burst_count=burst_count,
    )


def render_raw(
    config: SynthesisConfig,
    *,
    beat_times: Sequence[float] | None = None,
    amplitudes: Sequence[float] | None = None,
    double_pulse_offsets_ms: Sequence[float | None] | None = None,
    context: AudioContext | None = None,
    rng: np.random.Generator | None = None,
    hooks: RenderHooks | None = None,
    log_dir: str | Path | None = None,
) -> RenderResult:
    """Validate, schedule, synthesize and encode one heartbeat clip."""

    _emit_render(hooks, kind="start")
    try:
        validate_config(config)
        audio_context = context or get_shared_context()
        audio_context.ensure_running()
        local_rng = rng or np.random.default_rng(config.seed)

        schedule = resolve_schedule(
            config,
            beat_times=beat_times,
            amplitudes=amplitudes,
            double_pulse_offsets_ms=double_pulse_offsets_ms,
            rng=local_rng,
        )
        beat_count = len(primary_entries(schedule))
        _LOGGER.debug("Resolved %d beats (%d pulses)", beat_count, len(schedule))
        _emit_render(hooks, kind="schedule", count=beat_count)

        _emit_render(hooks, kind="synth_start")
        outcome = synthesize(
            config, schedule, context=audio_context, rng=local_rng, hooks=hooks
        )
        _emit_render(hooks, kind="synth_end")

        encoded = encode_wav(outcome.samples, config.sample_rate_hz)
        _emit_render(hooks, kind="encode_end", count=encoded.byte_length)

        result = RenderResult(
            config=config,
            samples=outcome.samples,
            encoded=encoded,
            schedule=outcome.schedule,
            levels=outcome.levels,
            fallback_used=outcome.fallback_used,
            fallback_reason=outcome.fallback_reason,
            fallback_burst_count=outcome.fallback_burst_count,
        )
        _emit_render(hooks, kind="end")
        return result
    except DopplerBeatError as exc:
        _emit_render(hooks, kind="error", error=exc)
        _log_exception("render", exc, log_dir)
        raise
