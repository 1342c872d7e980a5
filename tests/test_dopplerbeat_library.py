from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

import dopplerbeat as db
import dopplerbeat.main as main
from dopplerbeat import (
    AudioContext,
    RenderHooks,
    SynthesisConfig,
    decode_wav,
    render,
    render_config,
    render_raw,
)
from dopplerbeat.errors import EncodingError, EnvironmentUnsupportedError, InvalidConfigError


def _rng(seed: int = 11) -> np.random.Generator:
    return np.random.default_rng(seed)


class TestScenarios:
    """End-to-end renders from analysis payloads."""

    def test_scenario_a(self) -> None:
        audio = render(
            {"bpm": 140, "confidence": 0.9, "doublePulseOffsetMs": 55},
            duration_sec=8.0,
            sample_rate_hz=48_000,
            rng=_rng(),
            context=AudioContext(),
        )
        assert audio.metadata.byte_length == 768_044
        assert len(audio.to_bytes()) == 768_044
        assert abs(audio.metadata.beat_count - 18) <= 1
        assert audio.metadata.has_double_pulse is True
        assert audio.metadata.fallback_used is False

    def test_scenario_b(self) -> None:
        audio = render({"bpm": 110}, duration_sec=8.0, rng=_rng(), context=AudioContext())
        assert abs(audio.metadata.beat_count - 14) <= 1

    def test_scenario_c_matches_scenario_a_count(self) -> None:
        with_grid = render(
            {"bpm": 140, "beatTimesSec": []},
            duration_sec=8.0,
            sample_rate_hz=48_000,
            rng=_rng(1),
            context=AudioContext(),
        )
        scenario_a = render(
            {"bpm": 140},
            duration_sec=8.0,
            sample_rate_hz=48_000,
            rng=_rng(2),
            context=AudioContext(),
        )
        assert with_grid.metadata.beat_count == scenario_a.metadata.beat_count

    def test_supplied_beats_drive_count(self) -> None:
        audio = render(
            {"bpm": 140, "beatTimesSec": [0.3, 0.8, 1.3], "amplitudeScalars": [0.9, 0.8, 0.7]},
            duration_sec=2.0,
            rng=_rng(),
            context=AudioContext(),
        )
        assert audio.metadata.beat_count == 3
        assert audio.metadata.secondary_count == 3


class TestFallback:
    def test_silent_amplitudes_trigger_fallback(self) -> None:
        fallbacks: list[str] = []
        result = render_raw(
            SynthesisConfig(bpm=140.0, duration_sec=8.0, sample_rate_hz=48_000, base_amplitude=0.0),
            rng=_rng(),
            context=AudioContext(),
            hooks=RenderHooks(on_fallback=fallbacks.append),
        )
        assert result.fallback_used is True
        assert result.levels.peak > 0.01
        assert len(fallbacks) == 1

    def test_supplied_zero_amplitudes_trigger_fallback(self) -> None:
        audio = render(
            {"bpm": 140, "beatTimesSec": [0.2, 0.6, 1.0], "amplitudeScalars": [0.0, 0.0, 0.0]},
            duration_sec=2.0,
            sample_rate_hz=48_000,
            rng=_rng(),
            context=AudioContext(),
        )
        assert audio.metadata.fallback_used is True
        assert audio.metadata.profile == "reliable"
        assert audio.metadata.peak > 0.01

    def test_beats_outside_clip_trigger_fallback(self) -> None:
        result = render_raw(
            SynthesisConfig(duration_sec=1.0),
            beat_times=[1.5, 2.0],
            rng=_rng(),
            context=AudioContext(),
        )
        assert result.fallback_used is True
        # The requested schedule was empty; the clip holds the fallback bursts.
        assert result.beat_count == 0
        assert result.fallback_burst_count == 2

    def test_sparse_quiet_schedule_is_not_replaced(self) -> None:
        audio = render(
            {"bpm": 140, "beatTimesSec": [1.0], "amplitudeScalars": [0.2]},
            duration_sec=8.0,
            rng=_rng(),
            context=AudioContext(),
        )
        assert audio.metadata.fallback_used is False
        assert audio.metadata.beat_count == 1
        assert audio.metadata.fallback_burst_count == 0

    def test_metadata_reports_fallback_bursts(self) -> None:
        audio = render(
            {"bpm": 120, "beatTimesSec": [0.2, 0.7], "amplitudeScalars": [0.0, 0.0]},
            duration_sec=2.0,
            rng=_rng(),
            context=AudioContext(),
        )
        payload = audio.metadata.to_dict()
        assert payload["fallbackUsed"] is True
        assert payload["beatCount"] == 2
        assert payload["fallbackBurstCount"] == 4

    def test_fallback_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.WARNING, logger="dopplerbeat.main")
        render_raw(
            SynthesisConfig(duration_sec=1.0, base_amplitude=0.0),
            rng=_rng(),
            context=AudioContext(),
        )
        assert "rendering fallback" in caplog.text


class TestInvariants:
    @pytest.mark.parametrize("seed", range(8))
    def test_random_configs_stay_in_range(self, seed: int) -> None:
        rng = np.random.default_rng(seed)
        sample_rate = int(rng.choice([8_000, 22_050, 44_100, 48_000]))
        config = SynthesisConfig(
            bpm=float(rng.uniform(40, 220)),
            duration_sec=float(rng.uniform(0.05, 3.0)),
            sample_rate_hz=sample_rate,
            has_double_pulse=bool(rng.integers(0, 2)),
            double_pulse_offset_ms=float(rng.uniform(20, 120)),
            timing_variability_ms=float(rng.uniform(0, 40)),
            amplitude_variation=float(rng.uniform(0, 0.5)),
            background_level_db=float(rng.uniform(-48, -30)),
            profile=str(rng.choice(["tonal", "filtered_noise", "reliable"])),  # type: ignore[arg-type]
            limiter=str(rng.choice(["soft_ceiling", "hard_renormalize"])),  # type: ignore[arg-type]
            base_amplitude=float(rng.uniform(0.5, 1.0)),
            watermark=bool(rng.integers(0, 2)),
        )
        result = render_raw(config, rng=rng, context=AudioContext())
        assert np.max(np.abs(result.samples)) <= 1.0
        assert result.samples.size == config.num_samples
        assert result.encoded.byte_length == 44 + config.num_samples * 2

    @pytest.mark.parametrize("duration, sample_rate", [(8.0, 44_100), (0.37, 22_050), (1.0, 8_000)])
    def test_byte_length(self, duration: float, sample_rate: int) -> None:
        result = render_raw(
            SynthesisConfig(duration_sec=duration, sample_rate_hz=sample_rate),
            rng=_rng(),
            context=AudioContext(),
        )
        assert result.encoded.byte_length == 44 + round(duration * sample_rate) * 2

    def test_round_trip_reproduces_limited_buffer(self) -> None:
        result = render_raw(SynthesisConfig(duration_sec=2.0), rng=_rng(), context=AudioContext())
        decoded, sample_rate = decode_wav(result.encoded.to_bytes())
        assert sample_rate == result.config.sample_rate_hz
        assert np.max(np.abs(decoded - result.samples)) <= 1 / 32768

    def test_same_seed_same_bytes(self) -> None:
        config = SynthesisConfig(duration_sec=1.0, seed=123)
        first = render_raw(config, context=AudioContext())
        second = render_raw(config, context=AudioContext())
        assert first.encoded.to_bytes() == second.encoded.to_bytes()

    def test_soft_ceiling_bounds_output(self) -> None:
        config = SynthesisConfig(duration_sec=2.0, background_level_db=0.0)
        result = render_raw(config, rng=_rng(), context=AudioContext())
        assert np.max(np.abs(result.samples)) <= 0.95


class TestHooks:
    def test_hooks_fire_in_order(self) -> None:
        events: list[str] = []
        hooks = RenderHooks(
            on_start=lambda: events.append("start"),
            on_schedule=lambda count: events.append(f"schedule:{count}"),
            on_synth_start=lambda: events.append("synth_start"),
            on_synth_end=lambda: events.append("synth_end"),
            on_encode_end=lambda size: events.append(f"encode_end:{size}"),
            on_end=lambda: events.append("end"),
        )
        render_config(
            SynthesisConfig(duration_sec=1.0, sample_rate_hz=8_000),
            beat_times=[0.2, 0.6],
            rng=_rng(),
            context=AudioContext(),
            hooks=hooks,
        )
        assert events == [
            "start",
            "schedule:2",
            "synth_start",
            "synth_end",
            "encode_end:16044",
            "end",
        ]

    def test_failing_hook_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.WARNING, logger="dopplerbeat.main")

        def explode() -> None:
            raise RuntimeError("hook boom")

        result = render_raw(
            SynthesisConfig(duration_sec=0.5),
            rng=_rng(),
            context=AudioContext(),
            hooks=RenderHooks(on_start=explode),
        )
        assert result.samples.size == SynthesisConfig(duration_sec=0.5).num_samples
        assert "Render hook failed" in caplog.text

    def test_error_hook_receives_exception(self) -> None:
        errors: list[Exception] = []
        with pytest.raises(InvalidConfigError):
            render({"bpm": 0}, hooks=RenderHooks(on_error=errors.append))
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidConfigError)


class TestErrors:
    def test_invalid_bpm(self) -> None:
        with pytest.raises(InvalidConfigError) as excinfo:
            render({"bpm": -20}, context=AudioContext())
        assert excinfo.value.stage == "synthesis"

    def test_invalid_duration(self) -> None:
        with pytest.raises(InvalidConfigError):
            render({"bpm": 140}, duration_sec=0.0, context=AudioContext())

    def test_malformed_payload(self) -> None:
        errors: list[Exception] = []
        with pytest.raises(InvalidConfigError):
            render({"bpm": "fast"}, hooks=RenderHooks(on_error=errors.append))
        assert len(errors) == 1

    def test_negative_per_beat_offset_is_tagged(self) -> None:
        errors: list[Exception] = []
        with pytest.raises(InvalidConfigError) as excinfo:
            render(
                {"bpm": 140, "beatTimesSec": [0.1, 0.5], "doublePulseOffsetsMs": [-300, 55]},
                duration_sec=1.0,
                context=AudioContext(),
                hooks=RenderHooks(on_error=errors.append),
            )
        assert excinfo.value.stage == "synthesis"
        assert errors == [excinfo.value]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"double_pulse_offset_ms": float("nan")},
            {"base_amplitude": float("nan")},
            {"timing_variability_ms": float("nan")},
            {"background_level_db": float("nan")},
        ],
    )
    def test_non_finite_config_is_tagged(self, overrides: dict[str, float]) -> None:
        errors: list[Exception] = []
        with pytest.raises(InvalidConfigError):
            render_raw(
                SynthesisConfig(duration_sec=1.0, **overrides),
                rng=_rng(),
                context=AudioContext(),
                hooks=RenderHooks(on_error=errors.append),
            )
        assert len(errors) == 1

    def test_direct_negative_offset_is_tagged(self) -> None:
        errors: list[Exception] = []
        with pytest.raises(InvalidConfigError):
            render_raw(
                SynthesisConfig(duration_sec=1.0),
                beat_times=[0.1, 0.5],
                double_pulse_offsets_ms=[-300.0, 55.0],
                context=AudioContext(),
                hooks=RenderHooks(on_error=errors.append),
            )
        assert len(errors) == 1

    def test_environment_unsupported(self) -> None:
        def no_audio() -> None:
            raise OSError("no device")

        ctx = AudioContext(check=no_audio)
        with pytest.raises(EnvironmentUnsupportedError) as excinfo:
            render({"bpm": 140}, duration_sec=1.0, context=ctx)
        assert excinfo.value.stage == "synthesis"
        assert ctx.state == "uninitialized"

    def test_encoding_failure_is_tagged(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken_encode(samples: np.ndarray, sample_rate: int) -> None:
            raise EncodingError("container overflow")

        monkeypatch.setattr(main, "encode_wav", broken_encode)
        errors: list[Exception] = []
        with pytest.raises(EncodingError) as excinfo:
            render_raw(
                SynthesisConfig(duration_sec=0.5),
                rng=_rng(),
                context=AudioContext(),
                hooks=RenderHooks(on_error=errors.append),
            )
        assert excinfo.value.stage == "encoding"
        assert errors == [excinfo.value]

    def test_failure_written_to_log_dir(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidConfigError):
            render({"bpm": 0}, log_dir=tmp_path)
        log_text = (tmp_path / "dopplerbeat.log").read_text(encoding="utf-8")
        assert "render failed at stage synthesis" in log_text


def test_package_exports() -> None:
    assert db.__version__
    assert callable(db.render)
    assert db.SAMPLE_RATE == 44_100
