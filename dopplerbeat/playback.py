from __future__ import annotations

import logging
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .audio import PCM_SCALE, FloatArray, ensure_audio_contract
from .errors import PlaybackError

_LOGGER = logging.getLogger("dopplerbeat.playback")


class PlaybackBackend(BaseModel):
    name: str
    play_audio: Callable[[FloatArray, int], None]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_backend() -> PlaybackBackend | None:
    return _load_sounddevice() or _load_simpleaudio()


def _resolve_backend() -> PlaybackBackend:
    backend = _load_backend()
    if backend is None:
        raise PlaybackError(
            "Playback requires sounddevice or simpleaudio. "
            "Install one of them (pip install dopplerbeat[playback]) or use .save()."
        )
    return backend


def play_audio(samples: FloatArray, *, sample_rate: int) -> None:
    backend = _resolve_backend()
    duration = len(samples) / sample_rate if sample_rate > 0 else 0.0
    _LOGGER.info("Playing %.2fs of audio via %s", duration, backend.name)
    backend.play_audio(samples, sample_rate)


def _load_sounddevice() -> PlaybackBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _play_audio(samples: FloatArray, sample_rate: int) -> None:
        normalized = ensure_audio_contract(samples, sample_rate=sample_rate)
        sd.play(normalized.astype(np.float32), sample_rate)
        sd.wait()

    return PlaybackBackend(name="sounddevice", play_audio=_play_audio)


def _load_simpleaudio() -> PlaybackBackend | None:
    try:
        import simpleaudio as sa_module  # type: ignore[import]
    except ImportError as exc:
        _LOGGER.info("simpleaudio not available: %s", exc, exc_info=True)
        return None
    sa: Any = sa_module

    def _to_int16(samples: FloatArray, sample_rate: int) -> NDArray[np.int16]:
        normalized = ensure_audio_contract(samples, sample_rate=sample_rate)
        clipped = np.clip(normalized, -1.0, 1.0)
        return np.rint(clipped * PCM_SCALE).astype(np.int16)

    def _play_audio(samples: FloatArray, sample_rate: int) -> None:
        audio = _to_int16(samples, sample_rate)
        play = sa.play_buffer(audio, 1, 2, sample_rate)
        play.wait_done()

    return PlaybackBackend(name="simpleaudio", play_audio=_play_audio)
