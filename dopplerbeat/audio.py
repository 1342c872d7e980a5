from __future__ import annotations

import io
import logging
import math
import struct
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict
from scipy.signal import lfilter  # type: ignore[import]

from .config import SAMPLE_RATE, FallbackConfig, LimiterMode, PostFilterConfig
from .errors import EncodingError, InvalidConfigError, SynthesisIntegrityError

_LOGGER = logging.getLogger("dopplerbeat.audio")

FloatArray = NDArray[np.float64]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SOFT_CEILING = 0.95
PCM_SCALE = 32767
WAV_HEADER_SIZE = 44
_MAX_CHUNK_BYTES = 0xFFFFFFFF
# RIFF/WAVE, 16-byte PCM fmt chunk, data chunk header
_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")

WATERMARK_HZ = 15_000.0
WATERMARK_DURATION_SEC = 0.5
WATERMARK_AMPLITUDE = 0.01
WATERMARK_FADE_SEC = 0.1


def ensure_audio_contract(
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> FloatArray:
    """Normalize dtype/shape to the audio contract (mono float64)."""

    if sample_rate <= 0:
        raise InvalidConfigError(f"sample_rate must be positive, got {sample_rate}")
    return np.asarray(audio, dtype=np.float64).reshape(-1)


# =============================================================================
# LEVELS
# =============================================================================


class LevelReport(BaseModel):
    peak: float
    rms: float

    model_config = ConfigDict(frozen=True, extra="forbid")


def measure_levels(buffer: AudioNumbers) -> LevelReport:
    samples = ensure_audio_contract(buffer)
    if samples.size == 0:
        return LevelReport(peak=0.0, rms=0.0)
    peak = float(np.max(np.abs(samples)))
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return LevelReport(peak=peak, rms=rms)


def verify_levels(
    report: LevelReport,
    *,
    peak_floor: float = FallbackConfig().peak_floor,
    rms_floor: float | None = FallbackConfig().rms_floor,
) -> LevelReport:
    """Raise SynthesisIntegrityError when a buffer is effectively silent.

    ``rms_floor=None`` checks the peak only.
    """

    if not (math.isfinite(report.peak) and math.isfinite(report.rms)):
        raise SynthesisIntegrityError(
            f"non-finite levels (peak={report.peak}, rms={report.rms})"
        )
    if report.peak <= peak_floor:
        raise SynthesisIntegrityError(
            f"peak {report.peak:.5f} is at or below the audibility floor {peak_floor}"
        )
    if rms_floor is not None and report.rms <= rms_floor:
        raise SynthesisIntegrityError(
            f"rms {report.rms:.6f} is at or below the audibility floor {rms_floor}"
        )
    return report


# =============================================================================
# POST-FILTER
# =============================================================================


def bandpass_coefficients(
    sample_rate: int,
    low_hz: float = 200.0,
    high_hz: float = 1200.0,
    q: float = 1.5,
) -> tuple[FloatArray, FloatArray]:
    """Constant-peak band-pass biquad centred on the geometric mean of the band.

    Returns un-normalized ``(b, a)`` with ``a[0] = 1 + alpha``.
    """
    if sample_rate <= 0 or q <= 0 or not 0 < low_hz < high_hz:
        raise InvalidConfigError(
            f"invalid band-pass parameters: sr={sample_rate} band={low_hz}-{high_hz} q={q}"
        )
    center = math.sqrt(low_hz * high_hz)
    w0 = 2.0 * math.pi * center / sample_rate
    alpha = math.sin(w0) / (2.0 * q)
    b = np.array([alpha, 0.0, -alpha], dtype=np.float64)
    a = np.array([1.0 + alpha, -2.0 * math.cos(w0), 1.0 - alpha], dtype=np.float64)
    return b, a


def apply_post_filter(
    buffer: FloatArray,
    sample_rate: int,
    settings: PostFilterConfig | None = None,
) -> FloatArray:
    """Run the band-pass once over the whole buffer, in place.

    Filter state carries across every sample, so pulse boundaries never reset it.
    """
    settings = settings or PostFilterConfig()
    if not settings.enabled or buffer.size == 0:
        return buffer
    b, a = bandpass_coefficients(sample_rate, settings.low_hz, settings.high_hz, settings.q)
    filtered = lfilter(b / a[0], a / a[0], buffer)
    buffer[:] = np.asarray(filtered, dtype=np.float64)
    return buffer


# =============================================================================
# WATERMARK
# =============================================================================


def add_watermark(buffer: FloatArray, sample_rate: int) -> FloatArray:
    """Add a faint 15 kHz marker tone at the start of the buffer, in place."""

    if WATERMARK_HZ >= sample_rate / 2:
        _LOGGER.info(
            "Skipping watermark: %.0f Hz is at or above Nyquist for %d Hz",
            WATERMARK_HZ,
            sample_rate,
        )
        return buffer
    length = min(int(WATERMARK_DURATION_SEC * sample_rate), buffer.size)
    if length == 0:
        return buffer
    t = np.arange(length, dtype=np.float64) / sample_rate
    tone = WATERMARK_AMPLITUDE * np.sin(2.0 * np.pi * WATERMARK_HZ * t)
    fade = min(int(WATERMARK_FADE_SEC * sample_rate), length // 2)
    if fade > 0:
        ramp = np.linspace(0.0, 1.0, fade)
        tone[:fade] *= ramp
        tone[-fade:] *= ramp[::-1]
    buffer[:length] += tone
    return buffer


# =============================================================================
# LIMITER
# =============================================================================


def apply_limiter(buffer: FloatArray, mode: LimiterMode = "soft_ceiling") -> FloatArray:
    """Bound the buffer to full scale, in place."""

    match mode:
        case "soft_ceiling":
            np.clip(buffer, -SOFT_CEILING, SOFT_CEILING, out=buffer)
        case "hard_renormalize":
            np.clip(buffer, -1.0, 1.0, out=buffer)
        case _:
            raise InvalidConfigError(f"Unknown limiter mode: {mode!r}")

    if buffer.size and not np.all(np.abs(buffer) <= 1.0):
        # NaN survives np.clip and fails the comparison above.
        raise EncodingError("limited buffer still exceeds full scale")
    return buffer


# =============================================================================
# CONTAINER
# =============================================================================


class EncodedAudio(BaseModel):
    """A mono 16-bit PCM WAV container split into header and data chunk."""

    header: bytes
    data: bytes
    sample_rate_hz: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def byte_length(self) -> int:
        return len(self.header) + len(self.data)

    @property
    def num_samples(self) -> int:
        return len(self.data) // 2

    def to_bytes(self) -> bytes:
        return self.header + self.data

    def save(self, path: str | Path) -> Path:
        target = Path(path)
        target.write_bytes(self.to_bytes())
        return target


def wav_header(num_samples: int, sample_rate: int) -> bytes:
    data_size = num_samples * 2
    if data_size + WAV_HEADER_SIZE - 8 > _MAX_CHUNK_BYTES:
        raise EncodingError(
            f"{num_samples} samples do not fit a 32-bit RIFF container"
        )
    return _WAV_HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,  # PCM
        1,  # mono
        sample_rate,
        sample_rate * 2,
        2,
        16,
        b"data",
        data_size,
    )


def encode_wav(samples: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> EncodedAudio:
    """Encode float samples as a mono 16-bit PCM WAV.

    Samples are clamped to [-1, 1] and scaled by 32767 with round-half-even.
    """

    if sample_rate <= 0:
        raise EncodingError(f"sample rate must be positive, got {sample_rate}")
    mono = ensure_audio_contract(samples, sample_rate=sample_rate)
    if not np.all(np.isfinite(mono)):
        raise EncodingError("buffer contains non-finite samples")
    header = wav_header(mono.size, sample_rate)
    pcm = np.rint(np.clip(mono, -1.0, 1.0) * PCM_SCALE).astype("<i2")
    return EncodedAudio(header=header, data=pcm.tobytes(), sample_rate_hz=sample_rate)


def decode_wav(data: bytes | EncodedAudio) -> tuple[FloatArray, int]:
    """Read a WAV container back to float samples scaled by ``1 / 32767``."""

    raw = data.to_bytes() if isinstance(data, EncodedAudio) else data
    try:
        pcm, sample_rate = sf.read(io.BytesIO(raw), dtype="int16", always_2d=False)
    except RuntimeError as exc:
        raise EncodingError(f"could not decode WAV container: {exc}") from exc
    samples = np.asarray(pcm, dtype=np.float64).reshape(-1) / PCM_SCALE
    return samples, int(sample_rate)
