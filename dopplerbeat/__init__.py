from __future__ import annotations

from .audio import SAMPLE_RATE, EncodedAudio, decode_wav, encode_wav
from .config import (
    AnalysisResult,
    BackgroundLabel,
    FallbackConfig,
    LimiterMode,
    PostFilterConfig,
    PulseTuning,
    SynthesisConfig,
    SynthesisProfile,
    parse_analysis,
    parse_config,
)
from .context import AudioContext, get_shared_context
from .dx import AudioMetadata, SynthesizedAudio, render, render_config
from .errors import (
    DopplerBeatError,
    EncodingError,
    EnvironmentUnsupportedError,
    InvalidConfigError,
    PlaybackError,
    SynthesisIntegrityError,
)
from .logging_utils import configure_logging as _configure_logging
from .main import LevelReport, RenderHooks, RenderResult, measure_levels, render_raw
from .schedule import BeatScheduleEntry, resolve_schedule

__all__ = [
    "SAMPLE_RATE",
    "AnalysisResult",
    "AudioContext",
    "AudioMetadata",
    "BackgroundLabel",
    "BeatScheduleEntry",
    "DopplerBeatError",
    "EncodedAudio",
    "EncodingError",
    "EnvironmentUnsupportedError",
    "FallbackConfig",
    "InvalidConfigError",
    "LevelReport",
    "LimiterMode",
    "PlaybackError",
    "PostFilterConfig",
    "PulseTuning",
    "RenderHooks",
    "RenderResult",
    "SynthesisConfig",
    "SynthesisIntegrityError",
    "SynthesisProfile",
    "SynthesizedAudio",
    "decode_wav",
    "encode_wav",
    "get_shared_context",
    "measure_levels",
    "parse_analysis",
    "parse_config",
    "render",
    "render_config",
    "render_raw",
    "resolve_schedule",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
