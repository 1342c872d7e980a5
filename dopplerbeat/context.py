from __future__ import annotations

import logging
import threading
from typing import Callable, Literal

import numpy as np
from numpy.typing import NDArray

from .errors import EnvironmentUnsupportedError, InvalidConfigError

_LOGGER = logging.getLogger("dopplerbeat.context")

ContextState = Literal["uninitialized", "running", "suspended", "closed"]
EnvironmentCheck = Callable[[], None]


def _default_check() -> None:
    # Rendering needs no audio device, so this only confirms numpy can hand out
    # a buffer. Pass a check to AudioContext to guard a real backend.
    np.zeros(1, dtype=np.float64)


class AudioContext:
    """Audio subsystem handle that hands out synthesis buffers.

    States move ``uninitialized -> running <-> suspended -> closed``. A failed
    initialization leaves the context ``uninitialized`` so a later call can
    retry cleanly.
    """

    def __init__(self, check: EnvironmentCheck | None = None) -> None:
        self._check = check or _default_check
        self._state: ContextState = "uninitialized"
        self._lock = threading.RLock()

    @property
    def state(self) -> ContextState:
        return self._state

    def init(self) -> None:
        with self._lock:
            match self._state:
                case "running" | "suspended":
                    return
                case "closed":
                    raise EnvironmentUnsupportedError("audio context has been torn down")
                case _:
                    pass
            try:
                self._check()
            except Exception as exc:
                _LOGGER.warning("Audio context initialization failed: %s", exc)
                raise EnvironmentUnsupportedError(
                    f"audio context unavailable: {exc}"
                ) from exc
            self._state = "running"
            _LOGGER.debug("Audio context running")

    def suspend(self) -> None:
        with self._lock:
            match self._state:
                case "running":
                    self._state = "suspended"
                case "closed":
                    raise EnvironmentUnsupportedError("audio context has been torn down")
                case _:
                    pass

    def resume(self) -> None:
        with self._lock:
            match self._state:
                case "suspended":
                    self._state = "running"
                    _LOGGER.debug("Audio context resumed")
                case "uninitialized":
                    self.init()
                case "closed":
                    raise EnvironmentUnsupportedError("audio context has been torn down")
                case _:
                    pass

    def teardown(self) -> None:
        with self._lock:
            self._state = "closed"

    def ensure_running(self) -> None:
        with self._lock:
            if self._state == "uninitialized":
                self.init()
            elif self._state == "suspended":
                self.resume()
            elif self._state == "closed":
                raise EnvironmentUnsupportedError("audio context has been torn down")

    def allocate(self, num_samples: int) -> NDArray[np.float64]:
        """Return a fresh zeroed buffer, starting or resuming the context first."""
        if num_samples < 1:
            raise InvalidConfigError(f"cannot allocate a buffer of {num_samples} samples")
        self.ensure_running()
        return np.zeros(num_samples, dtype=np.float64)

    def __enter__(self) -> "AudioContext":
        self.ensure_running()
        return self

    def __exit__(self, *_: object) -> None:
        self.teardown()


_shared_context: AudioContext | None = None
_shared_lock = threading.Lock()


def get_shared_context() -> AudioContext:
    """Process-wide context, created on first use.

    A torn-down shared context is replaced on the next call.
    """
    global _shared_context
    with _shared_lock:
        if _shared_context is None or _shared_context.state == "closed":
            _shared_context = AudioContext()
        return _shared_context
