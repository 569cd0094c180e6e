from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from ..errors import RecognitionError, RecognitionErrorKind

logger = logging.getLogger(__name__)


class RecognitionEventKind(str, Enum):
    AUDIO_START = "audio_start"
    AUDIO_END = "audio_end"
    RESULT = "result"
    NO_MATCH = "no_match"
    FAILED = "failed"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class RecognitionEvent:
    kind: RecognitionEventKind
    attempt_id: int
    text: str = ""
    error: Optional[RecognitionError] = None


class RecognitionEmit(Protocol):
    def __call__(
        self,
        kind: RecognitionEventKind,
        *,
        text: str = "",
        error: Optional[RecognitionError] = None,
    ) -> None: ...


class SpeechRecognizer(Protocol):
    """
    Speech-to-text capability. One listening attempt at a time, best alternative only.

    stop() asks the engine to wind down; it must still emit ENDED. abort() ends the
    attempt at once and nothing further is expected from it.
    """

    def start(self, *, locale: str, emit: RecognitionEmit) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


class RecognizerAdapter:
    def __init__(
        self,
        engine: SpeechRecognizer,
        sink: Callable[[RecognitionEvent], None],
        *,
        locale: str = "en-US",
    ) -> None:
        self._engine = engine
        self._sink = sink
        self._locale = locale
        self._ids = itertools.count(1)
        self._current: Optional[int] = None

    @property
    def active(self) -> bool:
        return self._current is not None

    @property
    def attempt_id(self) -> Optional[int]:
        return self._current

    def listen(self) -> int:
        self.abort()
        attempt_id = next(self._ids)
        self._current = attempt_id

        def emit(
            kind: RecognitionEventKind,
            *,
            text: str = "",
            error: Optional[RecognitionError] = None,
        ) -> None:
            self._on_engine(RecognitionEvent(kind=kind, attempt_id=attempt_id, text=text, error=error))

        try:
            self._engine.start(locale=self._locale, emit=emit)
        except Exception as e:
            logger.warning("recognizer engine failed to start: %s", e)
            emit(
                RecognitionEventKind.FAILED,
                error=RecognitionError(RecognitionErrorKind.TRANSIENT, code="start-failed", message=str(e)),
            )
        return attempt_id

    def stop(self) -> None:
        if self._current is None:
            return
        self._engine.stop()

    def abort(self) -> None:
        if self._current is None:
            return
        self._current = None
        self._engine.abort()

    def _on_engine(self, ev: RecognitionEvent) -> None:
        if ev.attempt_id != self._current:
            return
        if ev.kind == RecognitionEventKind.ENDED:
            self._current = None
        self._sink(ev)
