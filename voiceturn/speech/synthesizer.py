from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class SynthesisEventKind(str, Enum):
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SynthesisEvent:
    kind: SynthesisEventKind
    utterance_id: int
    reason: str = ""


SynthesisEmit = Callable[[SynthesisEventKind, str], None]


class SpeechSynthesizer(Protocol):
    """
    Text-to-speech capability. One utterance at a time.

    The engine reports progress through `emit(kind, reason)`; when `audio_data`
    (base64 audio) is given it is played instead of synthesizing `text`.
    """

    def speak(self, text: str, *, audio_data: Optional[str], emit: SynthesisEmit) -> None: ...

    def cancel(self) -> None: ...


class SynthesizerAdapter:
    """
    Owns the speaking flag and the single in-flight utterance.

    Events from an utterance that has been stopped or superseded are dropped, so the
    flag can only be flipped by the current utterance.
    """

    def __init__(self, engine: SpeechSynthesizer, sink: Callable[[SynthesisEvent], None]) -> None:
        self._engine = engine
        self._sink = sink
        self._ids = itertools.count(1)
        self._current: Optional[int] = None
        self._speaking = False

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def active(self) -> bool:
        return self._current is not None

    def speak(self, text: str, audio_data: Optional[str] = None) -> int:
        self.stop()
        utterance_id = next(self._ids)
        self._current = utterance_id
        try:
            self._engine.speak(
                text,
                audio_data=audio_data,
                emit=lambda kind, reason="": self._on_engine(utterance_id, kind, reason),
            )
        except Exception as e:
            logger.warning("synthesizer engine rejected utterance: %s", e)
            self._on_engine(utterance_id, SynthesisEventKind.FAILED, str(e) or type(e).__name__)
        return utterance_id

    def stop(self) -> None:
        # Always clear the flag, even with nothing in flight.
        self._speaking = False
        if self._current is None:
            return
        self._current = None
        self._engine.cancel()

    def _on_engine(self, utterance_id: int, kind: SynthesisEventKind, reason: str) -> None:
        if utterance_id != self._current:
            return
        if kind == SynthesisEventKind.STARTED:
            self._speaking = True
        else:
            self._speaking = False
            self._current = None
        self._sink(SynthesisEvent(kind=kind, utterance_id=utterance_id, reason=reason))
