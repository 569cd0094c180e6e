from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

from ..clock import Clock, TimerHandle
from ..errors import RecognitionError
from .recognizer import RecognitionEmit, RecognitionEventKind
from .synthesizer import SynthesisEmit, SynthesisEventKind


@dataclass(frozen=True, slots=True)
class ScriptedEvent:
    at_ms: int
    kind: RecognitionEventKind
    text: str = ""
    error_code: str = ""


Step = list[ScriptedEvent]


def silent() -> Step:
    """No voice activity at all; the attempt only ends when someone calls stop()."""
    return []


def says(text: str, *, start_ms: int = 300, speech_ms: int = 800, result_delay_ms: int = 150) -> Step:
    end = start_ms + speech_ms
    return [
        ScriptedEvent(start_ms, RecognitionEventKind.AUDIO_START),
        ScriptedEvent(end, RecognitionEventKind.AUDIO_END),
        ScriptedEvent(end + result_delay_ms, RecognitionEventKind.RESULT, text=text),
        ScriptedEvent(end + result_delay_ms, RecognitionEventKind.ENDED),
    ]


def mumbles(*, start_ms: int = 300, speech_ms: int = 600, verdict_delay_ms: int = 150) -> Step:
    end = start_ms + speech_ms
    return [
        ScriptedEvent(start_ms, RecognitionEventKind.AUDIO_START),
        ScriptedEvent(end, RecognitionEventKind.AUDIO_END),
        ScriptedEvent(end + verdict_delay_ms, RecognitionEventKind.NO_MATCH),
    ]


def ends(*, at_ms: int = 1500) -> Step:
    """The engine closes the attempt on its own without hearing anything."""
    return [ScriptedEvent(at_ms, RecognitionEventKind.ENDED)]


def fails(code: str, *, at_ms: int = 50) -> Step:
    return [
        ScriptedEvent(at_ms, RecognitionEventKind.FAILED, error_code=code),
        ScriptedEvent(at_ms, RecognitionEventKind.ENDED),
    ]


class ScriptedRecognizer:
    """
    Deterministic recognizer driven by a Clock.

    Each start() consumes the next step of the script (an exhausted script means
    silence) and schedules its events relative to the start time. stop() cancels what
    is left and emits ENDED after `end_delay_ms`, like a browser engine winding down.
    """

    def __init__(self, clock: Clock, script: Iterable[Step] = (), *, end_delay_ms: int = 0) -> None:
        self._clock = clock
        self._script: deque[Step] = deque(script)
        self._end_delay_ms = int(end_delay_ms)
        self._handles: list[TimerHandle] = []
        self._emit: Optional[RecognitionEmit] = None
        self.locales: list[str] = []
        self.starts = 0
        self.stops = 0
        self.aborts = 0

    @property
    def active(self) -> bool:
        return self._emit is not None

    def queue(self, *steps: Step) -> None:
        self._script.extend(steps)

    def start(self, *, locale: str, emit: RecognitionEmit) -> None:
        self._cancel_pending()
        self.starts += 1
        self.locales.append(locale)
        self._emit = emit
        step = self._script.popleft() if self._script else silent()
        for ev in step:
            self._handles.append(self._clock.call_later(ev.at_ms, lambda ev=ev, emit=emit: self._deliver(emit, ev)))

    def stop(self) -> None:
        self.stops += 1
        emit = self._emit
        if emit is None:
            return
        self._cancel_pending()
        self._handles.append(
            self._clock.call_later(
                self._end_delay_ms,
                lambda: self._deliver(emit, ScriptedEvent(0, RecognitionEventKind.ENDED)),
            )
        )

    def abort(self) -> None:
        self.aborts += 1
        self._cancel_pending()
        self._emit = None

    def emit_now(self, kind: RecognitionEventKind, *, text: str = "", error_code: str = "") -> None:
        """Push an event into the current attempt immediately (for hand-driven tests)."""
        if self._emit is None:
            raise RuntimeError("no recognition attempt in progress")
        self._deliver(self._emit, ScriptedEvent(0, kind, text=text, error_code=error_code))

    def _deliver(self, emit: RecognitionEmit, ev: ScriptedEvent) -> None:
        if emit is not self._emit:
            return
        if ev.kind == RecognitionEventKind.ENDED:
            self._cancel_pending()
            self._emit = None
        error = RecognitionError.from_code(ev.error_code) if ev.kind == RecognitionEventKind.FAILED else None
        emit(ev.kind, text=ev.text, error=error)

    def _cancel_pending(self) -> None:
        for h in self._handles:
            h.cancel()
        self._handles.clear()


class ScriptedSynthesizer:
    """
    Deterministic synthesizer driven by a Clock.

    An utterance starts immediately and finishes after `speak_ms` (or after
    `len(text) * ms_per_char` when that is set). Texts listed in `fail_texts` fail
    instead of finishing. With `auto=False` the test finishes utterances by hand.
    """

    def __init__(
        self,
        clock: Clock,
        *,
        speak_ms: int = 1000,
        ms_per_char: int = 0,
        fail_texts: Iterable[str] = (),
        auto: bool = True,
    ) -> None:
        self._clock = clock
        self._speak_ms = int(speak_ms)
        self._ms_per_char = int(ms_per_char)
        self._fail_texts = set(fail_texts)
        self._auto = auto
        self._handles: list[TimerHandle] = []
        self._emit: Optional[SynthesisEmit] = None
        self.spoken: list[tuple[str, Optional[str]]] = []
        self.cancels = 0

    @property
    def active(self) -> bool:
        return self._emit is not None

    @property
    def texts(self) -> list[str]:
        return [t for t, _ in self.spoken]

    def speak(self, text: str, *, audio_data: Optional[str], emit: SynthesisEmit) -> None:
        self._cancel_pending()
        self.spoken.append((text, audio_data))
        self._emit = emit
        self._handles.append(self._clock.call_later(0, lambda: self._deliver(emit, SynthesisEventKind.STARTED, "")))
        if not self._auto:
            return
        duration = len(text) * self._ms_per_char if self._ms_per_char > 0 else self._speak_ms
        if text in self._fail_texts:
            self._handles.append(
                self._clock.call_later(duration, lambda: self._deliver(emit, SynthesisEventKind.FAILED, "synthesis-failed"))
            )
        else:
            self._handles.append(
                self._clock.call_later(duration, lambda: self._deliver(emit, SynthesisEventKind.FINISHED, ""))
            )

    def cancel(self) -> None:
        self.cancels += 1
        self._cancel_pending()
        self._emit = None

    def finish(self) -> None:
        if self._emit is None:
            raise RuntimeError("no utterance in progress")
        self._deliver(self._emit, SynthesisEventKind.FINISHED, "")

    def _deliver(self, emit: SynthesisEmit, kind: SynthesisEventKind, reason: str) -> None:
        if emit is not self._emit:
            return
        if kind != SynthesisEventKind.STARTED:
            self._cancel_pending()
            self._emit = None
        emit(kind, reason)

    def _cancel_pending(self) -> None:
        for h in self._handles:
            h.cancel()
        self._handles.clear()
