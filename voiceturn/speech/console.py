from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import sys
from typing import Optional, TextIO

from ..clock import Clock, TimerHandle
from ..errors import RecognitionError, RecognitionErrorKind
from .recognizer import RecognitionEmit, RecognitionEventKind
from .synthesizer import SynthesisEmit, SynthesisEventKind

logger = logging.getLogger(__name__)


class ConsoleSynthesizer:
    """Prints utterances instead of playing them, paced at `ms_per_char` so turns take real time."""

    def __init__(self, clock: Clock, *, out: TextIO | None = None, ms_per_char: int = 60) -> None:
        self._clock = clock
        self._out = out or sys.stdout
        self._ms_per_char = max(0, int(ms_per_char))
        self._handle: Optional[TimerHandle] = None

    def speak(self, text: str, *, audio_data: Optional[str], emit: SynthesisEmit) -> None:
        self.cancel()
        if audio_data:
            try:
                audio = base64.b64decode(audio_data, validate=True)
            except (binascii.Error, ValueError):
                emit(SynthesisEventKind.FAILED, "invalid-audio-data")
                return
            print(f"agent> [audio {len(audio)} bytes] {text}", file=self._out, flush=True)
        else:
            print(f"agent> {text}", file=self._out, flush=True)
        emit(SynthesisEventKind.STARTED, "")
        self._handle = self._clock.call_later(len(text) * self._ms_per_char, lambda: self._finish(emit))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _finish(self, emit: SynthesisEmit) -> None:
        self._handle = None
        emit(SynthesisEventKind.FINISHED, "")


class ConsoleRecognizer:
    """
    Treats each line typed on stdin as one spoken utterance.

    An empty line is heard-but-not-understood (NO_MATCH). Lines typed ahead are kept
    for the next attempt. End of input fails every attempt with a transient error.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdin
        self._lines: Optional[asyncio.Queue[Optional[str]]] = None
        self._pump: Optional[asyncio.Task[None]] = None
        self._attempt: Optional[asyncio.Task[None]] = None
        self._emit: Optional[RecognitionEmit] = None
        self._eof = False

    def start(self, *, locale: str, emit: RecognitionEmit) -> None:
        self._cancel_attempt()
        if self._lines is None:
            self._lines = asyncio.Queue()
            self._pump = asyncio.create_task(self._read_lines(self._lines))
        self._emit = emit
        self._attempt = asyncio.create_task(self._listen(emit))

    def stop(self) -> None:
        emit = self._emit
        self._cancel_attempt()
        if emit is not None:
            asyncio.get_running_loop().call_soon(emit, RecognitionEventKind.ENDED)

    def abort(self) -> None:
        self._cancel_attempt()

    async def close(self) -> None:
        self._cancel_attempt()
        if self._pump is not None:
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
            self._pump = None

    async def _read_lines(self, lines: asyncio.Queue[Optional[str]]) -> None:
        while True:
            raw = await asyncio.to_thread(self._stream.readline)
            if raw == "":
                logger.info("console input closed")
                await lines.put(None)
                return
            await lines.put(raw.rstrip("\r\n"))

    async def _listen(self, emit: RecognitionEmit) -> None:
        assert self._lines is not None
        line = None if self._eof else await self._lines.get()
        if line is None:
            self._eof = True
            self._emit = None
            emit(
                RecognitionEventKind.FAILED,
                error=RecognitionError(RecognitionErrorKind.TRANSIENT, code="no-input", message="stdin closed"),
            )
            emit(RecognitionEventKind.ENDED)
            return
        self._emit = None
        emit(RecognitionEventKind.AUDIO_START)
        emit(RecognitionEventKind.AUDIO_END)
        if line.strip():
            emit(RecognitionEventKind.RESULT, text=line.strip())
        else:
            emit(RecognitionEventKind.NO_MATCH)
        emit(RecognitionEventKind.ENDED)

    def _cancel_attempt(self) -> None:
        self._emit = None
        if self._attempt is not None and not self._attempt.done():
            self._attempt.cancel()
        self._attempt = None
