from __future__ import annotations

import asyncio
from typing import Optional

from voiceturn.clock import FakeClock
from voiceturn.errors import RecognitionErrorKind
from voiceturn.speech.recognizer import RecognitionEvent, RecognitionEventKind, RecognizerAdapter
from voiceturn.speech.scripted import ScriptedRecognizer, ScriptedSynthesizer, fails, says
from voiceturn.speech.synthesizer import SynthesisEmit, SynthesisEvent, SynthesisEventKind, SynthesizerAdapter


class _BrokenSynth:
    def speak(self, text: str, *, audio_data: Optional[str], emit: SynthesisEmit) -> None:
        raise RuntimeError("audio device busy")

    def cancel(self) -> None:
        pass


class _BrokenRecognizer:
    def start(self, *, locale: str, emit: object) -> None:
        raise OSError("no microphone")

    def stop(self) -> None:
        pass

    def abort(self) -> None:
        pass


def test_synthesizer_flag_follows_the_utterance() -> None:
    async def _run() -> None:
        clock = FakeClock()
        events: list[SynthesisEvent] = []
        adapter = SynthesizerAdapter(ScriptedSynthesizer(clock, speak_ms=400), events.append)

        uid = adapter.speak("hello")
        assert not adapter.speaking
        await clock.advance(1)
        assert adapter.speaking
        await clock.advance(400)
        assert not adapter.speaking
        assert [(e.kind, e.utterance_id) for e in events] == [
            (SynthesisEventKind.STARTED, uid),
            (SynthesisEventKind.FINISHED, uid),
        ]

    asyncio.run(_run())


def test_synthesizer_new_utterance_stops_the_old_one_and_drops_its_events() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedSynthesizer(clock, speak_ms=400, auto=False)
        events: list[SynthesisEvent] = []
        adapter = SynthesizerAdapter(engine, events.append)

        first = adapter.speak("one")
        await clock.advance(1)
        second = adapter.speak("two")
        assert not adapter.speaking
        assert engine.cancels == 1

        await clock.advance(1)
        engine.finish()
        assert [(e.kind, e.utterance_id) for e in events] == [
            (SynthesisEventKind.STARTED, first),
            (SynthesisEventKind.STARTED, second),
            (SynthesisEventKind.FINISHED, second),
        ]

    asyncio.run(_run())


def test_synthesizer_stop_is_idempotent_and_always_clears_the_flag() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedSynthesizer(clock, speak_ms=1000)
        events: list[SynthesisEvent] = []
        adapter = SynthesizerAdapter(engine, events.append)

        adapter.stop()
        assert not adapter.speaking

        adapter.speak("long")
        await clock.advance(10)
        adapter.stop()
        adapter.stop()
        assert not adapter.speaking
        assert not adapter.active
        assert engine.cancels == 1

        await clock.advance(2000)
        assert [e.kind for e in events] == [SynthesisEventKind.STARTED]

    asyncio.run(_run())


def test_synthesizer_engine_exception_becomes_failed_event() -> None:
    events: list[SynthesisEvent] = []
    adapter = SynthesizerAdapter(_BrokenSynth(), events.append)

    adapter.speak("hello")

    assert [e.kind for e in events] == [SynthesisEventKind.FAILED]
    assert events[0].reason == "audio device busy"
    assert not adapter.speaking


def test_recognizer_events_are_tagged_and_end_the_attempt() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedRecognizer(clock, [says("hello")])
        events: list[RecognitionEvent] = []
        adapter = RecognizerAdapter(engine, events.append, locale="en-GB")

        attempt = adapter.listen()
        assert adapter.active
        await clock.advance(2000)

        assert [e.kind for e in events] == [
            RecognitionEventKind.AUDIO_START,
            RecognitionEventKind.AUDIO_END,
            RecognitionEventKind.RESULT,
            RecognitionEventKind.ENDED,
        ]
        assert {e.attempt_id for e in events} == {attempt}
        assert events[2].text == "hello"
        assert not adapter.active
        assert engine.locales == ["en-GB"]

    asyncio.run(_run())


def test_recognizer_listen_aborts_the_previous_attempt() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedRecognizer(clock, [says("stale"), says("fresh")])
        events: list[RecognitionEvent] = []
        adapter = RecognizerAdapter(engine, events.append)

        adapter.listen()
        await clock.advance(100)
        second = adapter.listen()
        assert engine.aborts == 1

        await clock.advance(3000)
        assert [e.text for e in events if e.kind == RecognitionEventKind.RESULT] == ["fresh"]
        assert {e.attempt_id for e in events} == {second}

    asyncio.run(_run())


def test_recognizer_stop_is_graceful_and_abort_is_silent() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedRecognizer(clock, end_delay_ms=200)
        events: list[RecognitionEvent] = []
        adapter = RecognizerAdapter(engine, events.append)

        adapter.listen()
        adapter.stop()
        assert adapter.active
        await clock.advance(200)
        assert [e.kind for e in events] == [RecognitionEventKind.ENDED]
        assert not adapter.active

        events.clear()
        adapter.listen()
        adapter.abort()
        adapter.abort()
        await clock.advance(1000)
        assert events == []
        assert not adapter.active

    asyncio.run(_run())


def test_recognizer_failures_carry_their_error_kind() -> None:
    async def _run() -> None:
        clock = FakeClock()
        engine = ScriptedRecognizer(clock, [fails("not-allowed"), fails("network")])
        events: list[RecognitionEvent] = []
        adapter = RecognizerAdapter(engine, events.append)

        adapter.listen()
        await clock.advance(100)
        adapter.listen()
        await clock.advance(100)

        errors = [e.error for e in events if e.kind == RecognitionEventKind.FAILED]
        assert [err.kind for err in errors if err is not None] == [
            RecognitionErrorKind.PERMISSION_DENIED,
            RecognitionErrorKind.TRANSIENT,
        ]

    asyncio.run(_run())


def test_recognizer_start_exception_becomes_transient_failure() -> None:
    events: list[RecognitionEvent] = []
    adapter = RecognizerAdapter(_BrokenRecognizer(), events.append)

    adapter.listen()

    assert [e.kind for e in events] == [RecognitionEventKind.FAILED]
    err = events[0].error
    assert err is not None
    assert err.kind == RecognitionErrorKind.TRANSIENT
    assert err.code == "start-failed"
