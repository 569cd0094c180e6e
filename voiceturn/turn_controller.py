from __future__ import annotations

import itertools
import logging
from typing import Callable, Optional

from .clock import Clock
from .config import SessionConfig
from .errors import RecognitionError, RecognitionErrorKind
from .metrics import METRIC_KEYS, Metrics, outcome_key
from .models import SENTINELS, Turn, TurnOutcome, TurnPhase, TurnResult
from .speech.recognizer import RecognitionEvent, RecognitionEventKind, RecognizerAdapter, SpeechRecognizer
from .speech.synthesizer import SpeechSynthesizer, SynthesisEvent, SynthesisEventKind, SynthesizerAdapter
from .timers import TimerService

logger = logging.getLogger(__name__)

PERMISSION_NOTICE = "Microphone access denied. Please allow microphone access."

_SILENCE = "silence"
_DEADLINE = "deadline"
_RETRY = "retry"


class TurnController:
    """
    Runs one prompt -> listen -> recover cycle at a time.

    The controller owns the synthesizer and recognizer adapters and the per-turn
    timers. Every engine event and timer firing enters through a method here, and all
    state lives on the single active Turn, so a superseded attempt or a finalized turn
    can always be recognized and ignored.

    Timeline of a turn:
      PROMPTING     deadline armed, prompt being spoken (barge-in turns also listen)
      LISTENING     one recognizer attempt, silence timer armed
      REPROMPTING   failed attempt, speaking the re-prompt
      WAITING       pause before the next attempt
      RESOLVED      timers cancelled, engines stopped, TurnResult handed up

    `on_resolved` may run synchronously inside begin() when an engine fails at once.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        synthesizer: SpeechSynthesizer,
        recognizer: SpeechRecognizer,
        config: SessionConfig,
        on_resolved: Callable[[TurnResult], None],
        on_notice: Optional[Callable[[str], None]] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._clock = clock
        self._config = config
        self._on_resolved = on_resolved
        self._on_notice = on_notice
        self._metrics = metrics or Metrics()
        self._timers = TimerService(clock)
        self._synth = SynthesizerAdapter(synthesizer, self._on_synthesis)
        self._recog = RecognizerAdapter(recognizer, self._on_recognition, locale=config.locale)
        self._turn_ids = itertools.count(1)
        self._turn: Optional[Turn] = None
        self._listen_delay_ms = 0

    @property
    def speaking(self) -> bool:
        return self._synth.speaking

    @property
    def listening(self) -> bool:
        return self._recog.active

    @property
    def active(self) -> bool:
        return self._turn is not None

    @property
    def turn(self) -> Optional[Turn]:
        return self._turn

    @property
    def phase(self) -> Optional[TurnPhase]:
        return self._turn.phase if self._turn is not None else None

    def begin(
        self,
        prompt_id: str,
        text: str,
        *,
        audio_data: Optional[str] = None,
        hard_timeout_ms: Optional[int] = None,
        barge_in: bool = False,
        listen_delay_ms: Optional[int] = None,
    ) -> int:
        """Start a turn for one prompt, tearing down whatever turn was active."""
        self.cancel()
        turn = Turn(
            turn_id=next(self._turn_ids),
            prompt_id=prompt_id,
            started_ms=self._clock.now_ms(),
            barge_in=bool(barge_in),
        )
        self._turn = turn
        self._listen_delay_ms = self._config.listen_delay_ms if listen_delay_ms is None else int(listen_delay_ms)
        self._metrics.inc(METRIC_KEYS["turns_started_total"])

        deadline_ms = hard_timeout_ms or self._config.hard_timeout_ms
        turn_id = turn.turn_id
        self._timers.arm(_DEADLINE, deadline_ms, lambda: self._on_deadline(turn_id))
        logger.info(
            "turn started turn_id=%s prompt_id=%s barge_in=%s deadline_ms=%s",
            turn_id,
            prompt_id,
            turn.barge_in,
            deadline_ms,
        )

        if turn.barge_in:
            # The monitor attempt opens before speech so a synchronous engine failure
            # cannot race the prompt's own completion.
            turn.handled = False
            turn.attempt_id = self._recog.listen()
            if self._turn is not turn:
                return turn_id
        self._synth.speak(text, audio_data)
        return turn_id

    def cancel(self) -> None:
        """Tear down the active turn (if any) without reporting a result. Idempotent."""
        turn = self._turn
        self._teardown()
        if turn is not None:
            logger.info("turn cancelled turn_id=%s prompt_id=%s", turn.turn_id, turn.prompt_id)

    # ---- synthesis ----

    def _on_synthesis(self, ev: SynthesisEvent) -> None:
        turn = self._turn
        if turn is None or turn.phase not in (TurnPhase.PROMPTING, TurnPhase.REPROMPTING):
            return
        if ev.kind == SynthesisEventKind.STARTED:
            return
        if ev.kind == SynthesisEventKind.FAILED:
            # The utterance is abandoned; the turn carries on as if it had finished.
            self._metrics.inc(METRIC_KEYS["synthesis_failed_total"])
            logger.warning("synthesis failed turn_id=%s reason=%s", turn.turn_id, ev.reason)

        if turn.phase == TurnPhase.PROMPTING:
            self._after_prompt(turn)
        else:
            turn.phase = TurnPhase.WAITING
            self._schedule_attempt(turn, self._config.retry_delay_ms)

    def _after_prompt(self, turn: Turn) -> None:
        if turn.barge_in and self._recog.active:
            # The monitor attempt simply keeps going as attempt 1.
            turn.phase = TurnPhase.LISTENING
            turn.attempt = 1
            turn.heard_result = False
            turn.heard_no_match = False
            self._metrics.inc(METRIC_KEYS["attempts_total"])
            if not turn.audio_active:
                self._arm_silence(turn)
            return
        turn.handled = True
        if self._listen_delay_ms > 0:
            turn.phase = TurnPhase.WAITING
            self._schedule_attempt(turn, self._listen_delay_ms)
        else:
            self._start_attempt(turn.turn_id)

    def _schedule_attempt(self, turn: Turn, delay_ms: int) -> None:
        turn_id = turn.turn_id
        if delay_ms <= 0:
            self._start_attempt(turn_id)
            return
        self._timers.arm(_RETRY, delay_ms, lambda: self._start_attempt(turn_id))

    # ---- recognition ----

    def _start_attempt(self, turn_id: int) -> None:
        turn = self._turn
        if turn is None or turn.turn_id != turn_id or turn.outcome.terminal:
            return
        turn.attempt += 1
        turn.phase = TurnPhase.LISTENING
        turn.handled = False
        turn.heard_result = False
        turn.heard_no_match = False
        turn.audio_active = False
        attempt = turn.attempt
        self._metrics.inc(METRIC_KEYS["attempts_total"])
        logger.debug("listening turn_id=%s attempt=%s", turn_id, attempt)

        attempt_id = self._recog.listen()
        # listen() may already have failed the attempt synchronously.
        if self._turn is turn and turn.attempt == attempt and not turn.handled:
            turn.attempt_id = attempt_id
            self._arm_silence(turn)

    def _arm_silence(self, turn: Turn) -> None:
        turn_id, attempt = turn.turn_id, turn.attempt
        self._timers.arm(_SILENCE, self._config.silence_ms, lambda: self._on_silence(turn_id, attempt))

    def _on_silence(self, turn_id: int, attempt: int) -> None:
        turn = self._turn
        if turn is None or turn.turn_id != turn_id or turn.attempt != attempt or turn.handled:
            return
        logger.debug("silence window elapsed turn_id=%s attempt=%s", turn_id, attempt)
        # Graceful stop: the engine's ENDED decides the attempt.
        self._recog.stop()

    def _on_recognition(self, ev: RecognitionEvent) -> None:
        turn = self._turn
        if turn is None or turn.outcome.terminal:
            return
        if turn.phase == TurnPhase.PROMPTING:
            self._on_monitor_event(turn, ev)
            return
        if turn.phase != TurnPhase.LISTENING:
            return

        kind = ev.kind
        if kind == RecognitionEventKind.AUDIO_START:
            turn.audio_active = True
            self._timers.cancel(_SILENCE)
        elif kind == RecognitionEventKind.AUDIO_END:
            turn.audio_active = False
            if not turn.heard_result and not turn.heard_no_match and not turn.handled:
                self._arm_silence(turn)
        elif kind == RecognitionEventKind.RESULT:
            text = (ev.text or "").strip()
            if self._discard(turn, text):
                if not turn.audio_active and not turn.handled:
                    self._arm_silence(turn)
                return
            turn.heard_result = True
            self._resolve(turn, TurnOutcome.ANSWERED, text=text)
        elif kind == RecognitionEventKind.NO_MATCH:
            turn.heard_no_match = True
            self._timers.cancel(_SILENCE)
            self._recog.stop()
        elif kind == RecognitionEventKind.FAILED:
            error = ev.error or RecognitionError(RecognitionErrorKind.TRANSIENT)
            if self._recognition_failed(turn, error):
                return
            self._recog.abort()
            self._after_failed_attempt(turn)
        elif kind == RecognitionEventKind.ENDED:
            self._after_failed_attempt(turn)

    def _on_monitor_event(self, turn: Turn, ev: RecognitionEvent) -> None:
        """Events from the attempt that listens while a barge-in prompt is still playing."""
        kind = ev.kind
        if kind == RecognitionEventKind.AUDIO_START:
            turn.audio_active = True
        elif kind == RecognitionEventKind.AUDIO_END:
            turn.audio_active = False
        elif kind == RecognitionEventKind.RESULT:
            text = (ev.text or "").strip()
            if self._discard(turn, text):
                return
            if self._synth.speaking:
                logger.info("barge-in turn_id=%s", turn.turn_id)
                self._metrics.inc(METRIC_KEYS["barge_in_total"])
            # Stop the prompt before anything else sees the answer.
            self._synth.stop()
            self._resolve(turn, TurnOutcome.ANSWERED, text=text, barged_in=True)
        elif kind == RecognitionEventKind.FAILED:
            error = ev.error or RecognitionError(RecognitionErrorKind.TRANSIENT)
            if self._recognition_failed(turn, error):
                return
            turn.monitor_ended = True
            turn.handled = True
            self._recog.abort()
        elif kind == RecognitionEventKind.ENDED:
            # Does not count as an attempt; listening restarts after the prompt.
            turn.monitor_ended = True
            turn.handled = True

    def _discard(self, turn: Turn, text: str) -> bool:
        if not text:
            return True
        if self._config.is_echo(text):
            self._metrics.inc(METRIC_KEYS["echo_discarded_total"])
            logger.info("echo discarded turn_id=%s text=%r", turn.turn_id, text)
            return True
        return False

    def _recognition_failed(self, turn: Turn, error: RecognitionError) -> bool:
        """Count the failure; returns True when it resolved the turn."""
        self._metrics.inc(METRIC_KEYS["recognition_failed_total"])
        if error.permission_denied:
            logger.warning("recognizer permission denied turn_id=%s code=%s", turn.turn_id, error.code)
            if self._on_notice is not None:
                self._on_notice(PERMISSION_NOTICE)
            self._resolve(turn, TurnOutcome.NO_RESPONSE, error=RecognitionErrorKind.PERMISSION_DENIED.value)
            return True
        logger.warning("recognizer error turn_id=%s code=%s: %s", turn.turn_id, error.code, error)
        return False

    def _after_failed_attempt(self, turn: Turn) -> None:
        if turn.handled:
            return
        turn.handled = True
        self._timers.cancel(_SILENCE)
        if turn.heard_no_match:
            turn.no_match_attempts += 1
        else:
            turn.silent_attempts += 1

        if turn.attempt < self._config.max_attempts:
            logger.info("re-prompting turn_id=%s after attempt=%s", turn.turn_id, turn.attempt)
            self._metrics.inc(METRIC_KEYS["reprompts_total"])
            self._recog.abort()
            turn.phase = TurnPhase.REPROMPTING
            self._synth.speak(self._config.reprompt_text)
            return

        if turn.no_match_attempts > 0 and turn.no_match_attempts >= turn.silent_attempts:
            self._resolve(turn, TurnOutcome.UNINTELLIGIBLE)
        else:
            self._resolve(turn, TurnOutcome.NO_RESPONSE)

    # ---- deadline / resolution ----

    def _on_deadline(self, turn_id: int) -> None:
        turn = self._turn
        if turn is None or turn.turn_id != turn_id or turn.outcome.terminal:
            return
        logger.info("hard deadline turn_id=%s phase=%s attempt=%s", turn_id, turn.phase.value, turn.attempt)
        self._resolve(turn, TurnOutcome.TIMED_OUT)

    def _resolve(
        self,
        turn: Turn,
        outcome: TurnOutcome,
        *,
        text: str = "",
        barged_in: bool = False,
        error: Optional[str] = None,
    ) -> None:
        if turn.outcome.terminal:
            return
        turn.outcome = outcome
        turn.phase = TurnPhase.RESOLVED
        turn.handled = True
        self._teardown()

        duration_ms = self._clock.now_ms() - turn.started_ms
        self._metrics.observe(METRIC_KEYS["turn_duration_ms"], duration_ms)
        self._metrics.inc(outcome_key(outcome.value))
        result = TurnResult(
            turn_id=turn.turn_id,
            prompt_id=turn.prompt_id,
            outcome=outcome,
            text=text if outcome == TurnOutcome.ANSWERED else SENTINELS[outcome],
            # A turn that never reached listening still counts its first attempt.
            attempts=max(turn.attempt, 1),
            duration_ms=duration_ms,
            barged_in=barged_in,
            error=error,
        )
        logger.info(
            "turn resolved turn_id=%s prompt_id=%s outcome=%s attempts=%s duration_ms=%s",
            turn.turn_id,
            turn.prompt_id,
            outcome.value,
            turn.attempt,
            duration_ms,
        )
        self._on_resolved(result)

    def _teardown(self) -> None:
        self._turn = None
        self._timers.cancel_all()
        self._recog.abort()
        self._synth.stop()
