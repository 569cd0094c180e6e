from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from .clock import Clock, RealClock
from .config import SessionConfig
from .errors import AnswerAlreadyRecorded
from .metrics import METRIC_KEYS, Metrics
from .models import Prompt, SessionState, TurnOutcome, TurnResult, current_prompt, prepare_prompts
from .protocol import (
    InboundAgentMessage,
    OutboundEvent,
    OutboundSessionEnded,
    OutboundStart,
    OutboundUserMessage,
    parse_inbound_json,
    parse_inbound_obj,
)
from .speech.recognizer import SpeechRecognizer
from .speech.synthesizer import SpeechSynthesizer
from .turn_controller import TurnController

logger = logging.getLogger(__name__)

NO_SPEECH_REASON = "No speech detected after multiple attempts"

_END_REASONS: dict[TurnOutcome, str] = {
    TurnOutcome.NO_RESPONSE: NO_SPEECH_REASON,
    TurnOutcome.UNINTELLIGIBLE: "Speech could not be understood after multiple attempts",
    TurnOutcome.TIMED_OUT: "No answer before the turn deadline",
}
PERMISSION_REASON = "Microphone access denied"


@dataclass(frozen=True, slots=True)
class CloseRequest:
    """Asks the writer to close the channel once everything queued before it is sent."""

    code: int = 1000
    reason: str = ""


OutboundItem = Union[OutboundStart, OutboundUserMessage, OutboundSessionEnded, CloseRequest]


class SessionObserver:
    """No-op hooks for a transcript / UI layer. Subclass and override what you need."""

    def on_state_change(self, state: SessionState) -> None:
        pass

    def on_agent_spoken(self, text: str, prompt_id: Optional[str]) -> None:
        pass

    def on_user_spoken(self, result: TurnResult) -> None:
        pass

    def on_notice(self, text: str) -> None:
        pass

    def on_complete(self, prompts: list[Prompt]) -> None:
        pass


class SessionOrchestrator:
    """
    Sequences turns and translates their results into protocol messages.

    Two variants share one orchestrator:
      - scripted: load_prompts() walks an ordered prompt set, one turn per unanswered
        prompt, listening only after each prompt has been spoken.
      - live: every inbound agent_message starts a barge-in turn. A turn that ends
        without an answer ends the session (session_ended, then close).

    Outbound messages are only ever enqueued here; a single writer drains `outbound`.
    """

    def __init__(
        self,
        *,
        synthesizer: SpeechSynthesizer,
        recognizer: SpeechRecognizer,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
        metrics: Metrics | None = None,
        observer: SessionObserver | None = None,
        close_when_complete: bool = False,
    ) -> None:
        self.config = config or SessionConfig()
        self.clock = clock or RealClock()
        self.metrics = metrics or Metrics()
        self.observer = observer or SessionObserver()
        self.outbound: asyncio.Queue[OutboundItem] = asyncio.Queue()
        self.close_when_complete = close_when_complete

        self.controller = TurnController(
            clock=self.clock,
            synthesizer=synthesizer,
            recognizer=recognizer,
            config=self.config,
            on_resolved=self._on_turn_resolved,
            on_notice=self._notice,
            metrics=self.metrics,
        )

        self._state = SessionState.DISCONNECTED
        self._prompts: list[Prompt] = []
        self._seen: set[str] = set()
        self._complete = False
        self._live_ids = itertools.count(1)
        self._live_turns: set[str] = set()
        self._started = False
        self._ended = False
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def prompts(self) -> list[Prompt]:
        return list(self._prompts)

    @property
    def ended(self) -> bool:
        return self._ended

    # ---- channel lifecycle ----

    def on_connecting(self) -> None:
        self._set_state(SessionState.CONNECTING)

    def on_channel_open(self) -> None:
        self._set_state(SessionState.CONNECTED)
        if not self._started:
            self._started = True
            self._emit(OutboundStart())

    def on_channel_closed(self) -> None:
        self._set_state(SessionState.DISCONNECTED)
        self.controller.cancel()

    def on_channel_error(self, exc: BaseException | None = None) -> None:
        if exc is not None:
            logger.warning("channel error: %s", exc)
        self._set_state(SessionState.ERROR)
        self.controller.cancel()

    def shutdown(self) -> None:
        """Stop every timer and engine; later inbound messages are dropped. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.controller.cancel()
        logger.info("session shut down")

    # ---- scripted variant ----

    def load_prompts(self, prompts: Iterable[Prompt]) -> None:
        self.controller.cancel()
        self._prompts = prepare_prompts(prompts)
        self._seen.clear()
        self._complete = False
        logger.info("prompts loaded count=%s", len(self._prompts))
        self._advance()

    def _advance(self) -> None:
        if self._closed or self.controller.active:
            return
        prompt = current_prompt(self._prompts)
        if prompt is None:
            if self._prompts and not self._complete:
                self._complete = True
                logger.info("all prompts answered count=%s", len(self._prompts))
                self.observer.on_complete(self.prompts)
                if self.close_when_complete:
                    self.outbound.put_nowait(CloseRequest(reason="complete"))
            return
        if prompt.id in self._seen:
            logger.debug("prompt already spoken this load prompt_id=%s", prompt.id)
            return
        self._seen.add(prompt.id)
        self.observer.on_agent_spoken(prompt.text, prompt.id)
        self.controller.begin(
            prompt.id,
            prompt.text,
            hard_timeout_ms=prompt.hard_timeout_ms,
            barge_in=False,
            listen_delay_ms=self.config.listen_delay_ms,
        )

    def _record_answer(self, result: TurnResult) -> None:
        for i, prompt in enumerate(self._prompts):
            if prompt.id != result.prompt_id:
                continue
            try:
                self._prompts[i] = prompt.record_answer(result.text)
            except AnswerAlreadyRecorded:
                logger.warning("dropping second answer for prompt_id=%s", prompt.id)
                return
            self._emit(OutboundUserMessage(text=result.text, prompt_id=prompt.id))
            self.observer.on_user_spoken(result)
            return
        logger.debug("result for unknown prompt_id=%s dropped", result.prompt_id)

    # ---- live variant ----

    def handle_inbound(self, raw_text: str) -> None:
        """Decode one inbound frame; malformed or unknown frames are counted and dropped."""
        try:
            msg = parse_inbound_json(raw_text)
        except (ValueError, ValidationError) as e:
            self._bad_inbound(e)
            return
        self.on_agent_message(msg)

    def handle_inbound_obj(self, obj: Any) -> None:
        try:
            msg = parse_inbound_obj(obj)
        except ValidationError as e:
            self._bad_inbound(e)
            return
        self.on_agent_message(msg)

    def on_agent_message(self, msg: InboundAgentMessage) -> None:
        if self._closed or self._ended:
            logger.debug("agent message after session end dropped")
            return
        # A new agent message supersedes whatever is being said or heard.
        self.controller.cancel()
        prompt_id = f"agent-{next(self._live_ids)}"
        self._live_turns = {prompt_id}
        self.observer.on_agent_spoken(msg.text, None)
        self.controller.begin(
            prompt_id,
            msg.text,
            audio_data=msg.audio_data,
            barge_in=self.config.barge_in_enabled,
            listen_delay_ms=self.config.live_listen_delay_ms,
        )

    def _end_session(self, result: TurnResult) -> None:
        if self._ended:
            return
        self._ended = True
        if result.error == "permission_denied":
            reason = PERMISSION_REASON
        else:
            reason = _END_REASONS.get(result.outcome, NO_SPEECH_REASON)
        logger.info("ending session outcome=%s reason=%s", result.outcome.value, reason)
        self.metrics.inc(METRIC_KEYS["sessions_ended_total"])
        self._emit(OutboundSessionEnded(reason=reason))
        self.outbound.put_nowait(CloseRequest(reason="session_ended"))

    # ---- shared ----

    def _on_turn_resolved(self, result: TurnResult) -> None:
        if result.prompt_id in self._live_turns:
            self._live_turns.discard(result.prompt_id)
            if result.outcome == TurnOutcome.ANSWERED:
                self._emit(OutboundUserMessage(text=result.text))
                self.observer.on_user_spoken(result)
            else:
                self._end_session(result)
            return
        self._record_answer(result)
        self._advance()

    def _emit(self, event: OutboundEvent) -> None:
        self.outbound.put_nowait(event)
        self.metrics.inc(METRIC_KEYS["outbound_enqueued_total"])

    def _notice(self, text: str) -> None:
        self.observer.on_notice(text)

    def _bad_inbound(self, e: Exception) -> None:
        self.metrics.inc(METRIC_KEYS["inbound_bad_schema_total"])
        logger.warning("inbound frame dropped: %s", e)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info("session state=%s", state.value)
        self.observer.on_state_change(state)

    def drain_outbound(self) -> list[OutboundItem]:
        """Pop everything queued so far without waiting (tests and shutdown)."""
        items: list[OutboundItem] = []
        while True:
            try:
                items.append(self.outbound.get_nowait())
            except asyncio.QueueEmpty:
                return items
