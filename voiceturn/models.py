from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .errors import AnswerAlreadyRecorded


class TurnOutcome(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    NO_RESPONSE = "no_response"
    UNINTELLIGIBLE = "unintelligible"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self != TurnOutcome.PENDING


SENTINELS: dict[TurnOutcome, str] = {
    TurnOutcome.NO_RESPONSE: "[No response]",
    TurnOutcome.UNINTELLIGIBLE: "[Unintelligible]",
    TurnOutcome.TIMED_OUT: "[Timeout]",
}


class TurnPhase(str, Enum):
    PROMPTING = "prompting"
    LISTENING = "listening"
    REPROMPTING = "reprompting"
    WAITING = "waiting"
    RESOLVED = "resolved"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Prompt(BaseModel):
    """
    One agent prompt and, once its turn resolves, the user's answer.

    Accepts the interview payload field names (agent_question / user_answer / timeout in
    seconds) as well as the canonical ones.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    text: str = Field(validation_alias=AliasChoices("text", "agent_question"))
    answer: str = Field(default="", validation_alias=AliasChoices("answer", "user_answer"))
    hard_timeout_ms: Optional[int] = Field(default=None, ge=1)
    order: int = 0
    weight: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _timeout_seconds(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("hard_timeout_ms") is None and data.get("timeout"):
            data = dict(data)
            data["hard_timeout_ms"] = int(float(data["timeout"]) * 1000)
        return data

    @property
    def answered(self) -> bool:
        return bool(self.answer)

    def record_answer(self, text: str) -> "Prompt":
        """Return a copy carrying `text` as the answer; a prompt is answered once."""
        if self.answered:
            raise AnswerAlreadyRecorded(f"prompt {self.id!r} already answered")
        return self.model_copy(update={"answer": text})


def prepare_prompts(prompts: Iterable[Prompt]) -> list[Prompt]:
    """Dedupe by id (first occurrence wins), then stable-sort ascending by order."""
    seen: set[str] = set()
    unique: list[Prompt] = []
    for p in prompts:
        if p.id in seen:
            continue
        seen.add(p.id)
        unique.append(p)
    return sorted(unique, key=lambda p: p.order)


def current_prompt(prompts: Iterable[Prompt]) -> Prompt | None:
    return next((p for p in prompts if not p.answered), None)


@dataclass(slots=True)
class Turn:
    turn_id: int
    prompt_id: str
    started_ms: int
    barge_in: bool
    phase: TurnPhase = TurnPhase.PROMPTING
    attempt: int = 0
    attempt_id: int = 0
    outcome: TurnOutcome = TurnOutcome.PENDING
    # Per-attempt flags, reset by each new recognizer attempt.
    handled: bool = True
    heard_result: bool = False
    heard_no_match: bool = False
    # Failure tally across attempts.
    silent_attempts: int = 0
    no_match_attempts: int = 0
    monitor_ended: bool = False
    audio_active: bool = False


@dataclass(frozen=True, slots=True)
class TurnResult:
    turn_id: int
    prompt_id: str
    outcome: TurnOutcome
    text: str
    attempts: int
    duration_ms: int
    barged_in: bool = False
    error: Optional[str] = None

    @property
    def answered(self) -> bool:
        return self.outcome == TurnOutcome.ANSWERED
