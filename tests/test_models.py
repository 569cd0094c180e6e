from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from voiceturn.cli import load_prompts_file
from voiceturn.errors import AnswerAlreadyRecorded
from voiceturn.models import SENTINELS, Prompt, TurnOutcome, current_prompt, prepare_prompts


def test_prepare_prompts_dedupes_first_wins_and_sorts_by_order() -> None:
    prompts = prepare_prompts(
        [
            Prompt(id="b", text="B", order=2),
            Prompt(id="a", text="A", order=1),
            Prompt(id="b", text="B again", order=0),
            Prompt(id="c", text="C", order=1),
        ]
    )
    assert [(p.id, p.text) for p in prompts] == [("a", "A"), ("c", "C"), ("b", "B")]


def test_current_prompt_is_first_unanswered() -> None:
    prompts = [Prompt(id="a", text="A", answer="yes"), Prompt(id="b", text="B"), Prompt(id="c", text="C")]
    cur = current_prompt(prompts)
    assert cur is not None and cur.id == "b"
    assert current_prompt([Prompt(id="a", text="A", answer="yes")]) is None


def test_answer_is_recorded_exactly_once() -> None:
    p = Prompt(id="a", text="A?")
    answered = p.record_answer("sure")
    assert answered.answer == "sure"
    assert answered.answered
    assert not p.answered

    with pytest.raises(AnswerAlreadyRecorded):
        answered.record_answer("again")


def test_prompt_fields_are_frozen() -> None:
    p = Prompt(id="a", text="A?")
    with pytest.raises(ValidationError):
        p.text = "changed"  # type: ignore[misc]


def test_prompt_accepts_interview_field_names() -> None:
    p = Prompt.model_validate(
        {"id": 7, "agent_question": "Where do you live?", "user_answer": "", "timeout": 12.5, "weight": 2}
    )
    assert p.id == "7"
    assert p.text == "Where do you live?"
    assert p.hard_timeout_ms == 12_500
    assert p.weight == 2.0
    assert not p.answered


def test_prompt_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValidationError):
        Prompt(id="a", text="A", hard_timeout_ms=0)


def test_sentinels_cover_every_failure_outcome() -> None:
    assert SENTINELS == {
        TurnOutcome.NO_RESPONSE: "[No response]",
        TurnOutcome.UNINTELLIGIBLE: "[Unintelligible]",
        TurnOutcome.TIMED_OUT: "[Timeout]",
    }
    assert not TurnOutcome.PENDING.terminal
    assert all(o.terminal for o in TurnOutcome if o != TurnOutcome.PENDING)


def test_prompts_file_loads_and_prepares() -> None:
    prompts = prepare_prompts(load_prompts_file(Path(__file__).parent / "fixtures" / "prompts.json"))
    assert [p.id for p in prompts] == ["q1", "q2", "q3"]
    assert prompts[0].text == "What's your name?"
    assert prompts[1].hard_timeout_ms == 20_000
