from __future__ import annotations

import asyncio
import json

from voiceturn.metrics import METRIC_KEYS
from voiceturn.models import Prompt, SessionState, TurnOutcome
from voiceturn.orchestrator import NO_SPEECH_REASON, PERMISSION_REASON, CloseRequest
from voiceturn.protocol import InboundAgentMessage, OutboundSessionEnded, OutboundStart, OutboundUserMessage
from voiceturn.speech.scripted import ends, fails, says

from tests.harness.session_harness import SessionHarness


def _agent(text: str, **extra: object) -> str:
    return json.dumps({"type": "agent_message", "text": text, **extra})


def test_three_silent_prompts_resolve_in_order_with_three_answers() -> None:
    async def _run() -> None:
        h = SessionHarness.build([ends(at_ms=1500)] * 9, max_attempts=3)
        h.orch.load_prompts(
            [
                Prompt(id="C", text="Third?", order=3),
                Prompt(id="A", text="First?", order=1),
                Prompt(id="B", text="Second?", order=2),
                Prompt(id="A", text="Duplicate first?", order=0),
            ]
        )

        await h.clock.advance(30_000)

        msgs = h.outbound()
        assert all(isinstance(m, OutboundUserMessage) for m in msgs)
        assert [(m.prompt_id, m.text) for m in msgs] == [
            ("A", "[No response]"),
            ("B", "[No response]"),
            ("C", "[No response]"),
        ]
        assert [r.outcome for r in h.observer.user] == [TurnOutcome.NO_RESPONSE] * 3
        assert [r.attempts for r in h.observer.user] == [3, 3, 3]
        assert h.recog.starts == 9
        assert [p.answer for p in h.orch.prompts] == ["[No response]"] * 3
        assert len(h.observer.completed) == 1
        assert [text for text, _ in h.observer.agent] == ["First?", "Second?", "Third?"]

    asyncio.run(_run())


def test_scripted_answers_are_recorded_on_prompts() -> None:
    async def _run() -> None:
        h = SessionHarness.build([says("Ada"), says("Blue")])
        h.orch.load_prompts([Prompt(id="name", text="Name?"), Prompt(id="color", text="Color?", order=1)])

        await h.clock.advance(10_000)

        assert {p.id: p.answer for p in h.orch.prompts} == {"name": "Ada", "color": "Blue"}
        msgs = h.outbound()
        assert [m.prompt_id for m in msgs] == ["name", "color"]
        # Scripted prompts never listen while speaking.
        assert h.recog.starts == 2

    asyncio.run(_run())


def test_already_answered_prompts_are_skipped() -> None:
    async def _run() -> None:
        h = SessionHarness.build([says("second")])
        h.orch.load_prompts([Prompt(id="a", text="One?", answer="done"), Prompt(id="b", text="Two?", order=1)])

        await h.clock.advance(5000)

        assert h.synth.texts == ["Two?"]
        assert [m.prompt_id for m in h.outbound()] == ["b"]

    asyncio.run(_run())


def test_replacing_the_prompt_set_cancels_and_resets_seen() -> None:
    async def _run() -> None:
        h = SessionHarness.build([])
        prompts = [Prompt(id="a", text="One?")]
        h.orch.load_prompts(prompts)
        await h.clock.advance(500)

        h.orch.load_prompts(prompts)
        await h.clock.advance(500)

        assert h.synth.texts == ["One?", "One?"]
        assert h.outbound() == []

    asyncio.run(_run())


def test_per_prompt_timeout_applies() -> None:
    async def _run() -> None:
        h = SessionHarness.build([])
        h.orch.load_prompts([Prompt.model_validate({"id": "q", "agent_question": "Quick?", "timeout": 2})])

        await h.clock.advance(2500)

        assert [m.text for m in h.outbound()] == ["[Timeout]"]

    asyncio.run(_run())


def test_start_is_emitted_once_per_session() -> None:
    async def _run() -> None:
        h = SessionHarness.build()
        h.orch.on_connecting()
        h.orch.on_channel_open()
        h.orch.on_channel_open()

        out = h.outbound()
        assert len(out) == 1 and isinstance(out[0], OutboundStart)
        assert h.orch.state == SessionState.CONNECTED
        assert h.observer.states == [SessionState.CONNECTING, SessionState.CONNECTED]

    asyncio.run(_run())


def test_live_answer_is_sent_without_prompt_id() -> None:
    async def _run() -> None:
        h = SessionHarness.build([says("I'm doing well")])
        h.orch.handle_inbound(_agent("How are you?"))

        await h.clock.advance(4000)

        msgs = h.outbound()
        assert len(msgs) == 1
        assert isinstance(msgs[0], OutboundUserMessage)
        assert msgs[0].text == "I'm doing well"
        assert msgs[0].prompt_id is None
        assert not h.orch.ended

    asyncio.run(_run())


def test_live_barge_in_cuts_the_agent_off() -> None:
    async def _run() -> None:
        h = SessionHarness.build([says("yes", start_ms=200, speech_ms=300)], speak_ms=5000)
        h.orch.on_agent_message(InboundAgentMessage(type="agent_message", text="Would you like to hear all the details"))

        await h.clock.advance(700)

        assert [m.text for m in h.outbound()] == ["yes"]
        assert h.metrics.get(METRIC_KEYS["barge_in_total"]) == 1
        assert h.observer.user[0].barged_in
        assert not h.orch.controller.speaking

    asyncio.run(_run())


def test_live_audio_data_is_passed_to_the_synthesizer() -> None:
    async def _run() -> None:
        h = SessionHarness.build([])
        h.orch.handle_inbound(_agent("Hello", audioData="UklGRg=="))

        assert h.synth.spoken == [("Hello", "UklGRg==")]

    asyncio.run(_run())


def test_live_exhaustion_ends_the_session_and_closes() -> None:
    async def _run() -> None:
        h = SessionHarness.build([], max_attempts=2)
        h.orch.handle_inbound(_agent("Are you there?"))

        await h.clock.advance(8000)

        out = h.outbound()
        assert len(out) == 2
        assert isinstance(out[0], OutboundSessionEnded)
        assert out[0].reason == NO_SPEECH_REASON
        assert isinstance(out[1], CloseRequest)
        assert h.orch.ended
        assert h.metrics.get(METRIC_KEYS["sessions_ended_total"]) == 1

        # Nothing further is started once the session has ended.
        h.orch.handle_inbound(_agent("Hello again?"))
        assert not h.orch.controller.active
        assert h.outbound() == []

    asyncio.run(_run())


def test_live_permission_denied_ends_the_session() -> None:
    async def _run() -> None:
        h = SessionHarness.build([fails("not-allowed", at_ms=10)])
        h.orch.handle_inbound(_agent("Hi!"))

        await h.clock.advance(100)

        out = h.outbound()
        assert isinstance(out[0], OutboundSessionEnded)
        assert out[0].reason == PERMISSION_REASON
        assert isinstance(out[1], CloseRequest)
        assert len(h.observer.notices) == 1

    asyncio.run(_run())


def test_new_agent_message_supersedes_the_current_turn() -> None:
    async def _run() -> None:
        h = SessionHarness.build([[], says("the second one")], speak_ms=1000)
        h.orch.handle_inbound(_agent("First?"))
        await h.clock.advance(500)

        h.orch.handle_inbound(_agent("Actually, second?"))
        await h.clock.advance(4000)

        assert [m.text for m in h.outbound()] == ["the second one"]
        assert h.synth.texts == ["First?", "Actually, second?"]

    asyncio.run(_run())


def test_malformed_inbound_frames_are_counted_and_dropped() -> None:
    async def _run() -> None:
        h = SessionHarness.build()
        h.orch.handle_inbound("not json")
        h.orch.handle_inbound(json.dumps({"type": "mystery"}))
        h.orch.handle_inbound(json.dumps({"type": "agent_message"}))
        h.orch.handle_inbound_obj({"type": "agent_message", "text": 5})

        assert h.metrics.get(METRIC_KEYS["inbound_bad_schema_total"]) == 4
        assert not h.orch.controller.active
        assert h.outbound() == []

    asyncio.run(_run())


def test_shutdown_is_idempotent_and_drops_later_messages() -> None:
    async def _run() -> None:
        h = SessionHarness.build([])
        h.orch.handle_inbound(_agent("Hi"))
        await h.clock.advance(1500)
        assert h.orch.controller.listening

        h.orch.shutdown()
        h.orch.shutdown()
        assert not h.orch.controller.active
        assert h.clock.pending() == 0

        h.orch.handle_inbound(_agent("Still there?"))
        assert h.synth.texts == ["Hi"]

    asyncio.run(_run())


def test_channel_close_cancels_the_active_turn() -> None:
    async def _run() -> None:
        h = SessionHarness.build([])
        h.orch.on_channel_open()
        h.orch.load_prompts([Prompt(id="a", text="One?")])
        await h.clock.advance(1500)

        h.orch.on_channel_closed()

        assert h.orch.state == SessionState.DISCONNECTED
        assert not h.orch.controller.active
        await h.clock.advance(30_000)
        assert [type(m) for m in h.outbound()] == [OutboundStart]

    asyncio.run(_run())


def test_interview_completion_can_close_the_channel() -> None:
    async def _run() -> None:
        h = SessionHarness.build([says("ok")], close_when_complete=True)
        h.orch.load_prompts([Prompt(id="only", text="Anything else?")])

        await h.clock.advance(5000)

        out = h.outbound()
        assert isinstance(out[0], OutboundUserMessage)
        assert isinstance(out[-1], CloseRequest)
        assert out[-1].reason == "complete"

    asyncio.run(_run())
