from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from pydantic import TypeAdapter

from .channel import WebsocketChannel
from .clock import RealClock
from .config import SessionConfig
from .logs import configure_logging
from .models import Prompt, SessionState, TurnResult
from .orchestrator import SessionObserver, SessionOrchestrator
from .session import VoiceSession
from .speech.console import ConsoleRecognizer, ConsoleSynthesizer

logger = logging.getLogger(__name__)

_prompt_list = TypeAdapter(list[Prompt])


class ConsoleObserver(SessionObserver):
    def on_state_change(self, state: SessionState) -> None:
        print(f"[{state.value}]", file=sys.stderr)

    def on_user_spoken(self, result: TurnResult) -> None:
        print(f"user> {result.text}")

    def on_notice(self, text: str) -> None:
        print(f"! {text}", file=sys.stderr)

    def on_complete(self, prompts: list[Prompt]) -> None:
        print(f"[all {len(prompts)} prompts answered]", file=sys.stderr)


def load_prompts_file(path: Path) -> list[Prompt]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("prompts", payload.get("questions", []))
    return _prompt_list.validate_python(payload)


def _config_from_args(args: argparse.Namespace) -> SessionConfig:
    cfg = SessionConfig.from_env()
    overrides = {}
    if getattr(args, "url", None):
        overrides["ws_url"] = args.url
    if getattr(args, "max_attempts", None):
        overrides["max_attempts"] = args.max_attempts
    if getattr(args, "silence_ms", None):
        overrides["silence_ms"] = args.silence_ms
    if getattr(args, "no_barge_in", False):
        overrides["barge_in_enabled"] = False
    return replace(cfg, **overrides) if overrides else cfg


async def run_session(cfg: SessionConfig, prompts: Optional[list[Prompt]] = None) -> SessionState:
    clock = RealClock()
    recognizer = ConsoleRecognizer()
    orch = SessionOrchestrator(
        synthesizer=ConsoleSynthesizer(clock, ms_per_char=cfg.pace_ms_per_char),
        recognizer=recognizer,
        config=cfg,
        clock=clock,
        observer=ConsoleObserver(),
        close_when_complete=prompts is not None,
    )
    session = VoiceSession(
        orch,
        lambda: WebsocketChannel.connect(cfg.ws_url, open_timeout_ms=cfg.ws_open_timeout_ms),
        prompts=prompts,
    )
    try:
        return await session.run()
    finally:
        await recognizer.close()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="voiceturn", description="Turn-taking voice session runner.")
    sub = ap.add_subparsers(dest="command", required=True)

    live = sub.add_parser("live", help="answer a live agent over the websocket channel")
    live.add_argument("--url", default=None, help="agent websocket url (default: VOICETURN_WS_URL)")
    live.add_argument("--max-attempts", type=int, default=None)
    live.add_argument("--silence-ms", type=int, default=None)
    live.add_argument("--no-barge-in", action="store_true")

    interview = sub.add_parser("interview", help="walk a scripted prompt list")
    interview.add_argument("--url", default=None)
    interview.add_argument("--prompts", type=Path, required=True, help="JSON list of prompts")
    interview.add_argument("--max-attempts", type=int, default=None)
    interview.add_argument("--silence-ms", type=int, default=None)

    server = sub.add_parser("agent-server", help="serve the development agent")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", type=int, default=8080)
    return ap.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    cfg = _config_from_args(args)
    configure_logging(cfg)

    if args.command == "agent-server":
        import uvicorn

        uvicorn.run("voiceturn.agent_server:app", host=args.host, port=args.port, log_level=cfg.log_level.lower())
        return 0

    prompts = load_prompts_file(args.prompts) if args.command == "interview" else None
    try:
        state = asyncio.run(run_session(cfg, prompts))
    except KeyboardInterrupt:
        return 130
    return 1 if state == SessionState.ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
