from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .protocol import (
    InboundAgentMessage,
    OutboundSessionEnded,
    OutboundStart,
    OutboundUserMessage,
    dumps_inbound,
    parse_outbound_json,
)

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT: tuple[str, ...] = (
    "Hi, thanks for joining. What's your name?",
    "What brings you here today?",
    "Is there anything else you'd like to add?",
)


def create_app(script: Optional[Iterable[str]] = None) -> FastAPI:
    """
    Development agent: plays the agent side of the session protocol.

    It answers `start` with the first scripted agent_message and every user_message
    with the next one, and closes once the script runs out or the client reports
    session_ended.
    """
    lines = tuple(script) if script is not None else DEFAULT_SCRIPT
    app = FastAPI(title="voiceturn dev agent")
    app.state.transcripts = []

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.websocket("/ws")
    async def agent_ws(ws: WebSocket) -> None:
        await ws.accept()
        heard: list[str] = []
        app.state.transcripts.append(heard)
        next_line = 0

        async def say_next() -> bool:
            nonlocal next_line
            if next_line >= len(lines):
                return False
            msg = InboundAgentMessage(type="agent_message", text=lines[next_line])
            next_line += 1
            await ws.send_text(dumps_inbound(msg))
            return True

        try:
            while True:
                raw = await ws.receive_text()
                try:
                    msg = parse_outbound_json(raw)
                except (ValueError, ValidationError) as e:
                    logger.warning("dev agent dropped frame: %s", e)
                    continue
                if isinstance(msg, OutboundStart):
                    if next_line == 0 and not await say_next():
                        break
                elif isinstance(msg, OutboundUserMessage):
                    heard.append(msg.text)
                    if not await say_next():
                        break
                elif isinstance(msg, OutboundSessionEnded):
                    logger.info("client ended session: %s", msg.reason)
                    break
        except WebSocketDisconnect:
            return
        await ws.close()

    return app


app = create_app()
