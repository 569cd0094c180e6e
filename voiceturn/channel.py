from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import websockets

from .errors import ChannelClosed, ChannelError

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Ordered duplex text channel with an open/closed status."""

    @property
    def is_open(self) -> bool: ...

    async def recv_text(self) -> str: ...

    async def send_text(self, text: str) -> None: ...

    async def close(self, *, code: int = 1000, reason: str = "") -> None: ...


class WebsocketChannel:
    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._open = True

    @classmethod
    async def connect(cls, url: str, *, open_timeout_ms: int = 5000) -> "WebsocketChannel":
        try:
            ws = await websockets.connect(url, open_timeout=open_timeout_ms / 1000.0, close_timeout=2)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ChannelError(f"could not connect to {url}: {e}") from e
        logger.info("channel open url=%s", url)
        return cls(ws)

    @property
    def is_open(self) -> bool:
        return self._open

    async def recv_text(self) -> str:
        try:
            raw = await self._ws.recv()
        except websockets.exceptions.ConnectionClosed as e:
            self._open = False
            raise ChannelClosed(str(e)) from e
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def send_text(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except websockets.exceptions.ConnectionClosed as e:
            self._open = False
            raise ChannelClosed(str(e)) from e

    async def close(self, *, code: int = 1000, reason: str = "") -> None:
        if not self._open:
            return
        self._open = False
        await self._ws.close(code=code, reason=reason)
