from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from .channel import Channel
from .errors import ChannelClosed, ChannelError
from .models import Prompt, SessionState
from .orchestrator import CloseRequest, SessionOrchestrator
from .protocol import dumps_outbound

logger = logging.getLogger(__name__)


class VoiceSession:
    """
    Connects a SessionOrchestrator to a Channel for the lifetime of one session.

    One reader task feeds inbound frames to the orchestrator; one writer task is the
    only code that ever sends on the channel. The session ends as soon as either task
    finishes. A failed connect is reported as SessionState.ERROR and not retried.
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        connect: Callable[[], Awaitable[Channel]],
        *,
        prompts: Optional[Iterable[Prompt]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self._connect = connect
        self._prompts = list(prompts) if prompts is not None else None
        self.channel: Optional[Channel] = None

    async def run(self) -> SessionState:
        orch = self.orchestrator
        orch.on_connecting()
        try:
            channel = await self._connect()
        except ChannelError as e:
            orch.on_channel_error(e)
            orch.shutdown()
            return orch.state
        self.channel = channel

        orch.on_channel_open()
        if self._prompts is not None:
            orch.load_prompts(self._prompts)

        reader_task = asyncio.create_task(self._reader(channel))
        writer_task = asyncio.create_task(self._writer(channel))
        failure: Optional[BaseException] = None
        try:
            done, pending = await asyncio.wait({reader_task, writer_task}, return_when=asyncio.FIRST_COMPLETED)
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for t in done:
                exc = t.exception()
                if exc is not None and not isinstance(exc, ChannelClosed):
                    failure = exc
        finally:
            orch.shutdown()
            if channel.is_open:
                try:
                    await channel.close()
                except ChannelError as e:
                    logger.debug("close after session end failed: %s", e)

        if failure is not None:
            logger.error("session failed: %s", failure)
            orch.on_channel_error(failure)
        else:
            orch.on_channel_closed()
        return orch.state

    async def _reader(self, channel: Channel) -> None:
        while True:
            try:
                raw = await channel.recv_text()
            except ChannelClosed:
                logger.info("channel closed by peer")
                return
            if not channel.is_open:
                return
            self.orchestrator.handle_inbound(raw)

    async def _writer(self, channel: Channel) -> None:
        while True:
            item = await self.orchestrator.outbound.get()
            if isinstance(item, CloseRequest):
                logger.info("closing channel reason=%s", item.reason)
                await channel.close(code=item.code, reason=item.reason)
                return
            await channel.send_text(dumps_outbound(item))
