from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Coroutine
from typing import Any

from fastapi.responses import StreamingResponse

from src.relay.application.broadcaster import ProgressBroadcaster
from src.relay.domain.models import GenerationEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(event: GenerationEvent) -> str:
    return f"data: {json.dumps(event.to_frame(), ensure_ascii=False)}\n\n"


class SseEventChannel(ProgressBroadcaster):
    """Queue between one generation run and the HTTP response streaming it."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[GenerationEvent | None] = asyncio.Queue()

    async def publish(self, event: GenerationEvent) -> None:
        await self._queue.put(event)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def frames(self, job: Coroutine[Any, Any, None]) -> AsyncIterator[str]:
        runner = asyncio.create_task(self._run(job))
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                yield encode_frame(event)
        finally:
            if not runner.done():
                # Client went away; the run is abandoned where it stands.
                logger.warning("Event stream closed before the run finished")
                runner.cancel()

    async def _run(self, job: Coroutine[Any, Any, None]) -> None:
        try:
            await job
        except Exception as exc:
            logger.exception("Generation job crashed")
            await self.publish(GenerationEvent.error(None, str(exc) or exc.__class__.__name__))
        finally:
            self.close()


def sse_response(frames: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
