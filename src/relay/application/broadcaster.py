from __future__ import annotations

from typing import Protocol

from src.relay.domain.models.events import GenerationEvent


class ProgressBroadcaster(Protocol):
    async def publish(self, event: GenerationEvent) -> None:
        """Relay a generation event to whoever is watching the run."""


class NullBroadcaster:
    async def publish(self, event: GenerationEvent) -> None:
        return None
