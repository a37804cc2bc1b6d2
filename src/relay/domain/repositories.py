from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from src.relay.domain.models.events import GenerationEvent
from src.relay.domain.models.generation import GenerationOutcome
from src.relay.domain.models.task import Task

EventCallback = Callable[[GenerationEvent], Awaitable[None]]


class RecordStoreRepository(Protocol):
    """Repository contract for the external task table."""

    def is_configured(self) -> bool:
        """Return whether every connection parameter is set."""

    def config_status(self) -> dict[str, bool]:
        """Report which connection parameters are set, without their values."""

    async def list_all(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return up to ``limit`` raw records."""

    async def list_pending(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return up to ``limit`` raw records still waiting for generation."""

    async def get_one(self, record_id: str) -> dict[str, Any]:
        """Fetch the raw record identified by ``record_id``."""

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> None:
        """Partially update ``record_id``; fields not given are left untouched."""

    async def resolve_attachment_url(self, file_token: str) -> str:
        """Turn an attachment file token into a downloadable URL."""


class GenerationRepository(Protocol):
    """Repository contract for the upstream generation API."""

    async def invoke(
        self, task: Task, on_event: EventCallback | None = None
    ) -> GenerationOutcome:
        """Run one generation for ``task`` and return the recovered result URLs."""
