from typing import cast

import inject

from src.relay.application.parser import parse_task
from src.relay.domain.exceptions import ConfigError
from src.relay.domain.models import RecordSchema, Task
from src.relay.domain.repositories import RecordStoreRepository


class TaskQueryService:
    """Read-side access to tasks stored in the external table."""

    def __init__(self) -> None:
        self._store = cast(RecordStoreRepository, inject.instance(RecordStoreRepository))
        self._schema = cast(RecordSchema, inject.instance(RecordSchema))

    def config_status(self) -> dict[str, object]:
        return {"configured": self._store.is_configured(), "detail": self._store.config_status()}

    async def list_records(self, limit: int = 100) -> list[Task]:
        """Return every record, parsed."""
        self._ensure_configured()
        return [parse_task(record, self._schema) for record in await self._store.list_all(limit)]

    async def list_pending(self, limit: int = 100) -> list[Task]:
        """Return records that still need a generation run."""
        self._ensure_configured()
        records = await self._store.list_pending(limit)
        return [parse_task(record, self._schema) for record in records]

    async def get_task(self, task_id: str) -> Task:
        """Return the task identified by ``task_id``."""
        self._ensure_configured()
        return parse_task(await self._store.get_one(task_id), self._schema)

    def _ensure_configured(self) -> None:
        if not self._store.is_configured():
            status = self._store.config_status()
            raise ConfigError([name for name, is_set in status.items() if not is_set])
