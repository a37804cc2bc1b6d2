from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from src.relay.application.guard import SingleFlightGuard
from src.relay.domain.exceptions import TaskNotFoundError
from src.relay.domain.models import GenerationEvent, GenerationOutcome, RecordSchema, ResultUrls, Task
from src.relay.domain.repositories import (
    EventCallback,
    GenerationRepository,
    RecordStoreRepository,
)

SCHEMA = RecordSchema()


def make_record(record_id: str, prompt: str = "a cat on a skateboard", **fields: Any) -> dict[str, Any]:
    """Raw record as the table returns it, keyed by the default column names."""
    cells: dict[str, Any] = {SCHEMA.prompt_field: prompt}
    cells.update(fields)
    return {"record_id": record_id, "fields": cells}


def parse_frames(body: str) -> list[dict[str, Any]]:
    return [
        json.loads(chunk[len("data: "):])
        for chunk in body.split("\n\n")
        if chunk.startswith("data: ")
    ]


class StubRecordStore(RecordStoreRepository):
    """Simple in-memory table replacement for tests."""

    def __init__(self, records: list[dict[str, Any]] | None = None, configured: bool = True) -> None:
        self.records: dict[str, dict[str, Any]] = {
            record["record_id"]: record for record in records or []
        }
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.configured = configured
        self.fail_updates_with: Exception | None = None

    def is_configured(self) -> bool:
        return self.configured

    def config_status(self) -> dict[str, bool]:
        return {
            "app_id_set": self.configured,
            "app_secret_set": self.configured,
            "app_token_set": self.configured,
            "table_id_set": self.configured,
        }

    async def list_all(self, limit: int = 100) -> list[dict[str, Any]]:
        return list(self.records.values())[:limit]

    async def list_pending(self, limit: int = 100) -> list[dict[str, Any]]:
        pending = [
            record
            for record in self.records.values()
            if not record["fields"].get(SCHEMA.generated_flag_field)
        ]
        return pending[:limit]

    async def get_one(self, record_id: str) -> dict[str, Any]:
        if record_id not in self.records:
            raise TaskNotFoundError(record_id)
        return self.records[record_id]

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> None:
        if self.fail_updates_with is not None:
            raise self.fail_updates_with
        self.updates.append((record_id, dict(fields)))
        stored = self.records.setdefault(record_id, {"record_id": record_id, "fields": {}})
        for name, value in fields.items():
            stored["fields"][name] = value.model_dump() if isinstance(value, BaseModel) else value

    async def resolve_attachment_url(self, file_token: str) -> str:
        return f"https://files.example/{file_token}"


class StubGenerator(GenerationRepository):
    """Returns canned outcomes per task id; exceptions in the map are raised."""

    def __init__(
        self,
        outcomes: dict[str, GenerationOutcome | Exception] | None = None,
        default: GenerationOutcome | None = None,
    ) -> None:
        self.outcomes = outcomes or {}
        self.default = default or GenerationOutcome(
            result_urls=ResultUrls(primary_url="https://cdn.example/video/out.mp4")
        )
        self.calls: list[Task] = []

    async def invoke(self, task: Task, on_event: EventCallback | None = None) -> GenerationOutcome:
        self.calls.append(task)
        if on_event is not None:
            await on_event(GenerationEvent.stream(task.id, "rendering"))
        outcome = self.outcomes.get(task.id, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events: list[GenerationEvent] = []

    async def publish(self, event: GenerationEvent) -> None:
        self.events.append(event)

    def frames(self) -> list[dict[str, Any]]:
        return [event.to_frame() for event in self.events]


@pytest.fixture
def env_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Provide environment variables for ApiSettings."""
    monkeypatch.setenv("APP_NAME", "Test Relay")
    monkeypatch.setenv("APP_VERSION", "0.1.0")
    monkeypatch.setenv("BATCH_DELAY_SECONDS", "0")


def _patch_inject_instance(
    monkeypatch: pytest.MonkeyPatch,
    store: StubRecordStore,
    generator: StubGenerator,
    guard: SingleFlightGuard,
) -> Callable[[object], object]:
    """Patch `inject.instance` to always return the stub repositories."""
    import inject

    bindings: dict[object, object] = {
        RecordStoreRepository: store,
        GenerationRepository: generator,
        SingleFlightGuard: guard,
        RecordSchema: SCHEMA,
    }

    def fake_instance(interface: object) -> object:
        if interface in bindings:
            return bindings[interface]
        raise RuntimeError(f"Unexpected dependency request: {interface}")

    monkeypatch.setattr(inject, "instance", fake_instance)
    return fake_instance


@pytest.fixture
def store() -> StubRecordStore:
    return StubRecordStore(
        [
            make_record("rec1"),
            make_record("rec2", prompt="a dog surfing"),
            make_record(
                "recDone",
                prompt="already there",
                **{
                    SCHEMA.status_field: "成功",
                    SCHEMA.generated_flag_field: True,
                    SCHEMA.video_url_field: {"link": "https://cdn.example/done.mp4", "text": "查看视频"},
                },
            ),
        ]
    )


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def api_client(
    env_settings: None,
    monkeypatch: pytest.MonkeyPatch,
    store: StubRecordStore,
    generator: StubGenerator,
):
    """FastAPI test client with routes wired to the stub repositories."""
    guard = SingleFlightGuard()
    _patch_inject_instance(monkeypatch, store, generator, guard)

    # Reload modules so module-level singletons pick up the patched injector.
    routes_module = importlib.reload(importlib.import_module("src.relay.presentation.routes"))

    app = FastAPI()
    app.include_router(routes_module.router)
    client = TestClient(app)
    return client, store, generator, guard
