from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    LOG = "log"
    STREAM = "stream"
    RESULT = "result"
    ERROR = "error"


class GenerationEvent(BaseModel):
    type: EventType
    task_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def log(cls, task_id: str | None, message: str) -> GenerationEvent:
        return cls(type=EventType.LOG, task_id=task_id, payload={"message": message})

    @classmethod
    def stream(cls, task_id: str | None, content: str) -> GenerationEvent:
        return cls(type=EventType.STREAM, task_id=task_id, payload={"content": content})

    @classmethod
    def result(cls, task_id: str | None, **fields: Any) -> GenerationEvent:
        return cls(type=EventType.RESULT, task_id=task_id, payload=fields)

    @classmethod
    def error(cls, task_id: str | None, message: str) -> GenerationEvent:
        return cls(type=EventType.ERROR, task_id=task_id, payload={"message": message})

    def to_frame(self) -> dict[str, Any]:
        frame: dict[str, Any] = {"type": self.type.value}
        if self.task_id is not None:
            frame["task_id"] = self.task_id
        frame.update(self.payload)
        return frame
