from src.relay.domain.models.events import EventType, GenerationEvent
from src.relay.domain.models.generation import (
    BatchRunResult,
    GenerationOutcome,
    LinkValue,
    TaskRunResult,
)
from src.relay.domain.models.record_schema import RecordSchema
from src.relay.domain.models.result_urls import ResultUrls, UrlSlot
from src.relay.domain.models.task import Task
from src.relay.domain.models.task_state import GenerationType, TaskState

__all__ = [
    "Task",
    "TaskState",
    "GenerationType",
    "ResultUrls",
    "UrlSlot",
    "RecordSchema",
    "LinkValue",
    "GenerationOutcome",
    "TaskRunResult",
    "BatchRunResult",
    "EventType",
    "GenerationEvent",
]
