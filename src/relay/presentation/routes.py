from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from src.relay.application.controller import TaskStatusController
from src.relay.application.services import TaskQueryService
from src.relay.domain.exceptions import (
    BusyError,
    ConfigError,
    RelayError,
    TaskNotFoundError,
    UpstreamError,
)
from src.relay.domain.models import GenerationEvent, Task
from src.relay.presentation.sse import SseEventChannel, sse_response
from src.setup.api_config import get_api_settings

router = APIRouter(prefix="/api", tags=["tasks"])
logger = logging.getLogger(__name__)

# Instantiate services once (simple DI)
_settings = get_api_settings()
_query_service = TaskQueryService()
_controller = TaskStatusController(batch_delay=_settings.BATCH_DELAY_SECONDS)


class RecordsResponse(BaseModel):
    records: list[Task]


class TasksResponse(BaseModel):
    tasks: list[Task]


class TaskResponse(BaseModel):
    task: Task


class StatusResponse(BaseModel):
    configured: bool
    detail: dict[str, bool] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=500, description="Maximum tasks to run.")


def _to_http(exc: RelayError) -> HTTPException:
    if isinstance(exc, ConfigError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, TaskNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BusyError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _ensure_can_start() -> None:
    status = _query_service.config_status()
    if not status["configured"]:
        raise HTTPException(status_code=503, detail="Record store is not configured.")
    if _controller.guard.busy:
        raise HTTPException(
            status_code=409, detail=f"'{_controller.guard.holder}' is still running."
        )


@router.get("/status", response_model=StatusResponse, summary="Record store configuration")
def get_status():
    return _query_service.config_status()


@router.get("/records", response_model=RecordsResponse, summary="List every task record")
async def list_records(limit: int = Query(default=_settings.LIST_LIMIT, ge=1, le=500)):
    try:
        return RecordsResponse(records=await _query_service.list_records(limit))
    except RelayError as exc:
        raise _to_http(exc) from exc


@router.get("/tasks", response_model=TasksResponse, summary="List pending tasks")
async def list_tasks(limit: int = Query(default=_settings.LIST_LIMIT, ge=1, le=500)):
    try:
        return TasksResponse(tasks=await _query_service.list_pending(limit))
    except RelayError as exc:
        raise _to_http(exc) from exc


@router.get("/tasks/{task_id}", response_model=TaskResponse, summary="Fetch one task")
async def get_task(task_id: str):
    try:
        return TaskResponse(task=await _query_service.get_task(task_id))
    except RelayError as exc:
        raise _to_http(exc) from exc


@router.post(
    "/generate/batch",
    summary="Generate every pending task",
    description=(
        "Streams server-sent events. Frames are JSON objects with a `type` of "
        "`log`, `stream`, `result` or `error`; the last frame is an aggregate "
        "`{type: 'result', total, successCount, failCount}`."
    ),
)
async def generate_batch(body: BatchRequest | None = None):
    _ensure_can_start()
    limit = body.limit if body and body.limit else _settings.BATCH_DEFAULT_LIMIT
    channel = SseEventChannel()

    async def job() -> None:
        try:
            batch = await _controller.run_batch(limit, channel)
        except RelayError as exc:
            logger.warning("Batch rejected", extra={"error": str(exc)})
            await channel.publish(GenerationEvent.error(None, str(exc)))
            return
        await channel.publish(
            GenerationEvent.result(
                None,
                success=batch.fail_count == 0,
                total=batch.total,
                successCount=batch.success_count,
                failCount=batch.fail_count,
                skippedCount=batch.skipped_count,
            )
        )

    return sse_response(channel.frames(job()))


@router.post(
    "/generate/{task_id}",
    summary="Generate one task",
    description=(
        "Streams server-sent events ending with `{type: 'result', success: true, ...urls}` "
        "or `{type: 'error', message}`."
    ),
)
async def generate_task(task_id: str):
    _ensure_can_start()
    channel = SseEventChannel()

    async def job() -> None:
        try:
            await _controller.run_task(task_id, channel)
        except RelayError as exc:
            logger.warning("Run rejected", extra={"task_id": task_id, "error": str(exc)})
            await channel.publish(GenerationEvent.error(task_id, str(exc)))

    return sse_response(channel.frames(job()))
