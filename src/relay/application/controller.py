from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import inject

from src.relay.application.broadcaster import NullBroadcaster, ProgressBroadcaster
from src.relay.application.guard import SingleFlightGuard
from src.relay.application.parser import build_status_fields, parse_task
from src.relay.domain.exceptions import (
    BusyError,
    ConfigError,
    ExtractionError,
    RelayError,
    TaskValidationError,
)
from src.relay.domain.models import (
    BatchRunResult,
    GenerationEvent,
    RecordSchema,
    Task,
    TaskRunResult,
    TaskState,
)
from src.relay.domain.repositories import GenerationRepository, RecordStoreRepository

logger = logging.getLogger(__name__)
BATCH_OWNER = "batch"


class TaskStatusController:
    """Drives a task through pending -> in_progress -> success | failed.

    Every run holds the shared :class:`SingleFlightGuard` for its whole
    duration. Failures after the task is loaded are written back to the
    store as ``failed`` and reported in the returned :class:`TaskRunResult`.
    """

    def __init__(
        self,
        store: RecordStoreRepository | None = None,
        generator: GenerationRepository | None = None,
        guard: SingleFlightGuard | None = None,
        schema: RecordSchema | None = None,
        batch_delay: float = 2.0,
    ) -> None:
        self._store = store or inject.instance(RecordStoreRepository)
        self._generator = generator or inject.instance(GenerationRepository)
        self._guard = guard or inject.instance(SingleFlightGuard)
        self._schema = schema or inject.instance(RecordSchema)
        self._batch_delay = batch_delay

    @property
    def guard(self) -> SingleFlightGuard:
        return self._guard

    async def run_task(
        self, task_id: str, broadcaster: ProgressBroadcaster | None = None
    ) -> TaskRunResult:
        """Generate one task. Raises ``BusyError`` if another run holds the slot."""
        if not self._guard.try_acquire(task_id):
            raise BusyError(task_id, self._guard.holder)
        try:
            self._ensure_configured()
            return await self._execute(task_id, broadcaster or NullBroadcaster())
        finally:
            self._guard.release()

    async def run_batch(
        self, limit: int = 100, broadcaster: ProgressBroadcaster | None = None
    ) -> BatchRunResult:
        """Generate every pending task in order, one at a time."""
        if not self._guard.try_acquire(BATCH_OWNER):
            raise BusyError(BATCH_OWNER, self._guard.holder)
        broadcaster = broadcaster or NullBroadcaster()
        try:
            self._ensure_configured()
            records = await self._store.list_pending(limit)
            tasks = [parse_task(record, self._schema) for record in records]
            runnable = [task for task in tasks if task.prompt]
            if len(runnable) != len(tasks):
                logger.info(
                    "Skipping pending records without prompt",
                    extra={"count": len(tasks) - len(runnable)},
                )

            batch = BatchRunResult(total=len(runnable))
            await broadcaster.publish(
                GenerationEvent.log(None, f"Found {len(runnable)} pending task(s)")
            )
            for index, task in enumerate(runnable, start=1):
                await broadcaster.publish(
                    GenerationEvent.log(task.id, f"[{index}/{len(runnable)}] {task.prompt[:30]}")
                )
                try:
                    result = await self._execute(task.id, broadcaster)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Batch task crashed", extra={"task_id": task.id})
                    result = TaskRunResult(task_id=task.id, success=False, error=str(exc))
                    await broadcaster.publish(GenerationEvent.error(task.id, str(exc)))
                batch.results.append(result)
                if result.success:
                    batch.success_count += 1
                    batch.skipped_count += int(result.skipped)
                else:
                    batch.fail_count += 1
                if index < len(runnable) and self._batch_delay > 0:
                    await asyncio.sleep(self._batch_delay)

            logger.info(
                "Batch finished",
                extra={
                    "total": batch.total,
                    "success": batch.success_count,
                    "failed": batch.fail_count,
                },
            )
            return batch
        finally:
            self._guard.release()

    def _ensure_configured(self) -> None:
        if not self._store.is_configured():
            status = self._store.config_status()
            raise ConfigError([name for name, is_set in status.items() if not is_set])

    async def _execute(self, task_id: str, broadcaster: ProgressBroadcaster) -> TaskRunResult:
        record = await self._store.get_one(task_id)
        task = parse_task(record, self._schema)

        if task.status is TaskState.SUCCESS and task.result_urls.any():
            logger.info("Task already generated, skipping", extra={"task_id": task_id})
            result = TaskRunResult(
                task_id=task_id, success=True, skipped=True, result_urls=task.result_urls
            )
            await broadcaster.publish(self._result_event(result))
            return result

        await broadcaster.publish(GenerationEvent.log(task_id, f"Starting generation with {task.model}"))
        try:
            if not task.prompt:
                raise TaskValidationError(task_id, "prompt is empty")
            await self._write(task, TaskState.IN_PROGRESS)
            task = await self._resolve_reference(task)
            outcome = await self._generator.invoke(task, on_event=broadcaster.publish)
            if not outcome.result_urls.any():
                raise ExtractionError(outcome.transcript[-500:])
            await self._write(task, TaskState.SUCCESS, result_urls=outcome.result_urls)
        except Exception as exc:
            return await self._fail(task, exc, broadcaster)

        result = TaskRunResult(task_id=task_id, success=True, result_urls=outcome.result_urls)
        logger.info(
            "Task generated",
            extra={"task_id": task_id, "slots": [slot.value for slot in outcome.result_urls.filled()]},
        )
        await broadcaster.publish(GenerationEvent.log(task_id, "Result written back to the table"))
        await broadcaster.publish(self._result_event(result))
        return result

    async def _resolve_reference(self, task: Task) -> Task:
        reference = task.reference_image
        if not reference or reference.lower().startswith(("http://", "https://")):
            return task
        url = await self._store.resolve_attachment_url(reference)
        return task.model_copy(update={"reference_image": url})

    async def _write(self, task: Task, state: TaskState, **kwargs) -> None:
        fields = build_status_fields(
            self._schema,
            state,
            generation_type=task.generation_type,
            now=datetime.now(timezone.utc),
            **kwargs,
        )
        await self._store.update_fields(task.id, fields)
        logger.info("Task status written", extra={"task_id": task.id, "state": state.value})

    async def _fail(
        self, task: Task, exc: Exception, broadcaster: ProgressBroadcaster
    ) -> TaskRunResult:
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, RelayError):
            logger.warning("Generation failed", extra={"task_id": task.id, "error": message})
        else:
            logger.exception("Unexpected generation failure", extra={"task_id": task.id})
        try:
            await self._write(task, TaskState.FAILED, error=message)
        except Exception:
            logger.exception("Could not record failure", extra={"task_id": task.id})
        await broadcaster.publish(GenerationEvent.error(task.id, message))
        return TaskRunResult(task_id=task.id, success=False, error=message)

    @staticmethod
    def _result_event(result: TaskRunResult) -> GenerationEvent:
        return GenerationEvent.result(
            result.task_id,
            success=result.success,
            skipped=result.skipped,
            **result.result_urls.model_dump(by_alias=True),
        )
