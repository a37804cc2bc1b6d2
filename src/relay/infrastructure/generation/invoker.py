from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from src.relay.application.extractor import (
    ClassificationRule,
    ProgressUpdate,
    StreamResultExtractor,
    UrlClassifier,
)
from src.relay.domain.exceptions import GenerationError, GenerationRejectedError
from src.relay.domain.models import (
    GenerationEvent,
    GenerationOutcome,
    GenerationType,
    ResultUrls,
    Task,
    UrlSlot,
)
from src.relay.domain.repositories import EventCallback, GenerationRepository
from src.relay.infrastructure.generation.shapes import RequestShape, resolve_shapes
from src.setup.generation_config import GenerationSettings

logger = logging.getLogger(__name__)


class GenerationInvoker(GenerationRepository):
    """Calls the upstream generation API and recovers result URLs from its answer."""

    def __init__(
        self, settings: GenerationSettings, *, client: httpx.AsyncClient | None = None
    ) -> None:
        self._settings = settings
        self._shapes = resolve_shapes(settings.GENERATION_REQUEST_SHAPES)
        self._base_url = settings.GENERATION_API_BASE.rstrip("/")
        self._http = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.GENERATION_TIMEOUT_SECONDS, connect=10.0)
        )

    def build_classifier(self, generation_type: GenerationType) -> UrlClassifier:
        settings = self._settings
        extensions = settings.GENERATION_VIDEO_EXTENSIONS
        if generation_type is GenerationType.IMAGE:
            extensions = settings.GENERATION_IMAGE_EXTENSIONS
        rules = [
            ClassificationRule(UrlSlot.MIRROR, hosts=tuple(settings.GENERATION_MIRROR_HOSTS)),
            ClassificationRule(
                UrlSlot.WATERMARK_FREE,
                hosts=tuple(settings.GENERATION_WATERMARK_FREE_HOSTS),
                extensions=tuple(settings.GENERATION_VIDEO_EXTENSIONS),
            ),
        ]
        return UrlClassifier(
            [rule for rule in rules if rule.hosts],
            media_extensions=extensions,
            media_keywords=settings.GENERATION_MEDIA_KEYWORDS,
            api_base=self._base_url,
        )

    async def invoke(
        self, task: Task, on_event: EventCallback | None = None
    ) -> GenerationOutcome:
        failures: list[str] = []
        last_status = 0
        for shape in self._shapes:
            try:
                outcome, failure, status = await self._attempt(shape, task, on_event)
            except httpx.HTTPError as exc:
                raise GenerationError(f"{shape.name}: {exc.__class__.__name__}: {exc}") from exc
            if outcome is not None:
                return outcome
            failures.append(f"{shape.name}: {failure}")
            last_status = status
            logger.warning(
                "Request shape rejected",
                extra={"task_id": task.id, "shape": shape.name, "status_code": status},
            )
        raise GenerationRejectedError(last_status, "; ".join(failures))

    async def _attempt(
        self, shape: RequestShape, task: Task, on_event: EventCallback | None
    ) -> tuple[GenerationOutcome | None, str, int]:
        url = self._base_url + shape.path(self._settings)
        body = shape.build_body(task)
        logger.info(
            "Calling generation API",
            extra={"task_id": task.id, "shape": shape.name, "model": task.model},
        )
        async with self._http.stream("POST", url, json=body, headers=self._headers()) as response:
            if response.is_error:
                raw = (await response.aread()).decode("utf-8", errors="replace")
                snippet = raw[: self._settings.GENERATION_ERROR_SNIPPET_CHARS]
                return None, f"HTTP {response.status_code}: {snippet}", response.status_code

            await self._emit(on_event, GenerationEvent.log(task.id, "Upstream accepted the request"))
            extractor = StreamResultExtractor(
                self.build_classifier(task.generation_type),
                tail_chars=self._settings.GENERATION_TAIL_CHARS,
            )
            content_type = response.headers.get("content-type", "").lower()
            if "application/json" in content_type:
                payload = json.loads(await response.aread())
                return self._from_json(payload, task, extractor), "", response.status_code

            async for chunk in response.aiter_bytes():
                for update in extractor.feed(chunk):
                    await self._emit(on_event, _stream_event(task.id, update))
            result_urls = extractor.finish()
            return (
                GenerationOutcome(result_urls=result_urls, transcript=extractor.transcript),
                "",
                response.status_code,
            )

    def _from_json(
        self, payload: Any, task: Task, extractor: StreamResultExtractor
    ) -> GenerationOutcome:
        """Short-circuit for deployments that answer with one JSON document."""
        classifier = self.build_classifier(task.generation_type)
        if isinstance(payload, dict):
            if payload.get("error"):
                extractor.feed_payload(payload)
            for source in (payload, payload.get("data")):
                for url in _direct_urls(source, self._settings.GENERATION_DIRECT_KEYS):
                    normalized = classifier.normalize(url)
                    if not normalized:
                        continue
                    result_urls = ResultUrls()
                    result_urls.set_if_absent(classifier.classify(normalized), normalized)
                    return GenerationOutcome(result_urls=result_urls)
        extractor.feed_payload(payload)
        result_urls = extractor.finish()
        return GenerationOutcome(result_urls=result_urls, transcript=extractor.transcript)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream, application/json"}
        if self._settings.GENERATION_API_KEY:
            headers["Authorization"] = f"Bearer {self._settings.GENERATION_API_KEY}"
        return headers

    @staticmethod
    async def _emit(on_event: EventCallback | None, event: GenerationEvent) -> None:
        if on_event is not None:
            await on_event(event)

    async def close(self) -> None:
        await self._http.aclose()


def _direct_urls(source: Any, keys: list[str]) -> list[str]:
    if not isinstance(source, dict):
        return []
    urls = []
    for key in keys:
        value = source.get(key)
        if isinstance(value, dict):
            value = value.get("url")
        if isinstance(value, str) and value.strip():
            urls.append(value)
    return urls


def _stream_event(task_id: str, update: ProgressUpdate) -> GenerationEvent:
    return GenerationEvent.stream(task_id, update.content)
