from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from src.relay.domain.models import Task
from src.setup.generation_config import GenerationSettings


@dataclass(frozen=True)
class RequestShape:
    """One request layout the upstream API may accept."""

    name: str
    path: Callable[[GenerationSettings], str]
    build_body: Callable[[Task], dict[str, Any]]


def chat_body(task: Task) -> dict[str, Any]:
    if task.reference_image:
        content: Any = [
            {"type": "text", "text": task.prompt},
            {"type": "image_url", "image_url": {"url": task.reference_image}},
        ]
    else:
        content = task.prompt
    return {
        "model": task.model,
        "messages": [{"role": "user", "content": content}],
        "stream": True,
    }


def simple_body(task: Task) -> dict[str, Any]:
    body: dict[str, Any] = {"prompt": task.prompt, "model": task.model, "stream": True}
    if task.reference_image:
        body["image_url"] = task.reference_image
    return body


REQUEST_SHAPES: dict[str, RequestShape] = {
    "chat": RequestShape("chat", lambda settings: settings.GENERATION_CHAT_PATH, chat_body),
    "simple": RequestShape("simple", lambda settings: settings.GENERATION_SIMPLE_PATH, simple_body),
}


def resolve_shapes(names: list[str]) -> list[RequestShape]:
    unknown = [name for name in names if name not in REQUEST_SHAPES]
    if unknown:
        raise ValueError(f"Unknown request shapes: {', '.join(unknown)}")
    if not names:
        raise ValueError("At least one request shape is required")
    return [REQUEST_SHAPES[name] for name in names]
