import json

import httpx
import pytest

from src.relay.domain.exceptions import (
    ExtractionError,
    GenerationError,
    GenerationRejectedError,
    UpstreamError,
)
from src.relay.domain.models import GenerationEvent, GenerationType, Task, UrlSlot
from src.relay.infrastructure.generation.invoker import GenerationInvoker
from src.relay.infrastructure.generation.shapes import resolve_shapes
from src.setup.generation_config import GenerationSettings

SSE_HEADERS = {"content-type": "text/event-stream"}


def chunk(content: str) -> str:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def make_invoker(handler, **overrides) -> GenerationInvoker:
    values = {
        "GENERATION_API_BASE": "https://upstream.test/",
        "GENERATION_API_KEY": "sk-test",
    }
    values.update(overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GenerationInvoker(GenerationSettings(**values), client=client)


def make_task(**fields) -> Task:
    values = {"id": "rec1", "prompt": "a cat on a skateboard", "model": "sora-video-portrait-10s",
              "model_display": "sora-video-portrait-10s"}
    values.update(fields)
    return Task(**values)


@pytest.mark.asyncio
async def test_plain_prompt_is_sent_as_chat_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers=SSE_HEADERS, text=chunk("https://cdn.example/a.mp4 "))

    outcome = await make_invoker(handler).invoke(make_task())

    request = seen[0]
    assert str(request.url) == "https://upstream.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body == {
        "model": "sora-video-portrait-10s",
        "messages": [{"role": "user", "content": "a cat on a skateboard"}],
        "stream": True,
    }
    assert outcome.result_urls.primary_url == "https://cdn.example/a.mp4"


@pytest.mark.asyncio
async def test_reference_image_makes_the_message_multimodal() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, headers=SSE_HEADERS, text=chunk("https://cdn.example/a.mp4 "))

    await make_invoker(handler).invoke(make_task(reference_image="https://img.example/ref.png"))

    assert seen[0]["messages"][0]["content"] == [
        {"type": "text", "text": "a cat on a skateboard"},
        {"type": "image_url", "image_url": {"url": "https://img.example/ref.png"}},
    ]


@pytest.mark.asyncio
async def test_rejected_shape_falls_back_to_the_next_one() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/v1/chat/completions":
            return httpx.Response(404, text="no such route")
        body = json.loads(request.content)
        assert body["prompt"] == "a cat on a skateboard"
        return httpx.Response(200, json={"data": {"video_url": "https://cdn.example/json.mp4"}})

    outcome = await make_invoker(handler).invoke(make_task())

    assert paths == ["/v1/chat/completions", "/v1/video/generations"]
    assert outcome.result_urls.primary_url == "https://cdn.example/json.mp4"


@pytest.mark.asyncio
async def test_every_shape_rejected_reports_each_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="x" * 2000)

    with pytest.raises(GenerationRejectedError) as info:
        await make_invoker(handler).invoke(make_task())

    assert isinstance(info.value, UpstreamError)
    assert info.value.source == "generation"
    assert info.value.status_code == 503
    message = info.value.raw_message
    assert message.startswith("chat: HTTP 503: ")
    assert "; simple: HTTP 503: " in message
    assert "x" * 501 not in message


@pytest.mark.asyncio
async def test_stream_content_is_forwarded_as_events() -> None:
    events: list[GenerationEvent] = []

    async def on_event(event: GenerationEvent) -> None:
        events.append(event)

    def handler(request: httpx.Request) -> httpx.Response:
        text = chunk("rendering... ") + chunk("done: https://cdn.example/v.mp4") + "data: [DONE]\n\n"
        return httpx.Response(200, headers=SSE_HEADERS, text=text)

    outcome = await make_invoker(handler).invoke(make_task(), on_event=on_event)

    frames = [event.to_frame() for event in events]
    assert frames[0] == {"type": "log", "task_id": "rec1", "message": "Upstream accepted the request"}
    assert [frame["content"] for frame in frames[1:]] == ["rendering... ", "done: https://cdn.example/v.mp4"]
    assert outcome.transcript == "rendering... done: https://cdn.example/v.mp4"
    assert outcome.result_urls.primary_url == "https://cdn.example/v.mp4"


@pytest.mark.asyncio
async def test_relative_output_url_resolves_against_the_api_base() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers=SSE_HEADERS, text='data: {"output": [{"url": "/files/out.mp4"}]}\n\n'
        )

    outcome = await make_invoker(handler).invoke(make_task())

    assert outcome.result_urls.primary_url == "https://upstream.test/files/out.mp4"


@pytest.mark.asyncio
async def test_stream_without_url_raises_extraction_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers=SSE_HEADERS, text=chunk("content policy violation"))

    with pytest.raises(ExtractionError, match="content policy violation"):
        await make_invoker(handler).invoke(make_task())


@pytest.mark.asyncio
async def test_transport_failure_becomes_generation_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationError, match="ConnectError"):
        await make_invoker(handler).invoke(make_task())


def test_image_tasks_classify_image_links() -> None:
    invoker = make_invoker(lambda request: httpx.Response(200))

    image = invoker.build_classifier(GenerationType.IMAGE)
    video = invoker.build_classifier(GenerationType.VIDEO)

    assert image.looks_like_media("https://files.example/p.png")
    assert not video.looks_like_media("https://files.example/p.png")
    assert video.classify("https://oscdn2.dyysy.com/a.mp4") is UrlSlot.WATERMARK_FREE
    assert video.classify("https://drive.google.com/file/d/1") is UrlSlot.MIRROR


def test_unknown_request_shape_is_rejected() -> None:
    with pytest.raises(ValueError, match="bogus"):
        resolve_shapes(["chat", "bogus"])
