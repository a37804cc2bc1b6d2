import json

import httpx
import pytest

from src.relay.domain.exceptions import AuthError, ConfigError, TaskNotFoundError, UpstreamError
from src.relay.domain.models import LinkValue
from src.relay.infrastructure.feishu.client import FeishuRecordStore
from src.setup.feishu_config import FeishuSettings

RECORDS_PATH = "/open-apis/bitable/v1/apps/app123/tables/tbl456/records"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FeishuApi:
    """Records requests and answers them from a routing table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.routes: dict[tuple[str, str], dict] = {}
        self.token_response = {"code": 0, "tenant_access_token": "t-1", "expire": 7200}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/tenant_access_token/internal"):
            self.token_calls += 1
            body = dict(self.token_response)
            if body.get("code") == 0:
                body["tenant_access_token"] = f"t-{self.token_calls}"
            return httpx.Response(200, json=body)
        answer = self.routes.get((request.method, request.url.path))
        if answer is None:
            return httpx.Response(404, text="<html>not found</html>")
        return httpx.Response(200, json=answer)

    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_store(api: FeishuApi, clock: FakeClock | None = None, **overrides) -> FeishuRecordStore:
    values = {
        "FEISHU_APP_ID": "cli_a",
        "FEISHU_APP_SECRET": "secret",
        "FEISHU_APP_TOKEN": "app123",
        "FEISHU_TABLE_ID": "tbl456",
    }
    values.update(overrides)
    settings = FeishuSettings(**values)
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return FeishuRecordStore(settings, client=client, clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_token_is_cached_until_the_safety_margin() -> None:
    api = FeishuApi()
    clock = FakeClock()
    store = make_store(api, clock)

    assert await store.authenticate() == "t-1"
    clock.now += 7200 - 300 - 1
    assert await store.authenticate() == "t-1"
    clock.now += 2
    assert await store.authenticate() == "t-2"
    assert api.token_calls == 2


@pytest.mark.asyncio
async def test_token_refusal_raises_auth_error() -> None:
    api = FeishuApi()
    api.token_response = {"code": 10014, "msg": "app secret invalid"}
    store = make_store(api)

    with pytest.raises(AuthError) as info:
        await store.list_all()

    assert info.value.status_code == 10014
    assert info.value.source == "auth"


@pytest.mark.asyncio
async def test_list_all_sends_bearer_token_and_page_size() -> None:
    api = FeishuApi()
    api.routes[("GET", RECORDS_PATH)] = {
        "code": 0,
        "data": {"items": [{"record_id": "rec1", "fields": {}}]},
    }
    store = make_store(api)

    records = await store.list_all(limit=20)

    assert [record["record_id"] for record in records] == ["rec1"]
    request = api.last()
    assert request.headers["Authorization"] == "Bearer t-1"
    assert request.url.params["page_size"] == "20"


@pytest.mark.asyncio
async def test_list_pending_filters_on_the_server() -> None:
    api = FeishuApi()
    api.routes[("POST", RECORDS_PATH + "/search")] = {"code": 0, "data": {"items": []}}
    store = make_store(api)

    assert await store.list_pending(limit=5) == []

    body = json.loads(api.last().content)
    conditions = body["filter"]["conditions"]
    assert body["filter"]["conjunction"] == "or"
    assert {"field_name": "是否已生成", "operator": "is", "value": [False]} in conditions
    assert {"field_name": "生成状态", "operator": "is", "value": ["待生成"]} in conditions


@pytest.mark.asyncio
async def test_update_fields_encodes_links() -> None:
    api = FeishuApi()
    api.routes[("PUT", RECORDS_PATH + "/rec1")] = {"code": 0, "data": {"record": {}}}
    store = make_store(api)

    await store.update_fields(
        "rec1",
        {"生成状态": "成功", "视频URL": LinkValue(link="https://cdn.example/a.mp4", text="查看视频")},
    )

    request = api.last()
    assert request.method == "PUT"
    assert json.loads(request.content) == {
        "fields": {
            "生成状态": "成功",
            "视频URL": {"link": "https://cdn.example/a.mp4", "text": "查看视频"},
        }
    }


@pytest.mark.asyncio
async def test_unknown_record_raises_not_found() -> None:
    api = FeishuApi()
    api.routes[("GET", RECORDS_PATH + "/recX")] = {"code": 1254043, "msg": "RecordIdNotFound"}
    store = make_store(api)

    with pytest.raises(TaskNotFoundError) as info:
        await store.get_one("recX")

    assert info.value.task_id == "recX"


@pytest.mark.asyncio
async def test_get_one_returns_record() -> None:
    api = FeishuApi()
    api.routes[("GET", RECORDS_PATH + "/rec1")] = {
        "code": 0,
        "data": {"record": {"record_id": "rec1", "fields": {"提示词": "hi"}}},
    }
    store = make_store(api)

    assert (await store.get_one("rec1"))["fields"] == {"提示词": "hi"}


@pytest.mark.asyncio
async def test_non_zero_code_raises_upstream_error_with_message() -> None:
    api = FeishuApi()
    api.routes[("GET", RECORDS_PATH)] = {"code": 1254001, "msg": "WrongRequestBody"}
    store = make_store(api)

    with pytest.raises(UpstreamError) as info:
        await store.list_all()

    assert info.value.status_code == 1254001
    assert info.value.raw_message == "WrongRequestBody"
    assert info.value.source == "feishu"


@pytest.mark.asyncio
async def test_non_json_answer_raises_upstream_error() -> None:
    api = FeishuApi()
    store = make_store(api)

    with pytest.raises(UpstreamError) as info:
        await store.list_all()

    assert info.value.status_code == 404


@pytest.mark.asyncio
async def test_unconfigured_store_makes_no_request() -> None:
    api = FeishuApi()
    store = make_store(api, FEISHU_TABLE_ID="")

    assert store.is_configured() is False
    assert store.config_status()["table_id_set"] is False
    with pytest.raises(ConfigError) as info:
        await store.list_pending()

    assert info.value.missing == ["table_id_set"]
    assert api.requests == []


@pytest.mark.asyncio
async def test_attachment_token_is_resolved_to_download_url() -> None:
    api = FeishuApi()
    api.routes[("GET", "/open-apis/drive/v1/medias/batch_get_tmp_download_url")] = {
        "code": 0,
        "data": {
            "tmp_download_urls": [
                {"file_token": "boxcnRef", "tmp_download_url": "https://internal.feishu.cn/dl/ref"}
            ]
        },
    }
    store = make_store(api)

    url = await store.resolve_attachment_url("boxcnRef")

    assert url == "https://internal.feishu.cn/dl/ref"
    assert api.last().url.params["file_tokens"] == "boxcnRef"
