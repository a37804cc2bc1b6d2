from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel

from src.relay.domain.exceptions import AuthError, ConfigError, TaskNotFoundError, UpstreamError
from src.relay.domain.models import LinkValue, RecordSchema, TaskState
from src.relay.domain.repositories import RecordStoreRepository
from src.setup.feishu_config import FeishuSettings, build_record_schema

logger = logging.getLogger(__name__)

# Bitable error code for an unknown record id.
RECORD_NOT_FOUND_CODES = {1254043}
_SNIPPET_CHARS = 500


class FeishuRecordStore(RecordStoreRepository):
    """Bitable-backed task table using the Feishu open API."""

    def __init__(
        self,
        settings: FeishuSettings,
        *,
        schema: RecordSchema | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._schema = schema or build_record_schema(settings)
        self._base_url = settings.FEISHU_BASE_URL.rstrip("/")
        self._http = client or httpx.AsyncClient(timeout=settings.FEISHU_TIMEOUT_SECONDS)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        logger.info("Feishu store created", extra=self.config_status())

    def is_configured(self) -> bool:
        return all(self.config_status().values())

    def config_status(self) -> dict[str, bool]:
        return {
            "app_id_set": bool(self._settings.FEISHU_APP_ID),
            "app_secret_set": bool(self._settings.FEISHU_APP_SECRET),
            "app_token_set": bool(self._settings.FEISHU_APP_TOKEN),
            "table_id_set": bool(self._settings.FEISHU_TABLE_ID),
        }

    async def authenticate(self) -> str:
        """Return a tenant access token, reusing the cached one while it is valid."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        logger.info("Requesting tenant access token")
        data = await self._send(
            "POST",
            "/auth/v3/tenant_access_token/internal",
            json={
                "app_id": self._settings.FEISHU_APP_ID,
                "app_secret": self._settings.FEISHU_APP_SECRET,
            },
            authenticated=False,
        )
        code = data.get("code", -1)
        if code != 0:
            logger.error("Token request refused", extra={"code": code, "feishu_msg": data.get("msg")})
            raise AuthError(code, str(data.get("msg", "")))

        expire = int(data.get("expire", 0))
        self._token = data["tenant_access_token"]
        self._token_expires_at = self._clock() + (expire - self._settings.FEISHU_TOKEN_SAFETY_SECONDS)
        return self._token

    async def list_all(self, limit: int = 100) -> list[dict[str, Any]]:
        data = await self._call("GET", self._records_path(), params={"page_size": limit})
        items = (data.get("data") or {}).get("items") or []
        logger.info("Fetched records", extra={"count": len(items)})
        return items

    async def list_pending(self, limit: int = 100) -> list[dict[str, Any]]:
        # Evaluated by the store: the table can hold far more rows than one page.
        pending_filter = {
            "conjunction": "or",
            "conditions": [
                {
                    "field_name": self._schema.generated_flag_field,
                    "operator": "is",
                    "value": [False],
                },
                {
                    "field_name": self._schema.status_field,
                    "operator": "is",
                    "value": [self._schema.status_labels[TaskState.PENDING]],
                },
            ],
        }
        data = await self._call(
            "POST",
            f"{self._records_path()}/search",
            json={"filter": pending_filter},
            params={"page_size": limit},
        )
        items = (data.get("data") or {}).get("items") or []
        logger.info("Fetched pending records", extra={"count": len(items)})
        return items

    async def get_one(self, record_id: str) -> dict[str, Any]:
        try:
            data = await self._call("GET", f"{self._records_path()}/{record_id}")
        except UpstreamError as exc:
            if exc.status_code in RECORD_NOT_FOUND_CODES or exc.status_code == 404:
                raise TaskNotFoundError(record_id) from exc
            raise
        record = (data.get("data") or {}).get("record")
        if not record:
            raise TaskNotFoundError(record_id)
        return record

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> None:
        payload = {name: _encode_field(value) for name, value in fields.items()}
        logger.info(
            "Updating record fields",
            extra={"record_id": record_id, "fields": sorted(payload)},
        )
        await self._call("PUT", f"{self._records_path()}/{record_id}", json={"fields": payload})

    async def resolve_attachment_url(self, file_token: str) -> str:
        data = await self._call(
            "GET",
            "/drive/v1/medias/batch_get_tmp_download_url",
            params={"file_tokens": file_token},
        )
        entries = (data.get("data") or {}).get("tmp_download_urls") or []
        for entry in entries:
            if entry.get("file_token") in (None, file_token) and entry.get("tmp_download_url"):
                return entry["tmp_download_url"]
        raise UpstreamError(0, f"No download URL returned for {file_token}", source="feishu")

    async def close(self) -> None:
        await self._http.aclose()

    def _records_path(self) -> str:
        return (
            f"/bitable/v1/apps/{self._settings.FEISHU_APP_TOKEN}"
            f"/tables/{self._settings.FEISHU_TABLE_ID}/records"
        )

    async def _call(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.is_configured():
            raise ConfigError([name for name, is_set in self.config_status().items() if not is_set])
        data = await self._send(method, path, **kwargs)
        code = data.get("code", -1)
        if code != 0:
            logger.error(
                "Feishu call failed",
                extra={"path": path, "code": code, "feishu_msg": data.get("msg")},
            )
            raise UpstreamError(code, str(data.get("msg", ""))[:_SNIPPET_CHARS], source="feishu")
        return data

    async def _send(
        self, method: str, path: str, *, authenticated: bool = True, **kwargs: Any
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self.authenticate()}"
        response = await self._http.request(method, self._base_url + path, headers=headers, **kwargs)
        try:
            data = response.json()
        except ValueError:
            raise UpstreamError(
                response.status_code, response.text[:_SNIPPET_CHARS], source="feishu"
            ) from None
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, response.text[:_SNIPPET_CHARS], source="feishu")
        if response.is_error and "code" not in data:
            raise UpstreamError(response.status_code, response.text[:_SNIPPET_CHARS], source="feishu")
        return data


def _encode_field(value: Any) -> Any:
    if isinstance(value, LinkValue):
        return {"link": value.link, "text": value.text}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value
