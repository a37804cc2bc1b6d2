from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from src.relay.domain.models import RecordSchema


class FeishuSettings(BaseSettings):
    """Connection to the Feishu/Lark bitable holding the task table."""
    FEISHU_APP_ID: str = ""
    FEISHU_APP_SECRET: str = ""
    FEISHU_APP_TOKEN: str = ""
    FEISHU_TABLE_ID: str = ""
    FEISHU_BASE_URL: str = "https://open.feishu.cn/open-apis"
    FEISHU_TIMEOUT_SECONDS: float = 30.0
    FEISHU_TOKEN_SAFETY_SECONDS: int = 300
    # Overrides for RecordSchema, e.g. {"prompt_field": "Prompt"}.
    FEISHU_SCHEMA: dict[str, object] = {}

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_feishu_settings() -> FeishuSettings:
    """Return a fresh Feishu settings instance."""
    return FeishuSettings()


def build_record_schema(settings: FeishuSettings | None = None) -> RecordSchema:
    if settings is None:
        settings = FeishuSettings()
    return RecordSchema.model_validate(settings.FEISHU_SCHEMA)
