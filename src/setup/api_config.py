
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    APP_NAME: str = "media-relay"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]
    BATCH_DELAY_SECONDS: float = 2.0
    BATCH_DEFAULT_LIMIT: int = 100
    LIST_LIMIT: int = 100

    model_config = ConfigDict(env_file=".env", extra="ignore")
        

def get_api_settings() -> ApiSettings:
    return ApiSettings() # type: ignore[call-arg]
