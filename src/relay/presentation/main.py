import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.setup.api_config import ApiSettings
from src.setup.app_config import configure_di

settings = ApiSettings()
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
configure_di()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Relay that generates media for table records and writes the results back",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from src.relay.presentation.routes import router as api_router  # noqa: E402

app.include_router(api_router, prefix="")
