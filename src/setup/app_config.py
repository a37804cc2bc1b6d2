import inject

from src.relay.application.guard import SingleFlightGuard
from src.relay.domain.models import RecordSchema
from src.relay.domain.repositories import GenerationRepository, RecordStoreRepository
from src.relay.infrastructure.feishu.client import FeishuRecordStore
from src.relay.infrastructure.generation.invoker import GenerationInvoker
from src.setup.feishu_config import build_record_schema, get_feishu_settings
from src.setup.generation_config import get_generation_settings


def _config(binder: inject.Binder) -> None:
    feishu_settings = get_feishu_settings()
    binder.bind(RecordSchema, build_record_schema(feishu_settings))
    binder.bind(RecordStoreRepository, FeishuRecordStore(feishu_settings))
    binder.bind(GenerationRepository, GenerationInvoker(get_generation_settings()))
    binder.bind(SingleFlightGuard, SingleFlightGuard())


def configure_di() -> None:
    """Bind the relay's repositories once per process."""
    if not inject.is_configured():
        inject.configure(_config)
