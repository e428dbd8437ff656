from functools import lru_cache

from .blob_store import S3BlobStore
from .cache import VolatileCache
from .config import get_settings
from .extraction import build_extractor
from .jobs import BackgroundJobRunner
from .orchestrator import IngestionOrchestrator
from .record_store import DynamoDBRecordStore


def build_orchestrator(settings) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        blob_store=S3BlobStore.from_settings(settings),
        record_store=DynamoDBRecordStore.from_settings(settings),
        cache=VolatileCache(),
        extractor=build_extractor(settings),
        job_runner=BackgroundJobRunner(max_workers=settings.background_max_workers),
        extraction_timeout=settings.extraction_timeout_seconds,
    )


@lru_cache()
def get_orchestrator() -> IngestionOrchestrator:
    return build_orchestrator(get_settings())
