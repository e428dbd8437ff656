import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional, Tuple, Union

from .blob_store import S3BlobStore
from .cache import VolatileCache
from .exceptions import (
    DocumentNotFound,
    ExtractionFailed,
    ExtractionUnavailable,
    InvalidTransition,
    RecordStoreUnavailable,
)
from .extraction import BaseExtractor
from .jobs import BackgroundOutcome
from .logger import get_logger
from .record_store import DynamoDBRecordStore, utcnow
from .schemas import (
    CacheEntry,
    DocumentListResponse,
    DocumentRecord,
    DocumentStatus,
    IngestResult,
    UnknownStatusResponse,
    UploadRequest,
)

logger = get_logger(__name__)

PLACEHOLDER_TEXT = "[text not extracted]"
NOTE_NOT_CONFIGURED = "Text extraction not configured; saved upload only."
NOTE_UNAVAILABLE = "Text extraction unavailable or timed out; saved upload with placeholder text."
NOTE_FAILED = "Text extraction failed ({detail}); saved upload with placeholder text."

MODE_SYNC = "sync"
MODE_ASYNC = "async"


def new_document_id() -> str:
    """Time-ordered id with a random suffix so ids minted in the same tick differ."""
    return f"doc_{time.time_ns()}_{uuid.uuid4().hex[:8]}"


class IngestionOrchestrator:
    """Drives an upload through blob storage, extraction and persistence.

    Only blob storage failures (StorageUnavailable, PayloadTooLarge) abort an
    ingestion. Extraction and record store problems degrade into notes and
    warnings. Background extraction failures end up as status=error on the
    record. Nothing is retried.
    """

    def __init__(
        self,
        blob_store: S3BlobStore,
        record_store: DynamoDBRecordStore,
        cache: VolatileCache,
        extractor: Optional[BaseExtractor],
        job_runner,
        extraction_timeout: float = 30.0,
        sync_workers: int = 4,
    ):
        self.blob_store = blob_store
        self.record_store = record_store
        self.cache = cache
        self.extractor = extractor
        self.job_runner = job_runner
        self.extraction_timeout = extraction_timeout
        self._sync_pool = ThreadPoolExecutor(max_workers=sync_workers, thread_name_prefix="extract-sync")

    def ingest(self, request: UploadRequest, mode: str = MODE_SYNC) -> IngestResult:
        if mode == MODE_SYNC:
            return self.ingest_sync(request)
        if mode == MODE_ASYNC:
            return self.ingest_async(request)
        raise ValueError(f"Unknown ingestion mode '{mode}'")

    def ingest_sync(self, request: UploadRequest) -> IngestResult:
        document_id, blob_path = self._store_blob(request)

        text, note = self._extract_inline(document_id, request)

        now = utcnow()
        record = DocumentRecord(
            document_id=document_id,
            owner_id=request.owner_id,
            blob_path=blob_path,
            extracted_text=text,
            status=DocumentStatus.PROCESSED,
            processing_note=note,
            created_at=now,
            updated_at=now,
        )
        warning = self._try_upsert(record)
        self._cache_snapshot(record)

        logger.info(f"Ingested {document_id} for {request.owner_id} ({len(text)} chars)")
        return IngestResult(
            document_id=document_id,
            blob_path=blob_path,
            extracted_text=text,
            status=DocumentStatus.PROCESSED,
            processing_note=note,
            persistence_warning=warning,
        )

    def ingest_async(self, request: UploadRequest) -> IngestResult:
        document_id, blob_path = self._store_blob(request)

        now = utcnow()
        record = DocumentRecord(
            document_id=document_id,
            owner_id=request.owner_id,
            blob_path=blob_path,
            extracted_text="",
            status=DocumentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        warning = self._try_upsert(record)
        self._cache_snapshot(record)

        owner_id = request.owner_id
        mime_type = request.mime_type
        try:
            self.job_runner.submit(
                document_id,
                lambda: self.run_background_extraction(owner_id, document_id, blob_path, mime_type),
            )
        except Exception as e:
            # The job never started, so nothing else will settle this record
            detail = f"Could not schedule background extraction: {e}"
            logger.error(f"{detail} ({document_id})")
            self._settle(owner_id, document_id, DocumentStatus.ERROR, error_detail=detail)
            return IngestResult(
                document_id=document_id,
                blob_path=blob_path,
                status=DocumentStatus.ERROR,
                processing_note=detail,
                persistence_warning=warning,
            )
        logger.info(f"Queued background extraction for {document_id}")
        return IngestResult(
            document_id=document_id,
            blob_path=blob_path,
            status=DocumentStatus.PENDING,
            persistence_warning=warning,
        )

    def run_background_extraction(
        self, owner_id: str, document_id: str, blob_path: str, mime_type: str
    ) -> BackgroundOutcome:
        """Extract, fetch and parse the output, then settle the record exactly once."""
        try:
            if self.extractor is None:
                raise ExtractionUnavailable("Text extraction not configured")
            job_handle = self.extractor.extract_async(blob_path, mime_type)
            output_locator = self.extractor.await_result(job_handle)
            payload = self.blob_store.get(output_locator)
            text = self.extractor.parse_output(payload)
        except Exception as e:
            detail = str(e) or e.__class__.__name__
            logger.error(f"Background extraction failed for {document_id}: {detail}")
            return self._settle(owner_id, document_id, DocumentStatus.ERROR, error_detail=detail)

        outcome = self._settle(owner_id, document_id, DocumentStatus.PROCESSED, text=text)
        if outcome.persisted or outcome.persistence_error is None:
            return outcome

        # The processed write never landed; try to leave the record in error instead
        detail = f"Failed to store extracted text: {outcome.persistence_error}"
        return self._settle(owner_id, document_id, DocumentStatus.ERROR, error_detail=detail)

    def _settle(
        self,
        owner_id: str,
        document_id: str,
        status: DocumentStatus,
        text: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> BackgroundOutcome:
        fields = {"status": status}
        if text is not None:
            fields["extracted_text"] = text
        if error_detail is not None:
            fields["error_detail"] = error_detail

        try:
            self.record_store.update(owner_id, document_id, fields, expected_status=DocumentStatus.PENDING)
        except InvalidTransition as e:
            # Already terminal or never written; nothing left to do
            logger.warning(f"Skipped {status.value} transition for {document_id}: {e}")
            return BackgroundOutcome(document_id, status, error_detail, persisted=False)
        except RecordStoreUnavailable as e:
            logger.error(f"Could not record {status.value} for {document_id}: {e}")
            return BackgroundOutcome(document_id, status, error_detail, persisted=False, persistence_error=str(e))

        logger.info(f"Document {document_id} is now {status.value}")
        return BackgroundOutcome(document_id, status, error_detail)

    def status(self, owner_id: str, document_id: str) -> Union[DocumentRecord, UnknownStatusResponse]:
        """Current record, or an "unknown" placeholder when the store cannot be asked.

        Raises:
            DocumentNotFound: the store answered and has no such record.
        """
        try:
            record = self.record_store.get(owner_id, document_id)
        except RecordStoreUnavailable as e:
            logger.warning(f"Status for {document_id} unknown, record store unavailable: {e}")
            return UnknownStatusResponse(document_id=document_id)
        if record is None:
            raise DocumentNotFound(document_id)
        return record

    def list_documents(self, owner_id: str) -> DocumentListResponse:
        try:
            records = self.record_store.list(owner_id)
        except RecordStoreUnavailable as e:
            logger.warning(f"Listing documents for {owner_id} from cache: {e}")
            entries = self.cache.list(owner_id)
            return DocumentListResponse(
                documents=[self._cache_view(entry) for entry in entries],
                source="cache",
            )
        return DocumentListResponse(
            documents=[r.public_dict() for r in records],
            source="store",
        )

    def shutdown(self, wait: bool = True) -> None:
        self.job_runner.shutdown(wait=wait)
        self._sync_pool.shutdown(wait=False)

    def _store_blob(self, request: UploadRequest) -> Tuple[str, str]:
        document_id = new_document_id()
        blob_path = self.blob_store.put(
            request.owner_id, document_id, request.filename, request.content, request.mime_type
        )
        return document_id, blob_path

    def _extract_inline(self, document_id: str, request: UploadRequest) -> Tuple[str, Optional[str]]:
        if self.extractor is None:
            return PLACEHOLDER_TEXT, NOTE_NOT_CONFIGURED

        future = self._sync_pool.submit(self.extractor.extract_sync, request.content, request.mime_type)
        try:
            return future.result(timeout=self.extraction_timeout), None
        except FutureTimeout:
            future.cancel()
            logger.warning(f"Extraction for {document_id} timed out after {self.extraction_timeout}s")
            return PLACEHOLDER_TEXT, NOTE_UNAVAILABLE
        except ExtractionUnavailable as e:
            logger.warning(f"Extraction unavailable for {document_id}: {e}")
            return PLACEHOLDER_TEXT, NOTE_UNAVAILABLE
        except ExtractionFailed as e:
            logger.warning(f"Extraction failed for {document_id}: {e}")
            return PLACEHOLDER_TEXT, NOTE_FAILED.format(detail=e)
        except Exception as e:
            logger.error(f"Unexpected extraction error for {document_id}: {e}", exc_info=True)
            return PLACEHOLDER_TEXT, NOTE_FAILED.format(detail=e)

    def _try_upsert(self, record: DocumentRecord) -> Optional[str]:
        try:
            self.record_store.upsert(record)
        except RecordStoreUnavailable as e:
            logger.warning(f"Persistence failed for {record.document_id}: {e}")
            return f"Record store persistence failed: {e}"
        return None

    def _cache_snapshot(self, record: DocumentRecord) -> None:
        self.cache.put(
            CacheEntry(
                document_id=record.document_id,
                owner_id=record.owner_id,
                blob_path=record.blob_path,
                extracted_text=record.extracted_text,
                created_at=record.created_at,
            )
        )

    @staticmethod
    def _cache_view(entry: CacheEntry) -> dict:
        view = entry.model_dump(by_alias=True, mode="json")
        # Cached snapshots carry no lifecycle state
        view["status"] = DocumentStatus.UNKNOWN.value
        view["updatedAt"] = view["createdAt"]
        return view
