from fastapi import HTTPException
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for ingestion pipeline errors"""


class StorageUnavailable(PipelineError):
    """Blob store could not be reached or rejected the write"""


class PayloadTooLarge(PipelineError):
    """Uploaded bytes exceed the configured ceiling"""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Upload of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class InvalidLocator(PipelineError):
    """A blob locator could not be parsed"""


class ExtractionError(PipelineError):
    """Base class for extraction service errors"""


class ExtractionUnavailable(ExtractionError):
    """Extraction service unreachable, misconfigured or timed out"""


class ExtractionFailed(ExtractionError):
    """Extraction service was reachable but rejected the input or output was unusable"""


class RecordStoreUnavailable(PipelineError):
    """Durable record store could not be reached"""


class InvalidTransition(PipelineError):
    """Record was not in the status the update expected"""


class DocumentNotFound(PipelineError):
    def __init__(self, document_id: str):
        super().__init__(f"Document '{document_id}' not found")
        self.document_id = document_id


class MissingConfiguration(PipelineError):
    """Required configuration value is not set"""


class ServiceException(HTTPException):
    """Base exception for HTTP-facing service errors"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or f"DOCUMENT_SERVICE_{status_code}"


class AuthenticationError(ServiceException):
    """Authentication related errors"""

    def __init__(self, detail: str = "Invalid authentication credentials"):
        super().__init__(
            status_code=401,
            detail=detail,
            error_code="AUTH_ERROR",
            headers={"WWW-Authenticate": "Basic"},
        )


class ValidationError(ServiceException):
    """Input validation errors"""

    def __init__(self, detail: str = "Invalid input data"):
        super().__init__(status_code=400, detail=detail, error_code="VALIDATION_ERROR")

