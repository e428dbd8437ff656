import json
import time
from abc import ABC, abstractmethod
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .blob_store import build_locator, parse_locator
from .exceptions import ExtractionFailed, ExtractionUnavailable, MissingConfiguration
from .logger import get_logger

logger = get_logger(__name__)

# Textract error codes that mean the service looked at the input and refused it
REJECTED_INPUT_CODES = {
    "InvalidParameterException",
    "UnsupportedDocumentException",
    "BadDocumentException",
    "DocumentTooLargeException",
    "InvalidS3ObjectException",
}


def _classify(e: Exception, action: str) -> Exception:
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        if code in REJECTED_INPUT_CODES:
            return ExtractionFailed(f"Textract rejected {action}: {code}")
    return ExtractionUnavailable(f"Textract unavailable during {action}: {e}")


def lines_from_blocks(blocks) -> str:
    return "\n".join(
        block.get("Text", "") for block in blocks if block.get("BlockType") == "LINE"
    )


class BaseExtractor(ABC):
    """Contract for document text extraction backends."""

    @abstractmethod
    def extract_sync(self, content: bytes, mime_type: str) -> str:
        """Extract text inline.

        Raises:
            ExtractionUnavailable: service unreachable or misconfigured.
            ExtractionFailed: service rejected the input.
        """

    @abstractmethod
    def extract_async(self, blob_locator: str, mime_type: str) -> str:
        """Start a batch job for a stored blob and return its job handle."""

    @abstractmethod
    def await_result(self, job_handle: str) -> str:
        """Block until the job finishes and return the output locator."""

    @abstractmethod
    def parse_output(self, payload: bytes) -> str:
        """Turn a downloaded output artifact into plain text."""


class TextractExtractor(BaseExtractor):
    """Amazon Textract text detection, inline and as an S3 batch job."""

    def __init__(
        self,
        textract_client,
        output_bucket: str,
        output_prefix: str = "textract-output",
        poll_interval: float = 5.0,
    ):
        self._textract = textract_client
        self.output_bucket = output_bucket
        self.output_prefix = output_prefix.strip("/")
        self.poll_interval = poll_interval

    def output_key(self, job_handle: str) -> str:
        if self.output_prefix:
            return f"{self.output_prefix}/{job_handle}/1"
        return f"{job_handle}/1"

    def extract_sync(self, content: bytes, mime_type: str) -> str:
        try:
            resp = self._textract.detect_document_text(Document={"Bytes": content})
        except (ClientError, BotoCoreError) as e:
            raise _classify(e, "document") from e
        return lines_from_blocks(resp.get("Blocks", []))

    def extract_async(self, blob_locator: str, mime_type: str) -> str:
        bucket, key = parse_locator(blob_locator)
        output_config = {"S3Bucket": self.output_bucket}
        if self.output_prefix:
            output_config["S3Prefix"] = self.output_prefix
        try:
            resp = self._textract.start_document_text_detection(
                DocumentLocation={"S3Object": {"Bucket": bucket, "Name": key}},
                OutputConfig=output_config,
            )
        except (ClientError, BotoCoreError) as e:
            raise _classify(e, "batch request") from e
        job_id = resp.get("JobId")
        if not job_id:
            raise ExtractionUnavailable("Textract did not return a JobId")
        logger.info(f"Started Textract job {job_id} for {blob_locator}")
        return job_id

    def await_result(self, job_handle: str) -> str:
        """Poll while the job is IN_PROGRESS.

        PARTIAL_SUCCESS is accepted with a warning since Textract still writes
        output for the pages it could read. Any other status, or none at all,
        raises ExtractionFailed.
        """
        while True:
            try:
                resp = self._textract.get_document_text_detection(JobId=job_handle, MaxResults=1)
            except (ClientError, BotoCoreError) as e:
                raise _classify(e, "job polling") from e
            status = resp.get("JobStatus")
            reason = resp.get("StatusMessage") or "no reason given"
            if status == "IN_PROGRESS":
                time.sleep(self.poll_interval)
                continue
            if status == "PARTIAL_SUCCESS":
                logger.warning(f"Textract job {job_handle} only partially succeeded: {reason}")
                return build_locator(self.output_bucket, self.output_key(job_handle))
            if status == "SUCCEEDED":
                return build_locator(self.output_bucket, self.output_key(job_handle))
            if status == "FAILED":
                raise ExtractionFailed(f"Textract job {job_handle} failed: {reason}")
            raise ExtractionFailed(f"Textract job {job_handle} reported unexpected status {status!r}")

    def parse_output(self, payload: bytes) -> str:
        try:
            data = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise ExtractionFailed(f"Extraction output is not valid JSON: {e}") from e
        blocks = data.get("Blocks") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise ExtractionFailed("Extraction output has no Blocks list")
        return lines_from_blocks(blocks)


def build_extractor(settings) -> Optional[BaseExtractor]:
    """Return the configured extractor, or None when extraction is not configured."""
    if not settings.extraction_configured:
        return None
    processor = settings.extraction_processor.strip().lower()
    if processor != "textract":
        raise MissingConfiguration(
            f"Unknown extraction processor '{processor}'. Choose from: ['textract']"
        )
    timeout = settings.extraction_timeout_seconds
    client = boto3.client(
        "textract",
        config=Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}),
        **settings.boto3_kwargs(),
    )
    return TextractExtractor(
        client,
        output_bucket=settings.output_bucket,
        output_prefix=settings.extraction_output_prefix,
        poll_interval=settings.extraction_poll_interval_seconds,
    )
