import json
import os
import time

import boto3
import pytest
from moto import mock_aws

from document_service.app.blob_store import S3BlobStore
from document_service.app.cache import VolatileCache
from document_service.app.exceptions import ExtractionUnavailable
from document_service.app.extraction import BaseExtractor, lines_from_blocks
from document_service.app.jobs import InlineJobRunner
from document_service.app.orchestrator import IngestionOrchestrator
from document_service.app.record_store import DynamoDBRecordStore

REGION = "us-east-1"
BUCKET = "test-document-bucket"
TABLE = "DocumentRecords"
MAX_BYTES = 10 * 1024 * 1024


def textract_output(*lines: str) -> bytes:
    """Build a Textract-style JSON output artifact."""
    blocks = [{"BlockType": "PAGE"}]
    blocks += [{"BlockType": "LINE", "Text": line} for line in lines]
    return json.dumps({"JobStatus": "SUCCEEDED", "Blocks": blocks}).encode("utf-8")


class FakeExtractor(BaseExtractor):
    """Scriptable stand-in for the extraction service."""

    def __init__(self, text="Hello extracted world", sync_error=None, async_error=None,
                 delay=0.0, output_locator=None):
        self.text = text
        self.sync_error = sync_error
        self.async_error = async_error
        self.delay = delay
        self.output_locator = output_locator
        self.sync_calls = 0
        self.async_calls = []

    def extract_sync(self, content, mime_type):
        self.sync_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.sync_error is not None:
            raise self.sync_error
        return self.text

    def extract_async(self, blob_locator, mime_type):
        self.async_calls.append((blob_locator, mime_type))
        if self.async_error is not None:
            raise self.async_error
        return "job-123"

    def await_result(self, job_handle):
        if self.output_locator is None:
            raise ExtractionUnavailable("no output configured")
        return self.output_locator

    def parse_output(self, payload):
        return lines_from_blocks(json.loads(payload)["Blocks"])


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = REGION


@pytest.fixture(scope="function")
def aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture
def s3_client(aws):
    return boto3.client("s3", region_name=REGION)


@pytest.fixture
def blob_store(s3_client):
    store = S3BlobStore(s3_client, BUCKET, MAX_BYTES)
    store.ensure_bucket()
    return store


@pytest.fixture
def record_store(aws):
    store = DynamoDBRecordStore(boto3.resource("dynamodb", region_name=REGION), TABLE)
    store.ensure_table()
    return store


@pytest.fixture
def cache():
    return VolatileCache()


@pytest.fixture
def job_runner():
    return InlineJobRunner()


@pytest.fixture
def make_orchestrator(blob_store, record_store, cache, job_runner):
    """Factory so each test can pick its own extractor, stores and timeout."""
    created = []

    def _make(extractor=None, **overrides):
        kwargs = {
            "blob_store": blob_store,
            "record_store": record_store,
            "cache": cache,
            "extractor": extractor,
            "job_runner": job_runner,
            "extraction_timeout": 2.0,
        }
        kwargs.update(overrides)
        orchestrator = IngestionOrchestrator(**kwargs)
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.shutdown(wait=False)
