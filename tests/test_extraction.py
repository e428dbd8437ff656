from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from document_service.app.config import Settings
from document_service.app.exceptions import ExtractionFailed, ExtractionUnavailable, MissingConfiguration
from document_service.app.extraction import TextractExtractor, build_extractor

from conftest import textract_output


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


def _extractor(client=None, **kwargs):
    return TextractExtractor(client or MagicMock(), output_bucket="out-bucket", output_prefix="textract-output", **kwargs)


class TestExtractSync:
    def test_joins_line_blocks(self):
        client = MagicMock()
        client.detect_document_text.return_value = {
            "Blocks": [
                {"BlockType": "PAGE"},
                {"BlockType": "LINE", "Text": "Lease Agreement"},
                {"BlockType": "WORD", "Text": "Lease"},
                {"BlockType": "LINE", "Text": "Rent is due monthly"},
            ]
        }

        text = _extractor(client).extract_sync(b"bytes", "image/png")

        assert text == "Lease Agreement\nRent is due monthly"
        client.detect_document_text.assert_called_once_with(Document={"Bytes": b"bytes"})

    def test_no_blocks_gives_empty_text(self):
        client = MagicMock()
        client.detect_document_text.return_value = {}

        assert _extractor(client).extract_sync(b"x", "image/png") == ""

    @pytest.mark.parametrize(
        "code",
        ["UnsupportedDocumentException", "BadDocumentException", "InvalidParameterException", "DocumentTooLargeException"],
    )
    def test_rejected_input_raises_failed(self, code):
        client = MagicMock()
        client.detect_document_text.side_effect = _client_error(code)

        with pytest.raises(ExtractionFailed, match=code):
            _extractor(client).extract_sync(b"x", "text/plain")

    @pytest.mark.parametrize(
        "exc",
        [
            EndpointConnectionError(endpoint_url="https://textract.us-east-1.amazonaws.com"),
            ReadTimeoutError(endpoint_url="https://textract.us-east-1.amazonaws.com"),
            ClientError({"Error": {"Code": "AccessDeniedException"}}, "DetectDocumentText"),
            ClientError({"Error": {"Code": "ThrottlingException"}}, "DetectDocumentText"),
        ],
    )
    def test_service_problems_raise_unavailable(self, exc):
        client = MagicMock()
        client.detect_document_text.side_effect = exc

        with pytest.raises(ExtractionUnavailable):
            _extractor(client).extract_sync(b"x", "application/pdf")


class TestExtractAsync:
    def test_starts_job_for_blob_locator(self):
        client = MagicMock()
        client.start_document_text_detection.return_value = {"JobId": "job-1"}

        job = _extractor(client).extract_async("s3://in-bucket/users/alice/doc_1_a.pdf", "application/pdf")

        assert job == "job-1"
        client.start_document_text_detection.assert_called_once_with(
            DocumentLocation={"S3Object": {"Bucket": "in-bucket", "Name": "users/alice/doc_1_a.pdf"}},
            OutputConfig={"S3Bucket": "out-bucket", "S3Prefix": "textract-output"},
        )

    def test_missing_job_id_raises_unavailable(self):
        client = MagicMock()
        client.start_document_text_detection.return_value = {}

        with pytest.raises(ExtractionUnavailable):
            _extractor(client).extract_async("s3://in-bucket/key", "application/pdf")

    def test_await_result_polls_until_succeeded(self):
        client = MagicMock()
        client.get_document_text_detection.side_effect = [
            {"JobStatus": "IN_PROGRESS"},
            {"JobStatus": "IN_PROGRESS"},
            {"JobStatus": "SUCCEEDED"},
        ]
        extractor = _extractor(client, poll_interval=0.5)

        with patch("document_service.app.extraction.time.sleep") as mock_sleep:
            locator = extractor.await_result("job-1")

        assert locator == "s3://out-bucket/textract-output/job-1/1"
        assert client.get_document_text_detection.call_count == 3
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(0.5)

    def test_await_result_accepts_partial_success(self):
        client = MagicMock()
        client.get_document_text_detection.side_effect = [
            {"JobStatus": "IN_PROGRESS"},
            {"JobStatus": "PARTIAL_SUCCESS", "StatusMessage": "Page 3 unreadable"},
        ]
        extractor = _extractor(client, poll_interval=0.5)

        with patch("document_service.app.extraction.time.sleep") as mock_sleep:
            locator = extractor.await_result("job-1")

        assert locator == "s3://out-bucket/textract-output/job-1/1"
        assert mock_sleep.call_count == 1

    @pytest.mark.parametrize("response", [{}, {"JobStatus": "EXPIRED"}, {"JobStatus": None}])
    def test_await_result_unknown_status_raises_failed(self, response):
        client = MagicMock()
        client.get_document_text_detection.return_value = response

        with patch("document_service.app.extraction.time.sleep") as mock_sleep:
            with pytest.raises(ExtractionFailed, match="unexpected status"):
                _extractor(client).await_result("job-1")

        assert client.get_document_text_detection.call_count == 1
        mock_sleep.assert_not_called()

    def test_empty_output_prefix_builds_clean_locator(self):
        client = MagicMock()
        client.start_document_text_detection.return_value = {"JobId": "job-1"}
        client.get_document_text_detection.return_value = {"JobStatus": "SUCCEEDED"}
        extractor = TextractExtractor(client, output_bucket="out-bucket", output_prefix="")

        extractor.extract_async("s3://in-bucket/key", "application/pdf")
        locator = extractor.await_result("job-1")

        assert locator == "s3://out-bucket/job-1/1"
        client.start_document_text_detection.assert_called_once_with(
            DocumentLocation={"S3Object": {"Bucket": "in-bucket", "Name": "key"}},
            OutputConfig={"S3Bucket": "out-bucket"},
        )

    def test_await_result_failed_job_raises_failed(self):
        client = MagicMock()
        client.get_document_text_detection.return_value = {
            "JobStatus": "FAILED",
            "StatusMessage": "Unsupported document format",
        }

        with pytest.raises(ExtractionFailed, match="Unsupported document format"):
            _extractor(client).await_result("job-1")


class TestParseOutput:
    def test_reads_line_blocks(self):
        assert _extractor().parse_output(textract_output("one", "two")) == "one\ntwo"

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"Blocks": "nope"}', b"{}"])
    def test_malformed_output_raises_failed(self, payload):
        with pytest.raises(ExtractionFailed):
            _extractor().parse_output(payload)


class TestBuildExtractor:
    def test_returns_none_when_not_configured(self):
        assert build_extractor(Settings(extraction_processor="")) is None

    def test_builds_textract_extractor(self):
        settings = Settings(
            s3_bucket="uploads",
            extraction_processor="textract",
            extraction_output_prefix="out/",
        )

        extractor = build_extractor(settings)

        assert isinstance(extractor, TextractExtractor)
        assert extractor.output_bucket == "uploads"
        assert extractor.output_prefix == "out"

    def test_unknown_processor_is_a_configuration_error(self):
        with pytest.raises(MissingConfiguration, match="Unknown extraction processor"):
            build_extractor(Settings(extraction_processor="tesseract"))
