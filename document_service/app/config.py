import os
from functools import lru_cache
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_users(raw: str) -> Dict[str, str]:
    """Parse "user:password,user2:password2" into a dict."""
    users = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk or ":" not in chunk:
            continue
        username, password = chunk.split(":", 1)
        users[username.strip()] = password
    return users


class Settings(BaseModel):
    """Runtime configuration for the document service."""

    aws_region: str = "us-east-1"
    localstack_endpoint: Optional[str] = None

    s3_bucket: str = "document-service-bucket"
    dynamodb_table_documents: str = "DocumentRecords"

    extraction_processor: str = ""
    extraction_output_bucket: str = ""
    extraction_output_prefix: str = "textract-output"
    extraction_timeout_seconds: float = Field(30.0, gt=0)
    extraction_poll_interval_seconds: float = Field(5.0, ge=0)

    max_upload_bytes: int = Field(MAX_UPLOAD_BYTES, gt=0)
    background_max_workers: int = Field(4, ge=1)
    auto_create_resources: bool = True

    api_users: Dict[str, str] = Field(default_factory=lambda: {"admin": "password"})

    @property
    def extraction_configured(self) -> bool:
        return bool(self.extraction_processor.strip())

    @property
    def output_bucket(self) -> str:
        return self.extraction_output_bucket or self.s3_bucket

    def boto3_kwargs(self) -> dict:
        kwargs = {"region_name": self.aws_region}
        if self.localstack_endpoint:
            kwargs["endpoint_url"] = self.localstack_endpoint
        return kwargs

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "aws_region": os.getenv("AWS_REGION", "us-east-1"),
            "localstack_endpoint": os.getenv("LOCALSTACK_ENDPOINT") or None,
            "s3_bucket": os.getenv("S3_BUCKET", "document-service-bucket"),
            "dynamodb_table_documents": os.getenv("DYNAMODB_TABLE_DOCUMENTS", "DocumentRecords"),
            "extraction_processor": os.getenv("EXTRACTION_PROCESSOR", ""),
            "extraction_output_bucket": os.getenv("EXTRACTION_OUTPUT_BUCKET", ""),
            "extraction_output_prefix": os.getenv("EXTRACTION_OUTPUT_PREFIX", "textract-output"),
            "extraction_timeout_seconds": float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "30")),
            "extraction_poll_interval_seconds": float(os.getenv("EXTRACTION_POLL_INTERVAL_SECONDS", "5")),
            "max_upload_bytes": int(os.getenv("MAX_UPLOAD_BYTES", str(MAX_UPLOAD_BYTES))),
            "background_max_workers": int(os.getenv("BACKGROUND_MAX_WORKERS", "4")),
            "auto_create_resources": _env_flag("AUTO_CREATE_RESOURCES", True),
        }
        raw_users = os.getenv("API_USERS")
        if raw_users is not None:
            values["api_users"] = _parse_users(raw_users)
        return cls(**values)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
