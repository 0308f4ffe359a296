"""
Artifact Storage
================

Page documents and run summaries on AWS S3.

Object keys:
- scrape-markdown/{lead_id}/{run_id}.md
- jobs/{task_id}/results.json
"""

import json
import logging
from typing import Any, Dict

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from leadpipe.config import PipelineSettings
from leadpipe.errors import StorageError

logger = logging.getLogger(__name__)


def page_document_key(lead_id: str, run_id: str) -> str:
    return f"scrape-markdown/{lead_id}/{run_id}.md"


def run_summary_key(task_id: str) -> str:
    return f"jobs/{task_id}/results.json"


class ArtifactStore:
    """Write-only view of the campaign data bucket."""

    def __init__(self, bucket: str, s3_client):
        self.bucket = bucket
        self.s3_client = s3_client

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "ArtifactStore":
        s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_s3_region,
            config=Config(signature_version='s3v4')
        )
        return cls(settings.aws_s3_bucket, s3_client)

    def _put(self, key: str, body: str, content_type: str) -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 upload of {key} failed: {e}") from e

        logger.debug(f"Uploaded {len(body) / 1024:.1f}KB to s3://{self.bucket}/{key}")
        return key

    def put_page_document(self, lead_id: str, run_id: str, markdown: str) -> str:
        return self._put(page_document_key(lead_id, run_id), markdown, "text/markdown")

    def put_run_summary(self, task_id: str, results: Dict[str, Any]) -> str:
        return self._put(run_summary_key(task_id), json.dumps(results, default=str, indent=2), "application/json")
