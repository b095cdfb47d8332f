"""
Agreement PDF storage (S3).
"""

from typing import Any, Dict, Optional
import asyncio
import logging

import boto3
from botocore.exceptions import ClientError

from agreements.errors import AgreementError, UpstreamServiceError
from agreements.retention import build_agreement_pdf_key, get_retention_prefix
from config import Settings

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def create_s3_client(settings: Settings):
    return boto3.client(
        "s3",
        region_name=settings.files_s3_region,
        endpoint_url=settings.files_s3_endpoint
    )


class AgreementDocumentStore:
    def __init__(self, s3_client, settings: Settings):
        self.s3_client = s3_client
        self.settings = settings

    def pdf_key(self, snapshot: Dict[str, Any]) -> str:
        """Object key for the agreement's PDF, under its retention prefix"""
        payment = snapshot.get("payment") or {}
        start = payment.get("agreementStartDate")
        end = payment.get("agreementEndDate")
        if not start or not end:
            raise AgreementError(
                f"Agreement {snapshot.get('agreementNumber')} has no start/end dates to locate its document"
            )
        prefix = get_retention_prefix(start, end, self.settings.retention)
        return build_agreement_pdf_key(prefix, snapshot["agreementNumber"], snapshot.get("version") or 1)

    async def get_pdf(self, key: str) -> Optional[bytes]:
        """PDF bytes, or None when the object does not exist"""
        if not self.settings.files_s3_bucket:
            raise UpstreamServiceError("PDF service configuration missing: FILES_S3_BUCKET not set")

        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object,
                Bucket=self.settings.files_s3_bucket,
                Key=key
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in MISSING_KEY_CODES:
                logger.info(f"[S3] No document at {key}")
                return None
            logger.error(f"[S3] Fetching {key} failed: {e}")
            raise UpstreamServiceError(f"Failed to fetch agreement document: {code}")

        body = response["Body"]
        return await asyncio.to_thread(body.read)

    async def get_agreement_pdf(self, snapshot: Dict[str, Any]) -> Optional[bytes]:
        return await self.get_pdf(self.pdf_key(snapshot))
