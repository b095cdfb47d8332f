"""
Lifecycle event publisher.

Events are wrapped in a CloudEvents 1.0 envelope and published to SNS.
Transient failures (5xx, throttling, timeouts, connection errors) are
retried with exponential backoff; anything else fails on the first attempt.
The last error is re-raised once attempts run out.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import asyncio
import json
import logging
import uuid

import boto3
from botocore.exceptions import ConnectionError as BotoConnectionError, HTTPClientError

from agreements.errors import EventPublishError
from config import Settings

logger = logging.getLogger(__name__)

SPEC_VERSION = "1.0"
DATA_CONTENT_TYPE = "application/json"
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 5.0

RETRYABLE_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "KMSThrottlingException",
}
RETRYABLE_NAME_MARKERS = ("Timeout", "Throttl", "Network", "Connection", "Socket")


def create_sns_client(settings: Settings):
    return boto3.client(
        "sns",
        region_name=settings.aws_region,
        endpoint_url=settings.sns_endpoint
    )


def _error_status(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return getattr(error, "status_code", None)


def _error_code(error: Exception) -> str:
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code") or ""
    return getattr(error, "code", None) or ""


def is_retryable_error(error: Exception) -> bool:
    """True for HTTP 5xx, throttling, timeouts and network failures"""
    if isinstance(error, (BotoConnectionError, HTTPClientError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    status = _error_status(error)
    if isinstance(status, int) and status >= 500:
        return True

    code = _error_code(error)
    if code in RETRYABLE_ERROR_CODES:
        return True

    name = f"{type(error).__name__} {code}"
    return any(marker in name for marker in RETRYABLE_NAME_MARKERS)


def backoff_delay(attempt: int) -> float:
    """Delay after failed attempt n (1-based): 1s, 2s, 4s, capped at 5s"""
    return min(BASE_DELAY_SECONDS * (2 ** (attempt - 1)), MAX_DELAY_SECONDS)


def build_cloud_event(event_type: str, data: Dict[str, Any], source: str, time: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "source": source,
        "specversion": SPEC_VERSION,
        "type": event_type,
        "time": time or datetime.now(timezone.utc).isoformat(),
        "datacontenttype": DATA_CONTENT_TYPE,
        "data": data,
    }


class EventPublisher:
    def __init__(self, sns_client, settings: Settings):
        self.sns_client = sns_client
        self.settings = settings

    async def publish_event(
        self,
        event: Dict[str, Any],
        log: Optional[logging.Logger] = None,
        client=None
    ) -> Dict[str, Any]:
        """
        Publish {topicArn, type, time, data} as a CloudEvent.

        Returns the SNS publish response. Raises the last publish error once
        attempts are exhausted, or at once for non-retryable errors.
        """
        log = log or logger
        client = client or self.sns_client
        topic_arn = event.get("topicArn")

        if client is None:
            raise EventPublishError("SNS client not initialised")
        if not topic_arn:
            raise EventPublishError("Event has no topicArn")

        envelope = build_cloud_event(
            event_type=event["type"],
            data=event.get("data") or {},
            source=self.settings.sns_event_source,
            time=event.get("time")
        )
        message = json.dumps(envelope, default=str)
        max_attempts = max(1, self.settings.sns_max_attempts)

        for attempt in range(1, max_attempts + 1):
            try:
                response = await asyncio.to_thread(client.publish, TopicArn=topic_arn, Message=message)
                log.info(f"[SNS] Published {envelope['type']} ({envelope['id']}) to {topic_arn}")
                return response
            except Exception as e:
                retryable = is_retryable_error(e)
                log.error(
                    f"[SNS] Publish of {envelope['type']} failed on attempt {attempt}/{max_attempts}: {e}",
                    extra={"attempt": attempt}
                )
                if not retryable or attempt == max_attempts:
                    raise
                await asyncio.sleep(backoff_delay(attempt))

    async def publish_status_updated(
        self,
        data: Dict[str, Any],
        log: Optional[logging.Logger] = None
    ) -> Dict[str, Any]:
        """Publish an agreement status update to the configured topic"""
        return await self.publish_event(
            {
                "topicArn": self.settings.sns_topic_arn_status_updated,
                "type": self.settings.sns_topic_type_status_updated,
                "time": datetime.now(timezone.utc).isoformat(),
                "data": data,
            },
            log
        )
