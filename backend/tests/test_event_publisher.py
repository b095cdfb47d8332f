"""
Event publisher tests
Testing: CloudEvents envelope, retry classification and backoff
"""
import json

import pytest
from unittest.mock import AsyncMock, MagicMock
from botocore.exceptions import ClientError, EndpointConnectionError

from agreements.errors import EventPublishError
from agreements.event_publisher import (
    EventPublisher,
    backoff_delay,
    build_cloud_event,
    is_retryable_error,
)
from config import Settings


def client_error(status: int, code: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": f"{code} from SNS"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Publish"
    )


@pytest.fixture
def no_sleep(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr("agreements.event_publisher.asyncio.sleep", sleep)
    return sleep


@pytest.fixture
def sns_client():
    return MagicMock()


@pytest.fixture
def event_publisher(sns_client):
    return EventPublisher(sns_client, Settings(sns_max_attempts=3))


def status_event() -> dict:
    return {
        "topicArn": "arn:aws:sns:eu-west-2:000000000000:agreement_status_updated",
        "type": "io.onsite.agreement.status.updated",
        "time": "2025-09-01T10:00:00+00:00",
        "data": {"agreementNumber": "SFI123456789", "status": "accepted"},
    }


class TestRetry:
    async def test_retries_server_error_then_succeeds(self, event_publisher, sns_client, no_sleep):
        """500 on attempt 1, success on attempt 2"""
        sns_client.publish.side_effect = [client_error(500, "InternalError"), {"MessageId": "m-1"}]
        log = MagicMock()

        response = await event_publisher.publish_event(status_event(), log)

        assert response == {"MessageId": "m-1"}
        assert sns_client.publish.call_count == 2
        assert log.error.call_count == 1
        assert log.error.call_args.kwargs["extra"] == {"attempt": 1}
        no_sleep.assert_awaited_once_with(1.0)

    async def test_client_error_is_not_retried(self, event_publisher, sns_client, no_sleep):
        sns_client.publish.side_effect = client_error(400, "InvalidParameter")
        log = MagicMock()

        with pytest.raises(ClientError):
            await event_publisher.publish_event(status_event(), log)

        assert sns_client.publish.call_count == 1
        no_sleep.assert_not_awaited()

    async def test_gives_up_after_max_attempts(self, event_publisher, sns_client, no_sleep):
        sns_client.publish.side_effect = client_error(503, "ServiceUnavailable")

        with pytest.raises(ClientError):
            await event_publisher.publish_event(status_event(), MagicMock())

        assert sns_client.publish.call_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    async def test_requires_topic_and_client(self, sns_client):
        with pytest.raises(EventPublishError):
            await EventPublisher(None, Settings()).publish_event(status_event())

        event = dict(status_event(), topicArn="")
        with pytest.raises(EventPublishError):
            await EventPublisher(sns_client, Settings()).publish_event(event)
        sns_client.publish.assert_not_called()


class TestEnvelope:
    async def test_publishes_cloud_event(self, event_publisher, sns_client):
        sns_client.publish.return_value = {"MessageId": "m-1"}

        await event_publisher.publish_status_updated({"agreementNumber": "SFI123456789", "status": "offered"})

        kwargs = sns_client.publish.call_args.kwargs
        assert kwargs["TopicArn"] == Settings().sns_topic_arn_status_updated
        message = json.loads(kwargs["Message"])
        assert message["specversion"] == "1.0"
        assert message["type"] == Settings().sns_topic_type_status_updated
        assert message["source"] == Settings().sns_event_source
        assert message["datacontenttype"] == "application/json"
        assert message["data"] == {"agreementNumber": "SFI123456789", "status": "offered"}

    def test_cloud_event_ids_are_unique(self):
        first = build_cloud_event("t", {}, "s")
        second = build_cloud_event("t", {}, "s")
        assert first["id"] != second["id"]


class TestClassification:
    def test_retryable(self):
        assert is_retryable_error(client_error(500, "InternalError"))
        assert is_retryable_error(client_error(400, "ThrottlingException"))
        assert is_retryable_error(EndpointConnectionError(endpoint_url="http://localhost:4566"))
        assert is_retryable_error(TimeoutError())

    def test_not_retryable(self):
        assert not is_retryable_error(client_error(400, "InvalidParameter"))
        assert not is_retryable_error(client_error(403, "AuthorizationError"))
        assert not is_retryable_error(ValueError("bad message"))

    def test_backoff_is_capped(self):
        assert [backoff_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
