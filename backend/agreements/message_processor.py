"""
Inbound queue message handling.

Messages from the grant application service are decoded, validated into
one of the inbound event models and dispatched to the lifecycle engine:

    *.agreement.create                        -> create_offer
    *.agreement.withdraw                      -> withdraw_offer
    *.status.updated with status "withdrawn"  -> withdraw_offer
    anything else                             -> logged, no action

SqsConsumer long-polls a queue and deletes a message only once it has been
processed; failed messages become visible again after the visibility
timeout.
"""

from typing import Any, Dict, Optional
import asyncio
import json
import logging
import traceback

import boto3

from agreements.errors import MessageFormatError, MessageProcessingError
from agreements.transitions import AgreementStatus
from config import Settings
from models import (
    CreateAgreementEvent,
    StatusUpdatedEvent,
    WithdrawAgreementEvent,
    parse_inbound_event,
)

logger = logging.getLogger(__name__)


def create_sqs_client(settings: Settings):
    return boto3.client(
        "sqs",
        region_name=settings.aws_region,
        endpoint_url=settings.sqs_endpoint
    )


async def handle_event(engine, notification_message_id: str, body: Dict[str, Any], log: Optional[logging.Logger] = None) -> Any:
    """Dispatch a decoded message body; returns the engine result or None"""
    log = log or logger
    event = parse_inbound_event(body)

    if isinstance(event, CreateAgreementEvent):
        log.info(f"[SQS] Creating agreement from event: {notification_message_id}")
        agreement = await engine.create_offer(notification_message_id, event.data, log)
        log.info(f"[SQS] Agreement created: {agreement.get('agreementNumber')}")
        return agreement

    if isinstance(event, (WithdrawAgreementEvent, StatusUpdatedEvent)):
        data = event.data
        wants_withdraw = isinstance(event, WithdrawAgreementEvent) or data.status == AgreementStatus.WITHDRAWN
        if wants_withdraw and data.clientRef:
            log.info(f"[SQS] Withdrawing offer {data.agreementNumber or ''} for clientRef {data.clientRef}")
            return await engine.withdraw_offer(data.clientRef, data.agreementNumber, log)

    log.info(f"[SQS] No action required for event: {body.get('type') if isinstance(body, dict) else body}")
    return None


async def process_message(engine, message: Dict[str, Any], log: Optional[logging.Logger] = None) -> Any:
    """
    Process one SQS message ({"MessageId", "Body", ...}).

    Raises:
        MessageFormatError: body is not valid JSON
        MessageProcessingError: anything else went wrong
    """
    log = log or logger

    try:
        body = json.loads(message.get("Body") or "")
    except (TypeError, ValueError) as e:
        log.error(f"[SQS] Invalid message format {message.get('MessageId')}: {e}")
        raise MessageFormatError("Invalid message format", details={"message": message, "error": str(e)})

    try:
        return await handle_event(engine, message.get("MessageId"), body, log)
    except Exception as e:
        log.error(f"[SQS] Error processing message {message.get('MessageId')}: {e}")
        log.error(traceback.format_exc())
        raise MessageProcessingError("Error processing SQS message", e, message)


class SqsConsumer:
    """Long-polling consumer for one queue"""

    def __init__(self, sqs_client, queue_url: str, engine, settings: Settings):
        self.sqs_client = sqs_client
        self.queue_url = queue_url
        self.engine = engine
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def receive(self) -> list:
        response = await asyncio.to_thread(
            self.sqs_client.receive_message,
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=self.settings.sqs_max_messages,
            WaitTimeSeconds=self.settings.sqs_wait_time_seconds,
            VisibilityTimeout=self.settings.sqs_visibility_timeout
        )
        return response.get("Messages", [])

    async def handle(self, message: Dict[str, Any]) -> bool:
        """Process and delete a message; False if it was left on the queue"""
        try:
            await process_message(self.engine, message)
        except (MessageFormatError, MessageProcessingError) as e:
            logger.error(f"[SQS] Message {message.get('MessageId')} left on queue: {e.message}")
            return False

        await asyncio.to_thread(
            self.sqs_client.delete_message,
            QueueUrl=self.queue_url,
            ReceiptHandle=message["ReceiptHandle"]
        )
        return True

    async def poll_once(self) -> int:
        """Receive and handle one batch; returns the number of messages handled successfully"""
        handled = 0
        for message in await self.receive():
            if await self.handle(message):
                handled += 1
        return handled

    async def run(self):
        self._running = True
        logger.info(f"[SQS] Polling {self.queue_url}")
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[SQS] Polling {self.queue_url} failed: {e}")
                await asyncio.sleep(self.settings.sqs_wait_time_seconds)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"[SQS] Stopped polling {self.queue_url}")
