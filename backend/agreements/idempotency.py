"""
IDEMPOTENT EVENT INGESTION

Inbound queue messages carry a provider-assigned message id that is stored
on the version it produced (`notificationMessageId`, unique index). A
message seen twice resolves to the existing agreement instead of a second
version.

Usage:
    from agreements.idempotency import ensure_idempotent

    result = await ensure_idempotent(store, notification_message_id)
    if result.is_duplicate:
        return result.existing
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any
import logging

from agreements.errors import AgreementValidationError

logger = logging.getLogger(__name__)


@dataclass
class IdempotencyResult:
    """Result of idempotency check"""
    notification_message_id: str
    is_duplicate: bool
    existing: Optional[Dict[str, Any]] = None


async def ensure_idempotent(store, notification_message_id: Optional[str]) -> IdempotencyResult:
    """
    Check whether a message id has already produced a version.

    Args:
        store: AgreementStore
        notification_message_id: The inbound message id

    Returns:
        IdempotencyResult; `existing` is the agreement snapshot for duplicates
    """
    if not notification_message_id:
        raise AgreementValidationError("A notification message id is required")

    existing = await store.get_by_notification_message_id(notification_message_id)

    if existing:
        logger.info(
            f"[IDEMPOTENT] Duplicate message detected: {notification_message_id} "
            f"already produced {existing.get('agreementNumber')}"
        )
        return IdempotencyResult(
            notification_message_id=notification_message_id,
            is_duplicate=True,
            existing=existing
        )

    logger.debug(f"[IDEMPOTENT] New message: {notification_message_id}")

    return IdempotencyResult(
        notification_message_id=notification_message_id,
        is_duplicate=False
    )
