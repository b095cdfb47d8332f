"""
Agreement service exceptions.

Every error raised by the agreements package derives from AgreementError and
carries an HTTP-equivalent status_code; the HTTP layer maps them to responses.
"""

from typing import Any, Dict, Optional


class AgreementError(Exception):
    """Base exception for agreement errors."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AgreementValidationError(AgreementError):
    """Raised when input is missing or malformed."""
    status_code = 400


class UnauthorizedError(AgreementError):
    """Raised when the caller may not act on the agreement."""
    status_code = 401


class AgreementNotFoundError(AgreementError):
    """
    Raised when a transition matched no document.

    The agreement may be missing or in another status; current_status is set
    when a follow-up lookup found the agreement.
    """
    status_code = 404

    def __init__(
        self,
        agreement_ref: str,
        expected_status: Optional[str] = None,
        current_status: Optional[str] = None,
        message: Optional[str] = None
    ):
        self.agreement_ref = agreement_ref
        self.expected_status = expected_status
        self.current_status = current_status
        super().__init__(
            message or f"Offer not found with ID {agreement_ref}",
            details={
                "agreementRef": agreement_ref,
                "expectedStatus": expected_status,
                "currentStatus": current_status,
            }
        )


class AgreementStoreError(AgreementError):
    """Raised when the document store fails."""
    status_code = 500


class UpstreamServiceError(AgreementError):
    """Raised when a downstream dependency fails."""
    status_code = 502


class PaymentCalculationError(UpstreamServiceError):
    """Raised when the payment calculation service returns a non-2xx response."""

    def __init__(self, status: int, reason: str, body: str = ""):
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(
            f"Land Grants Payment calculate request failed: {status} {reason} {body}".rstrip(),
            details={"status": status, "reason": reason}
        )


class PaymentCalculationMissingPaymentError(UpstreamServiceError):
    """Raised when a successful calculation response has no payment object."""

    def __init__(self):
        super().__init__('Land Grants response missing "payment" field')


class PaymentHubError(UpstreamServiceError):
    """Raised when the payment hub rejects or fails a request."""
    pass


class EventPublishError(UpstreamServiceError):
    """Raised when a lifecycle event cannot be published."""
    pass


class MessageFormatError(AgreementError):
    """Raised when an inbound queue message body is not valid JSON."""
    status_code = 422


class MessageProcessingError(AgreementError):
    """Raised when an inbound queue message fails to process."""

    def __init__(self, message: str, original_error: Exception, queue_message: Optional[Dict[str, Any]] = None):
        self.original_error = original_error
        self.queue_message = queue_message
        super().__init__(
            message,
            details={"originalError": str(original_error)}
        )
