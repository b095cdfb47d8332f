"""
Agreement Lifecycle Modules
"""
from .errors import (
    AgreementError,
    AgreementValidationError,
    AgreementNotFoundError,
    AgreementStoreError,
    UnauthorizedError,
    UpstreamServiceError,
    PaymentCalculationError,
    PaymentCalculationMissingPaymentError,
    PaymentHubError,
    EventPublishError,
    MessageFormatError,
    MessageProcessingError
)

from .money import (
    to_decimal,
    round_financial,
    safe_add,
    pence_to_pounds,
    format_currency,
    format_payment_date,
    MoneyPrecisionError
)

from .transitions import (
    AgreementStatus,
    Transition,
    TransitionTable,
    AGREEMENT_TRANSITIONS
)

from .saga import (
    Saga,
    SagaStep
)

from .store import AgreementStore

from .lifecycle import LifecycleEngine

__all__ = [
    # Errors
    'AgreementError',
    'AgreementValidationError',
    'AgreementNotFoundError',
    'AgreementStoreError',
    'UnauthorizedError',
    'UpstreamServiceError',
    'PaymentCalculationError',
    'PaymentCalculationMissingPaymentError',
    'PaymentHubError',
    'EventPublishError',
    'MessageFormatError',
    'MessageProcessingError',

    # Money
    'to_decimal',
    'round_financial',
    'safe_add',
    'pence_to_pounds',
    'format_currency',
    'format_payment_date',
    'MoneyPrecisionError',

    # Status transitions
    'AgreementStatus',
    'Transition',
    'TransitionTable',
    'AGREEMENT_TRANSITIONS',

    # Saga
    'Saga',
    'SagaStep',

    # Persistence and lifecycle
    'AgreementStore',
    'LifecycleEngine',
]
