"""Pytest configuration and shared fixtures."""

import copy
import uuid

import pytest
from unittest.mock import AsyncMock
from mongomock_motor import AsyncMongoMockClient

from agreements.invoices import InvoiceAllocator
from agreements.lifecycle import LifecycleEngine
from agreements.payment_hub import PaymentHubClient
from agreements.store import AgreementStore
from config import Settings
from seed import SAMPLE_AGREEMENT, SAMPLE_VERSION, sample_version

TEST_JWT_SECRET = "test-agreements-jwt-secret"


@pytest.fixture
def settings() -> Settings:
    """Settings with the payment hub disabled and a test bucket"""
    return Settings(
        env="test",
        jwt_secret=TEST_JWT_SECRET,
        files_s3_bucket="agreements-test-bucket",
        payment_hub_enabled=False,
        view_agreement_uri="http://agreements.test",
    )


@pytest.fixture
def db():
    """Fresh in-memory Mongo database per test"""
    client = AsyncMongoMockClient()
    return client[f"agreements-test-{uuid.uuid4().hex}"]


@pytest.fixture
def store(db) -> AgreementStore:
    return AgreementStore(db)


@pytest.fixture
def invoices(db) -> InvoiceAllocator:
    return InvoiceAllocator(db)


@pytest.fixture
def sample_payment() -> dict:
    return copy.deepcopy(SAMPLE_VERSION["payment"])


@pytest.fixture
def payment_calculator(sample_payment) -> AsyncMock:
    calculator = AsyncMock()
    calculator.calculate_payments_based_on_actions.return_value = sample_payment
    calculator.calculate_payments_based_on_parcels.return_value = sample_payment
    return calculator


@pytest.fixture
def publisher() -> AsyncMock:
    publisher = AsyncMock()
    publisher.publish_status_updated.return_value = {"MessageId": "sns-message-1"}
    return publisher


@pytest.fixture
def engine(store, payment_calculator, publisher, invoices, settings) -> LifecycleEngine:
    return LifecycleEngine(
        store=store,
        payment_calculator=payment_calculator,
        payment_hub=PaymentHubClient(settings),
        publisher=publisher,
        invoices=invoices,
        settings=settings
    )


@pytest.fixture
async def offered_agreement(store) -> dict:
    """The sample agreement stored in the offered status"""
    await store.create_agreement_with_versions(dict(SAMPLE_AGREEMENT), [sample_version()])
    return await store.get_by_agreement_number(SAMPLE_AGREEMENT["agreementNumber"])


@pytest.fixture
def create_offer_payload() -> dict:
    """Offer data as sent on the create agreement queue"""
    return {
        "clientRef": "client-ref-100",
        "code": "frps-private-beta",
        "identifiers": {"sbi": 106284736, "frn": "1234567890", "crn": "1102838829", "defraId": "1234567890"},
        "answers": {
            "agreementName": "Moorland agreement",
            "scheme": "SFI",
            "actionApplications": [
                {
                    "code": "CMOR1",
                    "sheetId": "SX0679",
                    "parcelId": "9238",
                    "appliedFor": {"unit": "ha", "quantity": 4.53411078},
                },
            ],
        },
        "applicant": copy.deepcopy(SAMPLE_VERSION["applicant"]),
    }
