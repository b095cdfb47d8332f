"""
Backend API Tests for the Agreements API
Testing: Health, agreement views, accept/unaccept, documents and error mapping
"""
import httpx
import pytest
from unittest.mock import AsyncMock

from agreements.errors import PaymentCalculationError
from auth import SOURCE_ENTRA, create_auth_token
from server import create_app

AGREEMENT_NUMBER = "SFI123456789"
SBI = "106284736"


@pytest.fixture
def document_store():
    documents = AsyncMock()
    documents.get_agreement_pdf.return_value = b"%PDF-1.4 sample agreement"
    return documents


@pytest.fixture
def app(settings, engine, document_store):
    return create_app(settings, engine=engine, document_store=document_store)


@pytest.fixture
async def client(app, offered_agreement):
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://agreements.test") as client:
        yield client


@pytest.fixture
def auth_headers(settings):
    return {"x-encrypted-auth": create_auth_token(SBI, settings.jwt_secret)}


class TestHealthEndpoints:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"message": "success"}


class TestViewAgreement:
    async def test_get_agreement(self, client, auth_headers):
        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["agreementNumber"] == AGREEMENT_NUMBER
        assert data["status"] == "offered"
        assert isinstance(data["_id"], str)
        assert isinstance(data["agreement"], str)

    async def test_get_agreement_by_sbi(self, client, auth_headers):
        response = await client.get(f"/api/agreements/sbi/{SBI}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["agreementNumber"] == AGREEMENT_NUMBER

    async def test_missing_token(self, client):
        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}")

        assert response.status_code == 401
        assert response.json()["error"] == "UnauthorizedError"

    async def test_token_for_other_business(self, settings, client):
        headers = {"x-encrypted-auth": create_auth_token("999999999", settings.jwt_secret)}

        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}", headers=headers)

        assert response.status_code == 401

    async def test_internal_user_sees_any_agreement(self, settings, client):
        headers = {"x-encrypted-auth": create_auth_token(None, settings.jwt_secret, source=SOURCE_ENTRA)}

        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}", headers=headers)

        assert response.status_code == 200

    async def test_unknown_agreement(self, client, auth_headers):
        response = await client.get("/api/agreements/SFI000000000", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {
            "message": "Offer not found with ID SFI000000000",
            "error": "AgreementNotFoundError",
        }

    async def test_jwt_check_can_be_disabled(self, settings, client):
        settings.jwt_enabled = False

        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}")

        assert response.status_code == 200


class TestAcceptOffer:
    async def test_accept(self, client, auth_headers, publisher):
        response = await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/accept", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["agreementNumber"] == AGREEMENT_NUMBER
        assert data["status"] == "accepted"
        assert data["claimId"] == "R00000001"
        assert data["signatureDate"] is not None
        assert data["nearestQuarterlyPaymentDate"] == "2025-09-05"
        publisher.publish_status_updated.assert_awaited_once()

    async def test_accept_twice(self, client, auth_headers):
        await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/accept", headers=auth_headers)

        response = await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/accept", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "AgreementNotFoundError"

    async def test_calculation_failure_is_bad_gateway(self, client, auth_headers, payment_calculator):
        payment_calculator.calculate_payments_based_on_actions.side_effect = PaymentCalculationError(
            503, "Service Unavailable"
        )

        response = await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/accept", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["error"] == "PaymentCalculationError"

    async def test_unaccept(self, client, auth_headers):
        await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/accept", headers=auth_headers)

        response = await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/unaccept", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"agreementNumber": AGREEMENT_NUMBER, "status": "offered"}

    async def test_unaccept_offered_agreement(self, client, auth_headers):
        response = await client.post(f"/api/agreements/{AGREEMENT_NUMBER}/unaccept", headers=auth_headers)

        assert response.status_code == 404


class TestDocuments:
    async def test_pdf(self, client, auth_headers, document_store):
        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}/document", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == b"%PDF-1.4 sample agreement"
        assert document_store.get_agreement_pdf.call_args.args[0]["agreementNumber"] == AGREEMENT_NUMBER

    async def test_pdf_not_stored(self, client, auth_headers, document_store):
        document_store.get_agreement_pdf.return_value = None

        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}/document", headers=auth_headers)

        assert response.status_code == 404

    async def test_unexpected_error(self, client, auth_headers, document_store):
        document_store.get_agreement_pdf.side_effect = RuntimeError("disk on fire")

        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}/document", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"message": "Internal server error", "error": "disk on fire"}

    async def test_schedule(self, client, auth_headers):
        response = await client.get(f"/api/agreements/{AGREEMENT_NUMBER}/schedule", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["agreementNumber"] == AGREEMENT_NUMBER
        totals = [cell["text"] for cell in data["annualPaymentSchedule"]["data"][-1]]
        assert totals == ["Total", "£102.68", "£102.68", "£205.36"]
