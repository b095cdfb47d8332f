"""
Invoice allocation tests
"""
import pytest
from pymongo.errors import DuplicateKeyError

from agreements.invoices import format_claim_id


class TestClaimIds:
    def test_format(self):
        assert format_claim_id(1) == "R00000001"
        assert format_claim_id(12345678) == "R12345678"

    async def test_sequence_increments(self, invoices):
        assert await invoices.generate_claim_id() == "R00000001"
        assert await invoices.generate_claim_id() == "R00000002"

    async def test_reuses_claim_id_on_snapshot(self, invoices):
        assert await invoices.get_claim_id("SFI123456789", {"claimId": "R00000042"}) == "R00000042"

    async def test_reuses_claim_id_of_first_invoice(self, invoices):
        first = await invoices.create_invoice("SFI123456789", "correlation-1")
        second = await invoices.create_invoice("SFI123456789", "correlation-2")

        assert first["claimId"] == "R00000001"
        assert second["claimId"] == "R00000001"


class TestInvoices:
    async def test_invoice_numbers_follow_count(self, invoices):
        first = await invoices.create_invoice("SFI123456789", "correlation-1")
        second = await invoices.create_invoice("SFI987654321", "correlation-2")

        assert first["invoiceNumber"] == "FRPS1"
        assert second["invoiceNumber"] == "FRPS2"
        assert second["claimId"] == "R00000002"
        assert first["_id"] is not None

    async def test_update_and_delete(self, invoices):
        invoice = await invoices.create_invoice("SFI123456789", "correlation-1")

        assert await invoices.update_invoice(invoice["invoiceNumber"], {"paymentHubRequest": {"value": 7020.0}})
        stored = await invoices.db.invoices.find_one({"invoiceNumber": "FRPS1"})
        assert stored["paymentHubRequest"] == {"value": 7020.0}

        await invoices.delete_invoice("FRPS1")
        assert await invoices.db.invoices.count_documents({}) == 0
        assert not await invoices.update_invoice("FRPS1", {"paymentHubRequest": {}})

    async def test_unique_invoice_number(self, invoices):
        await invoices.create_unique_constraints()
        await invoices.create_invoice("SFI123456789", "correlation-1")

        with pytest.raises(DuplicateKeyError):
            await invoices.db.invoices.insert_one({"invoiceNumber": "FRPS1", "agreementNumber": "SFI987654321"})
