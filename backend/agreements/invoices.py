"""
INVOICE ALLOCATION

Provides:
1. Claim ids from an atomic counter (R00000001, R00000002, ...)
2. Invoice numbers FRPS<n>, n = existing invoice count + 1
3. Unique index on invoice numbers

Invoice numbers are derived from a count taken before the insert, so two
concurrent creations can compute the same number; the unique index turns
the second insert into a DuplicateKeyError rather than a duplicate invoice.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Dict, Any, Optional
import logging

from agreements.errors import AgreementStoreError
from models import Invoice

logger = logging.getLogger(__name__)

CLAIM_ID_COUNTER = "claimIds"
INVOICE_PREFIX = "FRPS"


def format_claim_id(seq: int) -> str:
    return f"R{seq:08d}"


class InvoiceAllocator:
    """
    Creates the invoice and claim id for an accepted agreement.

    Uses find_one_and_update with $inc for the claim id sequence.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_next_sequence(self, name: str) -> int:
        result = await self.db.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return result["seq"]

    async def generate_claim_id(self) -> str:
        return format_claim_id(await self.get_next_sequence(CLAIM_ID_COUNTER))

    async def get_claim_id(self, agreement_number: str, snapshot: Optional[Dict[str, Any]] = None) -> str:
        """
        Reuse the claim id already on the agreement or its first invoice,
        otherwise allocate a new one.
        """
        if snapshot and snapshot.get("claimId"):
            return snapshot["claimId"]

        existing = await self.db.invoices.find_one(
            {"agreementNumber": agreement_number},
            sort=[("createdAt", 1)]
        )
        if existing and existing.get("claimId"):
            return existing["claimId"]

        return await self.generate_claim_id()

    async def next_invoice_number(self) -> str:
        count = await self.db.invoices.count_documents({})
        return f"{INVOICE_PREFIX}{count + 1}"

    async def create_invoice(
        self,
        agreement_number: str,
        correlation_id: Optional[str],
        snapshot: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Insert the invoice for an agreement and return it with its _id"""
        try:
            claim_id = await self.get_claim_id(agreement_number, snapshot)
            invoice = Invoice(
                agreementNumber=agreement_number,
                invoiceNumber=await self.next_invoice_number(),
                correlationId=correlation_id,
                claimId=claim_id
            )
            doc = invoice.model_dump(exclude={"invoice_id"})
            result = await self.db.invoices.insert_one(doc)
        except PyMongoError as e:
            logger.error(f"[INVOICE] Invoice creation failed for {agreement_number}: {e}")
            raise AgreementStoreError(f"Invoice not created for Agreement ID {agreement_number}: {e}")

        doc["_id"] = result.inserted_id
        logger.info(f"[INVOICE] Created {doc['invoiceNumber']} (claim {claim_id}) for {agreement_number}")
        return doc

    async def update_invoice(self, invoice_number: str, fields: Dict[str, Any]) -> bool:
        result = await self.db.invoices.update_one(
            {"invoiceNumber": invoice_number},
            {"$set": {**fields, "updatedAt": datetime.utcnow()}}
        )
        return result.matched_count > 0

    async def delete_invoice(self, invoice_number: str) -> None:
        await self.db.invoices.delete_one({"invoiceNumber": invoice_number})
        logger.info(f"[INVOICE] Removed {invoice_number}")

    async def create_unique_constraints(self):
        """
        Create unique indexes on invoice numbers.
        """
        try:
            await self.db.invoices.create_index(
                [("invoiceNumber", 1)],
                unique=True,
                name="unique_invoice_number"
            )
            await self.db.invoices.create_index([("agreementNumber", 1)], name="invoice_agreement_number")
            await self.db.invoices.create_index([("correlationId", 1)], name="invoice_correlation_id")
            logger.info("[INVOICE] Invoice indexes created")
        except Exception as e:
            logger.warning(f"[INVOICE] Index creation warning: {e}")
