"""
Seed script for local development.

Creates:
- 1 offered agreement (SFI123456789, sbi 106284736) with a payment schedule

Usage:
    python seed.py
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from datetime import datetime
from pathlib import Path
import copy
import sys

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent))

from agreements.store import AgreementStore
from config import load_settings

SAMPLE_AGREEMENT = {
    "agreementNumber": "SFI123456789",
    "agreementName": "Sample Agreement",
    "frn": "1234567890",
    "sbi": "106284736",
    "clientRef": "client-ref-002",
}

SAMPLE_VERSION = {
    "notificationMessageId": "sample-notification-1",
    "agreementName": "Sample Agreement",
    "correlationId": "correlation-sample-1",
    "clientRef": "client-ref-002",
    "code": "frps-private-beta",
    "scheme": "SFI",
    "identifiers": {
        "sbi": "106284736",
        "frn": "1234567890",
        "crn": "1234567890",
        "defraId": "1234567890",
    },
    "status": "offered",
    "signatureDate": None,
    "actionApplications": [
        {
            "code": "CMOR1",
            "sheetId": "SX0679",
            "parcelId": "9238",
            "appliedFor": {"unit": "ha", "quantity": 4.53411078},
        },
        {
            "code": "UPL1",
            "sheetId": "SX0679",
            "parcelId": "9238",
            "appliedFor": {"unit": "ha", "quantity": 4.53411078},
        },
    ],
    "application": None,
    "payment": {
        "agreementStartDate": "2025-09-01",
        "agreementEndDate": "2028-09-01",
        "frequency": "Quarterly",
        "agreementTotalPence": 702000,
        "annualTotalPence": 234000,
        "parcelItems": {
            "1": {
                "code": "CMOR1",
                "description": "Assess moorland and produce a written record",
                "unit": "ha",
                "quantity": 4.53411078,
                "rateInPence": 1060,
                "annualPaymentPence": 4806,
                "sheetId": "SX0679",
                "parcelId": "9238",
            },
            "2": {
                "code": "UPL1",
                "description": "Moderate livestock grazing on moorland",
                "unit": "ha",
                "quantity": 4.53411078,
                "rateInPence": 2000,
                "annualPaymentPence": 9068,
                "sheetId": "SX0679",
                "parcelId": "9238",
            },
        },
        "agreementLevelItems": {
            "1": {
                "code": "CMOR1",
                "description": "Assess moorland and produce a written record - agreement level",
                "annualPaymentPence": 27200,
            },
        },
        "payments": [
            {
                "paymentDate": "2025-12-05",
                "totalPaymentPence": 10268,
                "lineItems": [
                    {"parcelItemId": 1, "paymentPence": 1201},
                    {"parcelItemId": 2, "paymentPence": 2267},
                    {"agreementLevelItemId": 1, "paymentPence": 6800},
                ],
            },
            {
                "paymentDate": "2026-03-05",
                "totalPaymentPence": 10268,
                "lineItems": [
                    {"parcelItemId": 1, "paymentPence": 1201},
                    {"parcelItemId": 2, "paymentPence": 2267},
                    {"agreementLevelItemId": 1, "paymentPence": 6800},
                ],
            },
        ],
    },
    "applicant": {
        "business": {
            "name": "J&S Hartley",
            "email": {"address": "test@example.com"},
            "phone": {"mobile": "01234031670"},
            "address": {"line1": "Mason House Farm Clitheroe Rd", "city": "Clitheroe", "postalCode": "BB7 3DD"},
        },
        "customer": {"name": {"title": "Mr.", "first": "Edward", "last": "Jones"}},
    },
    "claimId": None,
}


def sample_version(**overrides):
    """Deep copy of the sample version with fresh timestamps"""
    version = copy.deepcopy(SAMPLE_VERSION)
    now = datetime.utcnow()
    version.update({"createdAt": now, "updatedAt": now})
    version.update(overrides)
    return version


async def seed_database(db):
    """Seed the database with the sample agreement (skipped if present)"""
    store = AgreementStore(db)
    await store.ensure_indexes()

    existing = await store.get_by_notification_message_id(SAMPLE_VERSION["notificationMessageId"])
    if existing:
        print(f"Sample agreement {existing['agreementNumber']} already present")
        return existing

    created = await store.create_agreement_with_versions(dict(SAMPLE_AGREEMENT), [sample_version()])
    print(f"Created sample agreement {created['agreementNumber']}")
    return created


async def main():
    settings = load_settings()
    client = AsyncIOMotorClient(settings.mongo_uri)
    try:
        await seed_database(client[settings.mongo_database])
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
