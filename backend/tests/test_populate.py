"""
Bulk populate tests
"""
import pytest
from unittest.mock import AsyncMock
from pymongo.errors import PyMongoError

from agreements.populate import (
    MAX_CONCURRENCY,
    build_agreement,
    clamp_concurrency,
    generate_agreement_number,
    populate_agreements,
)


class TestHelpers:
    def test_agreement_number(self):
        assert generate_agreement_number(42) == "SFI000000042"

    def test_build_agreement(self):
        item = build_agreement(7, run_id=1)

        assert item["agreement"]["agreementNumber"] == "SFI000000007"
        assert item["version"]["notificationMessageId"] == "notification-7-1"
        assert item["version"]["identifiers"]["sbi"] == item["agreement"]["sbi"]

    def test_clamp_concurrency(self):
        assert clamp_concurrency(0, 5) == 1
        assert clamp_concurrency(50, 100) == MAX_CONCURRENCY
        assert clamp_concurrency(8, 3) == 3


class TestPopulate:
    async def test_creates_agreements_in_batches(self, store):
        summary = await populate_agreements(store, target_count=25, batch_size=10, concurrency=2)

        assert summary["created"] == 25
        assert summary["failed"] == 0
        assert summary["batches"] == 3
        assert summary["concurrency"] == 2
        assert await store.agreements.count_documents({}) == 25
        assert await store.versions.count_documents({}) == 25

        snapshot = await store.get_by_agreement_number("SFI000000024")
        assert snapshot["versionCount"] == 1
        assert snapshot["status"] == "offered"

    async def test_failed_batch_removes_its_parents(self, store):
        store.versions.insert_many = AsyncMock(side_effect=PyMongoError("insert failed"))

        summary = await populate_agreements(store, target_count=5, batch_size=5, concurrency=1)

        assert summary["created"] == 0
        assert summary["failed"] == 5
        assert summary["errors"][0]["error"] == "insert failed"
        assert await store.agreements.count_documents({}) == 0

    async def test_rejects_non_positive_sizes(self, store):
        with pytest.raises(ValueError):
            await populate_agreements(store, target_count=0)
        with pytest.raises(ValueError):
            await populate_agreements(store, target_count=10, batch_size=0)
