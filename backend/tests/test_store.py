"""
Agreement store tests
Testing: snapshots, filtered version updates and create compensation
"""
import asyncio

import pytest
from unittest.mock import AsyncMock
from pymongo.errors import DuplicateKeyError, PyMongoError

from agreements.errors import AgreementValidationError
from agreements.store import AgreementStore, merge_snapshot
from seed import SAMPLE_AGREEMENT, sample_version


class TestReads:
    async def test_snapshot_merges_parent_fields(self, offered_agreement):
        assert offered_agreement["agreementNumber"] == "SFI123456789"
        assert offered_agreement["sbi"] == "106284736"
        assert offered_agreement["status"] == "offered"
        assert offered_agreement["version"] == 1
        assert offered_agreement["versionCount"] == 1
        assert offered_agreement["agreement"] is not None

    async def test_lookups(self, store, offered_agreement):
        by_sbi = await store.get_by_sbi(106284736)
        by_id = await store.get_by_id(str(offered_agreement["agreement"]))
        by_message = await store.get_by_notification_message_id("sample-notification-1")

        for snapshot in (by_sbi, by_id, by_message):
            assert snapshot["_id"] == offered_agreement["_id"]

    async def test_missing_agreement(self, store):
        assert await store.get_by_agreement_number("SFI000000000") is None
        assert await store.get_by_id("not-an-object-id") is None

    async def test_filter_required(self, store):
        with pytest.raises(AgreementValidationError):
            await store.find_one()

    async def test_latest_version_wins(self, store, offered_agreement):
        await store.create_agreement_with_versions(
            dict(SAMPLE_AGREEMENT),
            [sample_version(notificationMessageId="sample-notification-2", status="withdrawn")]
        )

        latest = await store.get_by_agreement_number("SFI123456789")
        assert latest["notificationMessageId"] == "sample-notification-2"
        assert latest["version"] == 2
        assert latest["versionCount"] == 2


class TestUpdateOneAgreementVersion:
    async def test_matching_status_is_updated(self, store, offered_agreement):
        updated = await store.update_one_agreement_version(
            {"agreementNumber": "SFI123456789", "status": "offered"},
            {"$set": {"status": "accepted"}}
        )

        assert updated["status"] == "accepted"
        assert updated["agreementNumber"] == "SFI123456789"
        assert updated["updatedAt"] >= offered_agreement["updatedAt"]

    async def test_wrong_status_matches_nothing(self, store, offered_agreement):
        updated = await store.update_one_agreement_version(
            {"agreementNumber": "SFI123456789", "status": "accepted"},
            {"$set": {"status": "offered"}}
        )

        assert updated is None
        current = await store.get_by_agreement_number("SFI123456789")
        assert current["status"] == "offered"

    async def test_second_transition_loses(self, store, offered_agreement):
        query = {"agreementNumber": "SFI123456789", "status": "offered"}

        first = await store.update_one_agreement_version(query, {"$set": {"status": "accepted"}})
        second = await store.update_one_agreement_version(query, {"$set": {"status": "accepted"}})

        assert first is not None
        assert second is None

    async def test_version_level_filter(self, store, offered_agreement):
        updated = await store.update_one_agreement_version(
            {"clientRef": "client-ref-002", "status": "offered"},
            {"$set": {"status": "withdrawn"}}
        )

        assert updated["status"] == "withdrawn"
        assert updated["agreementNumber"] == "SFI123456789"

    async def test_unknown_agreement(self, store):
        assert await store.update_one_agreement_version(
            {"agreementNumber": "SFI000000000", "status": "offered"},
            {"$set": {"status": "accepted"}}
        ) is None


class TestCreateAgreementWithVersions:
    async def test_creates_parent_and_links_versions(self, store):
        parent = await store.create_agreement_with_versions(dict(SAMPLE_AGREEMENT), [sample_version()])

        assert parent["agreementNumber"] == "SFI123456789"
        assert len(parent["versions"]) == 1
        assert parent["versions"][0]["agreement"] == parent["_id"]

    async def test_reuses_parent_for_same_frn_and_sbi(self, store, offered_agreement):
        other = dict(SAMPLE_AGREEMENT, agreementNumber="SFI999999999")
        parent = await store.create_agreement_with_versions(
            other,
            [sample_version(notificationMessageId="sample-notification-2")]
        )

        assert parent["_id"] == offered_agreement["agreement"]
        assert parent["agreementNumber"] == "SFI123456789"
        assert len(parent["versions"]) == 2
        assert await store.agreements.count_documents({}) == 1

    async def test_reused_parent_keeps_each_client_ref(self, store, offered_agreement):
        await store.create_agreement_with_versions(
            dict(SAMPLE_AGREEMENT),
            [sample_version(notificationMessageId="sample-notification-2", clientRef="client-ref-200")]
        )

        first = await store.get_by_notification_message_id("sample-notification-1")
        second = await store.get_by_notification_message_id("sample-notification-2")
        latest = await store.get_by_agreement_number("SFI123456789")

        assert first["clientRef"] == "client-ref-002"
        assert second["clientRef"] == "client-ref-200"
        assert latest["clientRef"] == "client-ref-200"

    async def test_concurrent_creates_share_one_parent(self, store):
        await store.ensure_indexes()

        first, second = await asyncio.gather(
            store.create_agreement_with_versions(
                dict(SAMPLE_AGREEMENT),
                [sample_version(notificationMessageId="sample-notification-1")]
            ),
            store.create_agreement_with_versions(
                dict(SAMPLE_AGREEMENT, agreementNumber="SFI999999999"),
                [sample_version(notificationMessageId="sample-notification-2")]
            ),
        )

        assert first["_id"] == second["_id"]
        assert await store.agreements.count_documents({}) == 1
        parent = await store.get_parent_with_versions(first["_id"])
        assert len(parent["versions"]) == 2

    async def test_frn_and_sbi_are_unique(self, store, offered_agreement):
        await store.ensure_indexes()

        with pytest.raises(DuplicateKeyError):
            await store.agreements.insert_one(dict(SAMPLE_AGREEMENT, agreementNumber="SFI999999999"))

    async def test_lost_upsert_race_reuses_parent(self, store, offered_agreement):
        real_update_one = store.agreements.update_one

        async def lose_upsert(query, update, upsert=False):
            if upsert:
                raise DuplicateKeyError("E11000 duplicate key")
            return await real_update_one(query, update)

        store.agreements.update_one = AsyncMock(side_effect=lose_upsert)

        parent = await store.create_agreement_with_versions(
            dict(SAMPLE_AGREEMENT, agreementNumber="SFI999999999"),
            [sample_version(notificationMessageId="sample-notification-2")]
        )

        assert parent["_id"] == offered_agreement["agreement"]
        assert await store.agreements.count_documents({}) == 1

    async def test_requires_identity_and_versions(self, store):
        with pytest.raises(AgreementValidationError):
            await store.create_agreement_with_versions({"agreementName": "x"}, [sample_version()])
        with pytest.raises(AgreementValidationError):
            await store.create_agreement_with_versions(dict(SAMPLE_AGREEMENT), [])

    async def test_new_parent_removed_when_linking_fails(self, store):
        store.versions.update_many = AsyncMock(side_effect=PyMongoError("link failed"))

        with pytest.raises(PyMongoError):
            await store.create_agreement_with_versions(dict(SAMPLE_AGREEMENT), [sample_version()])

        assert await store.agreements.count_documents({}) == 0
        assert await store.versions.count_documents({}) == 0

    async def test_reused_parent_kept_when_linking_fails(self, db, offered_agreement):
        store = AgreementStore(db)
        store.versions.update_many = AsyncMock(side_effect=PyMongoError("link failed"))

        with pytest.raises(PyMongoError):
            await store.create_agreement_with_versions(
                dict(SAMPLE_AGREEMENT),
                [sample_version(notificationMessageId="sample-notification-2")]
            )

        assert await store.agreements.count_documents({"_id": offered_agreement["agreement"]}) == 1


def test_merge_snapshot_without_parent():
    version = {"_id": 1, "status": "offered"}
    assert merge_snapshot(None, version) == version
