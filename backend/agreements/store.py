"""
AGREEMENT STORE

Persistence for agreements (parent documents, one per frn + sbi) and their
versions (child documents, one per offer snapshot).

Reads return an "agreement snapshot": the latest version of an agreement
merged with the parent's identifiers. Status changes go through
update_one_agreement_version, which applies the caller's filter and update
to the latest version in a single find_one_and_update, so a version whose
status has already moved on is left untouched and None is returned.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from bson import ObjectId
from datetime import datetime
from typing import Dict, Any, Optional, List
import logging

from agreements.errors import AgreementStoreError, AgreementValidationError

logger = logging.getLogger(__name__)

# Filter keys resolved against the parent agreement, everything else
# is matched on the version document
PARENT_FILTER_KEYS = ("agreementNumber", "sbi", "frn", "_id")
PARENT_FIELDS = ("agreementNumber", "agreementName", "frn", "sbi", "clientRef", "createdBy")
# Each offer under a reused parent keeps its own application reference
VERSION_OWNED_FIELDS = ("clientRef",)
LATEST_FIRST = [("createdAt", -1), ("_id", -1)]


def _split_filter(query: Dict[str, Any]) -> tuple:
    parent_filter = {k: v for k, v in query.items() if k in PARENT_FILTER_KEYS and v is not None}
    version_filter = {k: v for k, v in query.items() if k not in PARENT_FILTER_KEYS and v is not None}
    return parent_filter, version_filter


def merge_snapshot(parent: Optional[Dict[str, Any]], version: Dict[str, Any]) -> Dict[str, Any]:
    """Latest version with the parent's identifiers layered on top"""
    snapshot = dict(version)
    if not parent:
        return snapshot

    version_ids = parent.get("versions") or []
    for field in PARENT_FIELDS:
        if field in VERSION_OWNED_FIELDS and version.get(field) is not None:
            continue
        if parent.get(field) is not None:
            snapshot[field] = parent[field]
    snapshot["agreement"] = parent["_id"]
    snapshot["version"] = version_ids.index(version["_id"]) + 1 if version["_id"] in version_ids else len(version_ids)
    snapshot["versionCount"] = len(version_ids)
    return snapshot


class AgreementStore:
    """Agreement and version persistence over a Motor database"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.agreements = db.agreements
        self.versions = db.versions

    # =========================================================================
    # READS
    # =========================================================================

    async def find_one(self, **query) -> Optional[Dict[str, Any]]:
        """
        Find an agreement snapshot.

        Parent keys (agreementNumber, sbi, frn, _id) select the agreement and
        the latest of its versions matching the remaining keys is returned.
        With only version keys, the latest matching version is returned.
        """
        parent_filter, version_filter = _split_filter(query)

        try:
            if parent_filter:
                parent = await self.agreements.find_one(parent_filter)
                if not parent:
                    return None
                version = await self.versions.find_one(
                    {"agreement": parent["_id"], **version_filter},
                    sort=LATEST_FIRST
                )
                if not version:
                    return None
                return merge_snapshot(parent, version)

            if not version_filter:
                raise AgreementValidationError("A filter is required to find an agreement")

            version = await self.versions.find_one(version_filter, sort=LATEST_FIRST)
            if not version:
                return None
            parent = await self.agreements.find_one({"_id": version.get("agreement")}) if version.get("agreement") else None
            return merge_snapshot(parent, version)

        except PyMongoError as e:
            logger.error(f"[STORE] Agreement lookup failed for {query}: {e}")
            raise AgreementStoreError(f"Agreement lookup failed: {e}")

    async def get_by_agreement_number(self, agreement_number: str) -> Optional[Dict[str, Any]]:
        return await self.find_one(agreementNumber=agreement_number)

    async def get_by_sbi(self, sbi: str) -> Optional[Dict[str, Any]]:
        return await self.find_one(sbi=str(sbi))

    async def get_by_id(self, agreement_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(agreement_id):
            return None
        return await self.find_one(_id=ObjectId(agreement_id))

    async def get_by_notification_message_id(self, notification_message_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one(notificationMessageId=notification_message_id)

    async def get_parent_with_versions(self, parent_id: Any) -> Optional[Dict[str, Any]]:
        """Parent document with `versions` replaced by the version documents, in order"""
        parent = await self.agreements.find_one({"_id": parent_id})
        if not parent:
            return None

        version_ids = parent.get("versions") or []
        docs = await self.versions.find({"_id": {"$in": version_ids}}).to_list(length=None)
        by_id = {doc["_id"]: doc for doc in docs}
        parent["versions"] = [by_id[v] for v in version_ids if v in by_id]
        return parent

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def update_one_agreement_version(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Apply `update` to the latest version of the agreement selected by `query`.

        The version-level parts of the query (status, clientRef, ...) are part
        of the same atomic update filter. Returns the updated snapshot, or
        None when nothing matched (agreement missing, or not in the expected
        status).
        """
        parent_filter, version_filter = _split_filter(query)
        now = datetime.utcnow()
        update = {**update, "$set": {**update.get("$set", {}), "updatedAt": now}}

        try:
            parent = None
            if parent_filter:
                parent = await self.agreements.find_one(parent_filter)
                if not parent:
                    logger.info(f"[STORE] No agreement matches {parent_filter}")
                    return None
                latest = await self.versions.find_one({"agreement": parent["_id"]}, sort=LATEST_FIRST)
            else:
                lookup = {k: v for k, v in version_filter.items() if k != "status"}
                if not lookup:
                    raise AgreementValidationError("A filter is required to update an agreement")
                latest = await self.versions.find_one(lookup, sort=LATEST_FIRST)

            if not latest:
                logger.info(f"[STORE] No version matches {query}")
                return None

            updated = await self.versions.find_one_and_update(
                {"_id": latest["_id"], **version_filter},
                update,
                return_document=ReturnDocument.AFTER
            )

            if not updated:
                logger.info(
                    f"[STORE] Version {latest['_id']} did not match {version_filter} "
                    f"(current status: {latest.get('status')})"
                )
                return None

            if parent is None and updated.get("agreement"):
                parent = await self.agreements.find_one({"_id": updated["agreement"]})

        except PyMongoError as e:
            logger.error(f"[STORE] Version update failed for {query}: {e}")
            raise AgreementStoreError(f"Agreement update failed: {e}")

        return merge_snapshot(parent, updated)

    async def set_version_fields(self, version_id: Any, fields: Dict[str, Any]) -> None:
        """Unconditional $set on a single version"""
        try:
            await self.versions.update_one(
                {"_id": version_id},
                {"$set": {**fields, "updatedAt": datetime.utcnow()}}
            )
        except PyMongoError as e:
            raise AgreementStoreError(f"Agreement update failed: {e}")

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_agreement_with_versions(
        self,
        agreement: Dict[str, Any],
        versions: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Find or create the parent for (frn, sbi), insert the versions and link them.

        If linking fails after a new parent was created, the new parent and
        the inserted versions are removed before the error is re-raised. A
        reused parent is never deleted.

        Returns:
            The parent document with `versions` populated, read back fresh.

        Raises:
            AgreementValidationError: missing agreementNumber/agreementName or no versions
        """
        if not agreement or not agreement.get("agreementNumber") or not agreement.get("agreementName"):
            raise AgreementValidationError("Agreement must have an agreementNumber and agreementName")
        if not versions:
            raise AgreementValidationError("At least one version is required to create an agreement")

        now = datetime.utcnow()
        identity = {"frn": agreement.get("frn"), "sbi": agreement.get("sbi")}
        on_insert = {
            field: agreement.get(field)
            for field in PARENT_FIELDS
            if field not in identity
        }

        try:
            result = await self.agreements.update_one(
                identity,
                {"$setOnInsert": {**on_insert, "versions": [], "createdAt": now, "updatedAt": now}},
                upsert=True
            )
            created_parent = result.upserted_id is not None
        except DuplicateKeyError:
            # A concurrent upsert for the same frn + sbi inserted the parent first
            if not await self.agreements.find_one(identity):
                raise
            logger.info(f"[STORE] Agreement for {identity} created concurrently, reusing it")
            created_parent = False
        parent = await self.agreements.find_one(identity)
        parent_id = parent["_id"]

        if created_parent:
            logger.info(f"[STORE] Created agreement {parent.get('agreementNumber')} ({parent_id})")
        else:
            logger.info(f"[STORE] Reusing agreement {parent.get('agreementNumber')} ({parent_id})")

        insert_result = await self.versions.insert_many(
            [{**version, "agreement": None} for version in versions]
        )
        inserted_ids = list(insert_result.inserted_ids)

        try:
            await self.versions.update_many(
                {"_id": {"$in": inserted_ids}},
                {"$set": {"agreement": parent_id}}
            )
            await self.agreements.update_one(
                {"_id": parent_id},
                {
                    "$addToSet": {"versions": {"$each": inserted_ids}},
                    "$set": {"updatedAt": datetime.utcnow()}
                }
            )
            populated = await self.get_parent_with_versions(parent_id)
            if populated is None:
                raise AgreementStoreError(f"Agreement {parent_id} disappeared while linking versions")
            return populated

        except Exception:
            logger.error(f"[STORE] Linking {len(inserted_ids)} version(s) to {parent_id} failed")
            if created_parent:
                await self._remove_created(parent_id, inserted_ids)
            raise

    async def _remove_created(self, parent_id: Any, version_ids: List[Any]) -> None:
        try:
            await self.agreements.delete_one({"_id": parent_id})
        except PyMongoError as e:
            logger.error(f"[STORE] Could not remove agreement {parent_id}: {e}")
        try:
            await self.versions.delete_many({"_id": {"$in": version_ids}})
        except PyMongoError as e:
            logger.error(f"[STORE] Could not remove versions {version_ids}: {e}")

    # =========================================================================
    # INDEXES
    # =========================================================================

    async def ensure_indexes(self):
        """Create unique and lookup indexes"""
        try:
            await self.agreements.create_index(
                [("agreementNumber", 1)],
                unique=True,
                name="unique_agreement_number"
            )
            await self.agreements.create_index(
                [("frn", 1), ("sbi", 1)],
                unique=True,
                name="unique_agreement_frn_sbi"
            )
            await self.agreements.create_index([("sbi", 1)], name="agreement_sbi")

            await self.versions.create_index(
                [("notificationMessageId", 1)],
                unique=True,
                name="unique_notification_message_id"
            )
            await self.versions.create_index(
                [("agreement", 1), ("createdAt", -1), ("_id", -1)],
                name="version_latest_by_agreement"
            )
            await self.versions.create_index([("clientRef", 1)], name="version_client_ref")

            logger.info("[STORE] Agreement indexes created")
        except Exception as e:
            logger.warning(f"[STORE] Index creation warning: {e}")
