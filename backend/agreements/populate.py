"""
Bulk population of agreements for performance testing.

Agreements are inserted in batches (parents first, then their versions),
with a bounded number of batches in flight at once. A batch whose versions
fail to insert has its parents removed again.

Usage:
    python -m agreements.populate [target_count] [batch_size] [concurrency]
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import asyncio
import logging
import random
import sys
import time

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient

from agreements.store import AgreementStore
from config import load_settings
from seed import sample_version

logger = logging.getLogger(__name__)

DEFAULT_TARGET_COUNT = 70000
DEFAULT_BATCH_SIZE = 1000
DEFAULT_CONCURRENCY = 4
MAX_CONCURRENCY = 10
ERROR_SAMPLE_LIMIT = 25
DATE_RANGE_DAYS = 730


def generate_agreement_number(index: int) -> str:
    return f"SFI{index:09d}"


def build_agreement(index: int, run_id: int) -> Dict[str, Any]:
    """Parent and version documents for agreement number `index`"""
    frn = str(1000000000 + (index % 9000000000))
    sbi = str(100000000 + (index % 900000000))
    client_ref = f"client-ref-{index:08d}"
    created_at = datetime.utcnow() - timedelta(days=random.uniform(0, DATE_RANGE_DAYS))

    version = sample_version(
        notificationMessageId=f"notification-{index}-{run_id}",
        agreementName=f"Agreement {index}",
        correlationId=f"correlation-{index}-{run_id}",
        clientRef=client_ref,
        identifiers={"sbi": sbi, "frn": frn, "crn": "crn", "defraId": "defraId"},
        createdAt=created_at,
        updatedAt=created_at,
    )
    parent = {
        "agreementNumber": generate_agreement_number(index),
        "agreementName": f"Agreement {index}",
        "frn": frn,
        "sbi": sbi,
        "clientRef": client_ref,
        "createdBy": "populate",
        "versions": [],
        "createdAt": created_at,
        "updatedAt": created_at,
    }
    return {"agreement": parent, "version": version}


def clamp_concurrency(concurrency: int, batch_count: int) -> int:
    return max(1, min(concurrency, MAX_CONCURRENCY, max(batch_count, 1)))


async def insert_batch(store: AgreementStore, start: int, size: int, run_id: int) -> int:
    """Insert agreements start..start+size-1; returns the number created"""
    parents, versions = [], []
    for index in range(start, start + size):
        item = build_agreement(index, run_id)
        parent_id, version_id = ObjectId(), ObjectId()
        parents.append({**item["agreement"], "_id": parent_id, "versions": [version_id]})
        versions.append({**item["version"], "_id": version_id, "agreement": parent_id})

    parent_ids = [parent["_id"] for parent in parents]
    await store.agreements.insert_many(parents)
    try:
        await store.versions.insert_many(versions)
    except Exception:
        await store.agreements.delete_many({"_id": {"$in": parent_ids}})
        raise

    return len(parent_ids)


async def populate_agreements(
    store: AgreementStore,
    target_count: int = DEFAULT_TARGET_COUNT,
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    log: Optional[logging.Logger] = None
) -> Dict[str, Any]:
    """
    Create target_count agreements in batches.

    Returns:
        {"created", "failed", "errors" (first 25), "elapsedSeconds", "concurrency", "batches"}
    """
    log = log or logger
    if target_count <= 0 or batch_size <= 0:
        raise ValueError("target_count and batch_size must be positive numbers")

    batch_starts = list(range(0, target_count, batch_size))
    workers = clamp_concurrency(concurrency, len(batch_starts))
    semaphore = asyncio.Semaphore(workers)
    run_id = int(time.time() * 1000)
    errors: List[Dict[str, Any]] = []
    started = time.monotonic()

    log.info(
        f"[POPULATE] Creating {target_count} agreements in {len(batch_starts)} batches "
        f"of {batch_size}, {workers} at a time"
    )

    async def run_batch(start: int) -> int:
        size = min(batch_size, target_count - start)
        async with semaphore:
            try:
                return await insert_batch(store, start, size, run_id)
            except Exception as e:
                log.error(f"[POPULATE] Batch starting at {start} failed: {e}")
                if len(errors) < ERROR_SAMPLE_LIMIT:
                    errors.append({"start": start, "size": size, "error": str(e)})
                return 0

    created_counts = await asyncio.gather(*(run_batch(start) for start in batch_starts))
    created = sum(created_counts)
    elapsed = time.monotonic() - started

    log.info(f"[POPULATE] Created {created}/{target_count} agreements in {elapsed:.1f}s")
    return {
        "created": created,
        "failed": target_count - created,
        "errors": errors,
        "elapsedSeconds": elapsed,
        "concurrency": workers,
        "batches": len(batch_starts),
    }


async def main(argv: List[str]):
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    target_count = int(argv[0]) if len(argv) > 0 else DEFAULT_TARGET_COUNT
    batch_size = int(argv[1]) if len(argv) > 1 else DEFAULT_BATCH_SIZE
    concurrency = int(argv[2]) if len(argv) > 2 else DEFAULT_CONCURRENCY

    settings = load_settings()
    client = AsyncIOMotorClient(settings.mongo_uri)
    try:
        summary = await populate_agreements(
            AgreementStore(client[settings.mongo_database]),
            target_count,
            batch_size,
            concurrency
        )
        logger.info(f"[POPULATE] Summary: {summary}")
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
