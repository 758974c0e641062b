"""
services/storage/objects.py
Staged-upload bookkeeping.

Every stored file has a row. The staged row is flushed before its file is
written, and a file whose row does not survive the transaction is removed
again. Referencing rows claim staged objects (staged -> attached) and drop
references by orphaning them (attached -> orphaned) inside the same DB
transaction as the row change. Both transitions are guarded on the current
status, so an object the storage GC has already taken (purging) can no
longer be claimed. Nothing here deletes files of committed rows; the
storage GC task does that asynchronously.
"""

import asyncio
import logging
import uuid
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.storage.vault import ALLOWED_MIME_TYPES, BUCKETS, StorageVault, vault
from shared.models.models import StoredObject, StoredObjectStatus, utcnow
from shared.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


async def stage_upload(
    db: AsyncSession,
    owner_id: uuid.UUID,
    bucket: str,
    content: bytes,
    content_type: str,
    storage: StorageVault = vault,
) -> StoredObject:
    if bucket not in BUCKETS:
        raise ValidationError(f"Unknown bucket '{bucket}'")
    if content_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"Unsupported file type '{content_type}'")
    if not content:
        raise ValidationError("Empty upload")

    obj = StoredObject(
        bucket=bucket,
        key=storage.new_key(content_type),
        owner_id=owner_id,
        content_type=content_type,
        size_bytes=len(content),
        status=StoredObjectStatus.STAGED,
    )
    db.add(obj)
    await db.flush()

    try:
        await asyncio.to_thread(storage.save, bucket, obj.key, content)
    except Exception:
        await release_upload(bucket, obj.key, storage)
        raise
    return obj


async def release_upload(bucket: str, key: str, storage: StorageVault = vault) -> None:
    """Remove the file of an upload whose row was never committed."""
    if await asyncio.to_thread(storage.remove, bucket, [key]):
        logger.error(f"Could not remove untracked upload {bucket}/{key}")


async def claim_staged(
    db: AsyncSession,
    owner_id: uuid.UUID,
    bucket: str,
    keys: Iterable[str],
) -> int:
    """Attach the caller's staged objects. Every key must be staged and owned by the caller."""
    keys = list(keys)
    if not keys:
        return 0

    owned_and_staged = (
        StoredObject.bucket == bucket,
        StoredObject.key.in_(keys),
        StoredObject.owner_id == owner_id,
        StoredObject.status == StoredObjectStatus.STAGED,
    )
    found = set((await db.execute(select(StoredObject.key).where(*owned_and_staged))).scalars())
    missing = [k for k in keys if k not in found]
    if missing:
        raise ValidationError(f"Unknown or already used upload(s): {', '.join(missing)}")

    result = await db.execute(
        update(StoredObject)
        .where(*owned_and_staged)
        .values(status=StoredObjectStatus.ATTACHED, status_changed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(found):
        # the caller's rollback undoes the partial claim
        raise ValidationError("Upload expired before it could be attached")
    return result.rowcount


async def orphan(db: AsyncSession, bucket: str, keys: Iterable[str]) -> int:
    """Mark attached objects as no longer referenced."""
    keys = list(keys)
    if not keys:
        return 0
    result = await db.execute(
        update(StoredObject)
        .where(
            StoredObject.bucket == bucket,
            StoredObject.key.in_(keys),
            StoredObject.status == StoredObjectStatus.ATTACHED,
        )
        .values(status=StoredObjectStatus.ORPHANED, status_changed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
