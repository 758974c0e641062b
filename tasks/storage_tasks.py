"""
tasks/storage_tasks.py
Garbage collection for the storage vault.

Purges orphaned objects (no longer referenced by any row) and staged
uploads older than STAGED_UPLOAD_TTL_HOURS (abandoned edits or
submissions) in two steps:

  1. claim: each candidate row moves to purging with a guarded update, and
     the claims are committed. A row attached meanwhile fails its guard and
     is skipped, so its file is never touched.
  2. purge: files of claimed rows are removed and the rows deleted. A file
     that cannot be removed leaves its row in purging, and the next run
     retries it.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from config.settings import settings
from services.storage.vault import StorageVault, vault
from shared.models.models import StoredObject, StoredObjectStatus, utcnow
from tasks.base import DatabaseTask
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

BATCH_SIZE = 500


def find_purge_candidates(
    db: Session,
    now: Optional[datetime] = None,
    batch_size: int = BATCH_SIZE,
) -> Sequence[Row]:
    """Snapshot (id, bucket, key, status) of rows due for purging, oldest change first."""
    now = now or utcnow()
    stale_before = now - timedelta(hours=settings.STAGED_UPLOAD_TTL_HOURS)
    return db.execute(
        select(StoredObject.id, StoredObject.bucket, StoredObject.key, StoredObject.status)
        .where(or_(
            StoredObject.status.in_([StoredObjectStatus.ORPHANED, StoredObjectStatus.PURGING]),
            and_(
                StoredObject.status == StoredObjectStatus.STAGED,
                StoredObject.created_at < stale_before,
            ),
        ))
        .order_by(StoredObject.status_changed_at.asc())
        .limit(batch_size)
    ).all()


def purge_candidates(db: Session, candidates: Sequence[Row], storage: StorageVault = vault) -> dict:
    now = utcnow()
    claimed = []
    for row in candidates:
        if row.status != StoredObjectStatus.PURGING:
            result = db.execute(
                update(StoredObject)
                .where(StoredObject.id == row.id, StoredObject.status == row.status)
                .values(status=StoredObjectStatus.PURGING, status_changed_at=now)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                logger.info(f"{row.bucket}/{row.key} was claimed before it could be purged")
                continue
        claimed.append(row)
    # Claims are durable before any file goes
    db.commit()

    by_bucket = defaultdict(list)
    for row in claimed:
        by_bucket[row.bucket].append(row)

    purged, failed = 0, 0
    for bucket, rows in by_bucket.items():
        failed_keys = set(storage.remove(bucket, [r.key for r in rows]))
        for row in rows:
            if row.key in failed_keys:
                failed += 1
                continue
            db.execute(
                delete(StoredObject)
                .where(StoredObject.id == row.id, StoredObject.status == StoredObjectStatus.PURGING)
                .execution_options(synchronize_session=False)
            )
            purged += 1

    db.commit()
    if candidates:
        logger.info(f"Storage GC: purged {purged}, failed {failed}, skipped {len(candidates) - len(claimed)}")
    return {"purged": purged, "failed": failed}


def purge_orphaned_objects(
    db: Session,
    storage: StorageVault = vault,
    now: Optional[datetime] = None,
    batch_size: int = BATCH_SIZE,
) -> dict:
    return purge_candidates(db, find_purge_candidates(db, now, batch_size), storage)


@celery_app.task(bind=True, base=DatabaseTask)
def purge_orphaned_uploads(self):
    """Beat task: runs every hour."""
    db = self.get_session()
    try:
        return purge_orphaned_objects(db)
    except Exception as e:
        db.rollback()
        logger.exception(f"purge_orphaned_uploads failed: {e}")
        raise
    finally:
        db.close()
